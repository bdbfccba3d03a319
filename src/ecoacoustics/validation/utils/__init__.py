"""Numerical and plotting helpers for detection validation."""
