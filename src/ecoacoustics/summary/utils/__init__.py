"""Numerical helpers for detection summaries."""
