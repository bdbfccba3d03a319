"""
Bird detection validation module.

This module supports the manual validation of classifier detections: it draws
confidence-stratified samples for validation and calibrates per-species
confidence thresholds from the validated detections.
"""

from .confidence_sampling import ConfidenceSampler, sample_by_confidence
from .species_threshold_analysis import (
    SpeciesThresholdAnalyzer,
    SpeciesThresholdBatch,
    SpeciesThresholdResult,
    species_threshold,
    species_thresholds,
)

__all__ = [
    'ConfidenceSampler', 'sample_by_confidence',
    'SpeciesThresholdAnalyzer', 'SpeciesThresholdResult', 'SpeciesThresholdBatch',
    'species_threshold', 'species_thresholds',
]
