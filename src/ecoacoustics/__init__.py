"""
Ecoacoustic monitoring summaries from species detections.

Turns the detection tables of an acoustic classifier into site-level
ecological summaries (vocal activity rates, community matrices, diversity
indices) and calibrates per-species confidence thresholds from manually
validated detections.
"""

__version__ = "0.1.0"

from .config import ColumnMap
from .exceptions import (
    ConfigurationError,
    DataError,
    EcoacousticsError,
    LowConfidenceWarning,
    ParseError,
    PartialFailureWarning,
    SamplingShortfallWarning,
)
from .summary import (
    CommunityMatrixBuilder,
    SiteDiversityAnalyzer,
    VocalActivityAnalyzer,
    site_community,
    site_diversity,
    species_frequency,
    vocal_activity,
    vocal_activity_rate,
)
from .validation import (
    ConfidenceSampler,
    SpeciesThresholdAnalyzer,
    sample_by_confidence,
    species_threshold,
    species_thresholds,
)

__all__ = [
    'ColumnMap',
    'EcoacousticsError', 'ConfigurationError', 'ParseError', 'DataError',
    'PartialFailureWarning', 'LowConfidenceWarning', 'SamplingShortfallWarning',
    'VocalActivityAnalyzer', 'vocal_activity', 'vocal_activity_rate', 'species_frequency',
    'CommunityMatrixBuilder', 'site_community',
    'SiteDiversityAnalyzer', 'site_diversity',
    'ConfidenceSampler', 'sample_by_confidence',
    'SpeciesThresholdAnalyzer', 'species_threshold', 'species_thresholds',
]
