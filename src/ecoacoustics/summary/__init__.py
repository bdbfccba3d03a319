"""
Bird detection summary module.

This module turns species detections into site-level ecological summaries:
vocal activity rates, site x species community matrices and diversity metrics
including Hill numbers.
"""

from .vocal_activity_analysis import VocalActivityAnalyzer, species_frequency, vocal_activity, vocal_activity_rate
from .site_community_analysis import CommunityMatrixBuilder, site_community
from .site_diversity_analysis import SiteDiversityAnalyzer, site_diversity

__all__ = [
    'VocalActivityAnalyzer', 'vocal_activity', 'vocal_activity_rate', 'species_frequency',
    'CommunityMatrixBuilder', 'site_community',
    'SiteDiversityAnalyzer', 'site_diversity',
]
