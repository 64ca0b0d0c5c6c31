"""
Feature Store Module for the Intelligence Core.

Provides the dataset type registry, feature statistics and normalization,
and the built-in video ad extractors.
"""

from .registry import (
    DatasetTypeRegistry,
    DatasetTypeRegistration,
    ExtractedRecord,
    compute_feature_stats,
    collect_feature_arrays,
    normalize_features,
)
from .video_ads import register_video_ad_types

__all__ = [
    "DatasetTypeRegistry",
    "DatasetTypeRegistration",
    "ExtractedRecord",
    "compute_feature_stats",
    "collect_feature_arrays",
    "normalize_features",
    "register_video_ad_types",
]
