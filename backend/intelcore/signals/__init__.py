"""
External attention signals: ingestion, built-in sources, cross-layer
correlation and the Attention Migration Index.
"""

from intelcore.signals.correlation import (
    compute_ami,
    compute_pearson_correlation,
    detect_lag_correlation,
    find_cross_layer_patterns,
    layer_score_from_features,
)
from intelcore.signals.ingestion import SignalIngestor, SignalSource, SignalSourceRegistry
from intelcore.signals.sources import register_all_signal_sources

__all__ = [
    "SignalIngestor",
    "SignalSource",
    "SignalSourceRegistry",
    "compute_ami",
    "compute_pearson_correlation",
    "detect_lag_correlation",
    "find_cross_layer_patterns",
    "layer_score_from_features",
    "register_all_signal_sources",
]
