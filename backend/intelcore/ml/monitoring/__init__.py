"""
Model monitoring for pattern models.

This module provides:
- DriftMonitor: overestimation and engagement-drop drift checks
- PatternRetirementMonitor: retire models that stray from the observed baseline
- trend helpers: rolling z-score, view and engagement velocity
"""

from intelcore.ml.monitoring.drift_monitor import DriftMonitor, PatternRetirementMonitor, reconcile_health
from intelcore.ml.monitoring.trends import (
    analyze_trend,
    compute_engagement_velocity,
    compute_retention_weighted_engagement,
    compute_view_velocity,
)

__all__ = [
    "DriftMonitor",
    "PatternRetirementMonitor",
    "reconcile_health",
    "analyze_trend",
    "compute_engagement_velocity",
    "compute_retention_weighted_engagement",
    "compute_view_velocity",
]
