"""
Cross-layer correlation and the Attention Migration Index (AMI).

Layers are tested pairwise in ascending order (1->2, 2->3, ...). For each pair
every lag from 0 to max_lag_days is tried and the one with the largest
absolute Pearson correlation wins.
"""

import math
from datetime import timedelta
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from intelcore.signals.schemas import (
    AMIComponents,
    AMIScore,
    CrossLayerCorrelation,
    LagCorrelation,
    LayerSeries,
    TimePoint,
)


DEFAULT_MAX_LAG_DAYS = 14
SAMPLE_SIZE_BASELINE = 30

AMI_WEIGHTS = {
    "cultural": 0.2,
    "search": 0.3,
    "marketplace": 0.25,
    "media": 0.25,
}

ONE_DAY = timedelta(days=1)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ============================================================================
# Cross-Layer Correlation
# ============================================================================

def compute_pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson r clamped to [-1, 1]; 0 for mismatched, empty or constant input."""
    if len(x) != len(y) or len(x) == 0:
        return 0.0

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    dx = xs - xs.mean()
    dy = ys - ys.mean()

    sxx = float(np.dot(dx, dx))
    syy = float(np.dot(dy, dy))
    if sxx == 0 or syy == 0:
        return 0.0

    r = float(np.dot(dx, dy)) / math.sqrt(sxx * syy)
    return _clamp(r, -1.0, 1.0)


def _nearest(points: Sequence[TimePoint], target_time) -> Optional[TimePoint]:
    best = None
    best_diff = None
    for point in points:
        diff = abs((point.timestamp - target_time).total_seconds())
        # Ties keep the earliest point
        if best_diff is None or diff < best_diff:
            best = point
            best_diff = diff
    if best is None or best_diff >= ONE_DAY.total_seconds():
        return None
    return best


def detect_lag_correlation(
    source: Sequence[TimePoint],
    target: Sequence[TimePoint],
    max_lag_days: int = DEFAULT_MAX_LAG_DAYS,
) -> LagCorrelation:
    """
    Find the lag (in days) at which source best predicts target.

    Each source point at time t is paired with the target point nearest to
    t + lag, provided it lies within one day. Lags with fewer than two pairs
    are skipped. A later lag replaces the current best only when its absolute
    correlation is strictly greater.

    Args:
        source: Source layer series
        target: Target layer series
        max_lag_days: Largest lag tried

    Returns:
        LagCorrelation; lag 0, strength 0 and sample size 0 when nothing correlates
    """
    sorted_source = sorted(source, key=lambda p: p.timestamp)
    sorted_target = sorted(target, key=lambda p: p.timestamp)

    best = LagCorrelation()
    for lag in range(max_lag_days + 1):
        offset = timedelta(days=lag)
        aligned_source: List[float] = []
        aligned_target: List[float] = []

        for point in sorted_source:
            match = _nearest(sorted_target, point.timestamp + offset)
            if match is not None:
                aligned_source.append(point.value)
                aligned_target.append(match.value)

        if len(aligned_source) < 2:
            continue

        r = compute_pearson_correlation(aligned_source, aligned_target)
        if abs(r) > abs(best.correlation_strength):
            best = LagCorrelation(lag_days=lag, correlation_strength=r, sample_size=len(aligned_source))

    return best


def pattern_confidence(correlation_strength: float, sample_size: int) -> float:
    """Geometric mean of correlation strength and sample-size adequacy."""
    sample_confidence = min(1.0, sample_size / SAMPLE_SIZE_BASELINE)
    return math.sqrt(abs(correlation_strength) * sample_confidence)


def find_cross_layer_patterns(
    series: Sequence[LayerSeries],
    max_lag_days: int = DEFAULT_MAX_LAG_DAYS,
) -> List[CrossLayerCorrelation]:
    """Lag correlations between each pair of consecutive layers present in series."""
    by_layer: Dict[int, List[TimePoint]] = {}
    keyword = ""
    for layer_series in series:
        keyword = layer_series.keyword
        by_layer[layer_series.layer] = list(layer_series.values)

    layers = sorted(by_layer)
    results: List[CrossLayerCorrelation] = []
    for source_layer, target_layer in zip(layers, layers[1:]):
        lag = detect_lag_correlation(by_layer[source_layer], by_layer[target_layer], max_lag_days)
        results.append(
            CrossLayerCorrelation(
                source_layer=source_layer,
                target_layer=target_layer,
                keyword=keyword,
                lag_days=lag.lag_days,
                correlation_strength=lag.correlation_strength,
                confidence=pattern_confidence(lag.correlation_strength, lag.sample_size),
                sample_size=lag.sample_size,
            )
        )
    return results


# ============================================================================
# Attention Migration Index
# ============================================================================

def classify_ami_stage(cultural: float, search: float, marketplace: float, media: float) -> str:
    if cultural > 0.6 and search < 0.3:
        return "early_noise"
    if search > 0.5:
        return "search_growth"
    if marketplace > 0.5:
        return "buyer_interest"
    if media > 0.6:
        return "media_amplification"
    return "early_noise"


def compute_ami(layer_scores: Mapping[int, float]) -> AMIScore:
    """
    Composite AMI from per-layer scores.

    Layer 1 is cultural spike, 2 search acceleration, 3 marketplace rank delta
    and 4 media amplification; missing layers count as 0. Confidence grows
    with the number of layers carrying a non-zero score, from 0.2 to 1.0.
    """
    components = AMIComponents(
        cultural_spike_score=layer_scores.get(1, 0.0),
        search_acceleration_score=layer_scores.get(2, 0.0),
        marketplace_rank_delta_score=layer_scores.get(3, 0.0),
        media_amplification_score=layer_scores.get(4, 0.0),
    )

    ami = (
        components.cultural_spike_score * AMI_WEIGHTS["cultural"]
        + components.search_acceleration_score * AMI_WEIGHTS["search"]
        + components.marketplace_rank_delta_score * AMI_WEIGHTS["marketplace"]
        + components.media_amplification_score * AMI_WEIGHTS["media"]
    )

    stage = classify_ami_stage(
        components.cultural_spike_score,
        components.search_acceleration_score,
        components.marketplace_rank_delta_score,
        components.media_amplification_score,
    )

    layers_with_data = sum(1 for v in layer_scores.values() if v > 0)
    confidence = min(1.0, layers_with_data / 4 * 0.8 + 0.2)

    return AMIScore(
        ami=_clamp(ami, 0.0, 1.0),
        stage=stage,
        confidence=confidence,
        components=components,
        layer_scores=dict(layer_scores),
    )


def layer_score_from_features(features: Optional[Mapping[str, float]]) -> float:
    """attentionDensityScore, else velocity, else acceleration, clamped to [0, 1]."""
    if not features:
        return 0.0
    for key in ("attentionDensityScore", "velocity", "acceleration"):
        value = features.get(key)
        if value is not None:
            return _clamp(float(value), 0.0, 1.0)
    return 0.0
