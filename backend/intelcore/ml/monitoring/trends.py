"""
Trend analysis helpers for engagement time series.
"""

from datetime import datetime
from typing import List, Sequence, Tuple

import numpy as np

from intelcore.ml.schemas import TrendPoint, TrendSignal


ANOMALY_Z_SCORE = 2.0
VIEW_VELOCITY_WINDOW_HOURS = 48


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def analyze_trend(points: Sequence[TrendPoint], window_size: int = 10) -> TrendSignal:
    """
    Describe the latest value of a series relative to its rolling window.

    Args:
        points: Observations in chronological order
        window_size: Rolling window for mean and z-score

    Returns:
        TrendSignal with rolling mean, population z-score, anomaly flag
        (|z| > 2) and acceleration in value per hour squared
    """
    result = TrendSignal()
    if not points:
        return result

    values = np.array([p.value for p in points], dtype=float)
    result.value = float(values[-1])

    window = values[-window_size:]
    rolling_mean = float(window.mean())
    std_dev = float(window.std())
    result.rolling_mean = rolling_mean
    result.z_score = (result.value - rolling_mean) / std_dev if std_dev > 0 else 0.0
    result.is_anomaly = abs(result.z_score) > ANOMALY_Z_SCORE

    if len(points) >= 3:
        t = [p.timestamp for p in points]
        dt = _hours_between(t[-2], t[-1])
        velocity = (values[-1] - values[-2]) / dt if dt > 0 else 0.0

        prev_dt = _hours_between(t[-3], t[-2])
        prev_velocity = (values[-2] - values[-3]) / prev_dt if prev_dt > 0 else 0.0

        span = _hours_between(t[-3], t[-1])
        result.acceleration = float((velocity - prev_velocity) / span) if span > 0 else 0.0

    return result


def _sorted_series(values: Sequence[float], timestamps: Sequence[datetime]) -> List[Tuple[datetime, float]]:
    return sorted(zip(timestamps, values), key=lambda pair: pair[0])


def compute_view_velocity(views: Sequence[float], timestamps: Sequence[datetime]) -> float:
    """Views per hour over the first 48 hours of the series (span floored at one hour)."""
    if len(views) < 2 or len(timestamps) < 2:
        return 0.0

    series = _sorted_series(views, timestamps)
    first_ts = series[0][0]
    in_window = [
        (ts, v) for ts, v in series if _hours_between(first_ts, ts) <= VIEW_VELOCITY_WINDOW_HOURS
    ]
    if not in_window:
        return 0.0

    total_views = in_window[-1][1] - in_window[0][1]
    span = max(1.0, _hours_between(in_window[0][0], in_window[-1][0]))
    return total_views / span


def compute_engagement_velocity(engagements: Sequence[float], timestamps: Sequence[datetime]) -> float:
    """Change in engagement per hour between the first and last observation."""
    if len(engagements) < 2 or len(timestamps) < 2:
        return 0.0

    series = _sorted_series(engagements, timestamps)
    hours = _hours_between(series[0][0], series[-1][0])
    if hours <= 0:
        return 0.0
    return (series[-1][1] - series[0][1]) / hours


def compute_retention_weighted_engagement(engagement: float, retention: float) -> float:
    return engagement * retention
