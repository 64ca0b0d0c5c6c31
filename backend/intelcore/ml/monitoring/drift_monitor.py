"""
Drift monitoring and pattern retirement for pattern models.

Compares predicted values with validated outcomes to flag systematic
overestimation or an engagement collapse, and retires models whose predictions
sit too far from the observed baseline.
"""

from typing import Any, List, Optional, Sequence

import numpy as np

from intelcore.ml.schemas import DriftStatus, ModelHealth, RetirementResult
from intelcore.log_config import logger


class DriftMonitor:
    """Detects drift over recent prediction logs.

    Checks run in priority order and only the first one that triggers is
    reported: overestimation ratio, then engagement drop. Thresholds are
    policy constants shared by every dataset.
    """

    SEVERE_OVERESTIMATION_RATIO = 0.8
    MODERATE_OVERESTIMATION_RATIO = 0.6
    RECENT_WINDOW = 5
    MIN_HISTORICAL_SAMPLES = 2
    MODERATE_DROP_STD = 2.0
    SEVERE_DROP_STD = 3.0

    def __init__(self, window_size: int = 10):
        self.window_size = window_size

    def detect(self, predictions: Sequence[Any]) -> DriftStatus:
        """
        Run drift checks.

        Args:
            predictions: Prediction logs in chronological order (oldest first).
                Each exposes predicted_value and actual_value (None if unvalidated).

        Returns:
            DriftStatus. reason == "insufficient_data" when nothing is validated.
        """
        validated = [p for p in predictions if p.actual_value is not None]
        window = validated[-self.window_size:] if self.window_size > 0 else []

        if not window:
            return DriftStatus(
                details="No validated predictions available for drift detection.",
                reason="insufficient_data",
            )

        overestimated = sum(1 for p in window if p.predicted_value > p.actual_value)
        ratio = overestimated / len(window)

        if ratio > self.SEVERE_OVERESTIMATION_RATIO:
            status = DriftStatus(
                drift_detected=True,
                drift_type="overestimation",
                severity="severe",
                recommendation="retrain",
                details=f"{ratio * 100:.1f}% overestimation rate detected (>80%). Model requires retraining.",
                sample_count=len(window),
            )
            logger.warning(f"Drift detected: {status.details}")
            return status

        if ratio > self.MODERATE_OVERESTIMATION_RATIO:
            status = DriftStatus(
                drift_detected=True,
                drift_type="overestimation",
                severity="moderate",
                recommendation="reduce_confidence",
                details=f"{ratio * 100:.1f}% overestimation rate detected (>60%). Recommend reducing confidence.",
                sample_count=len(window),
            )
            logger.warning(f"Drift detected: {status.details}")
            return status

        deviations = self._engagement_drop(np.array([p.actual_value for p in window], dtype=float))
        if deviations is not None and deviations > self.MODERATE_DROP_STD:
            status = DriftStatus(
                drift_detected=True,
                drift_type="engagement_drop",
                severity="severe" if deviations > self.SEVERE_DROP_STD else "moderate",
                recommendation="increase_exploration",
                details=(
                    f"Engagement dropped {deviations:.2f} standard deviations. "
                    "Recommend increasing exploration weight."
                ),
                sample_count=len(window),
            )
            logger.warning(f"Drift detected: {status.details}")
            return status

        return DriftStatus(
            details="No significant drift detected in recent predictions.",
            sample_count=len(window),
        )

    def _engagement_drop(self, actuals: np.ndarray) -> Optional[float]:
        """(historical mean - recent mean) / historical std, or None if not computable."""
        if len(actuals) < self.RECENT_WINDOW:
            return None

        recent = actuals[-self.RECENT_WINDOW:]
        historical = actuals[:-self.RECENT_WINDOW]
        if len(historical) < self.MIN_HISTORICAL_SAMPLES:
            return None

        historical_std = float(np.std(historical))
        if historical_std <= 0:
            return None

        return float((historical.mean() - recent.mean()) / historical_std)


class PatternRetirementMonitor:
    """Retires models whose mean prediction drifts too far from the observed baseline."""

    MIN_PREDICTIONS = 5
    MIN_VALIDATED = 5
    RETIREMENT_STD = 1.5

    def check(self, pattern_id: str, predictions: Sequence[Any]) -> RetirementResult:
        """
        Compare mean predicted value against mean actual value in units of actual std.

        Args:
            pattern_id: Model id being checked
            predictions: Prediction logs for that model

        Returns:
            RetirementResult (retired=False when there are too few samples or no variance)
        """
        result = RetirementResult(pattern_id=pattern_id, sample_count=len(predictions))
        if len(predictions) < self.MIN_PREDICTIONS:
            return result

        actuals = np.array([p.actual_value for p in predictions if p.actual_value is not None], dtype=float)
        if len(actuals) < self.MIN_VALIDATED:
            return result

        baseline = float(actuals.mean())
        std_dev = float(actuals.std())
        if std_dev == 0:
            return result

        mean_predicted = float(np.mean([p.predicted_value for p in predictions]))
        underperformance = (mean_predicted - baseline) / std_dev
        result.underperformance_std_dev = underperformance

        if abs(underperformance) > self.RETIREMENT_STD:
            result.retired = True
            result.reason = (
                f"Pattern underperforms baseline by {abs(underperformance):.2f} "
                f"standard deviations (threshold: {self.RETIREMENT_STD})"
            )
            logger.warning(f"Pattern {pattern_id} retired: {result.reason}")

        return result


def reconcile_health(
    dataset_id: str,
    drift: DriftStatus,
    retirement: Optional[RetirementResult],
    model_id: Optional[str] = None,
    model_status: Optional[str] = None,
) -> ModelHealth:
    """
    Combine drift and retirement into one recommendation.

    Retirement decides the model's status; a retired model always gets
    "retrain", whatever the drift rule recommended.
    """
    if retirement is not None and retirement.retired:
        return ModelHealth(
            dataset_id=dataset_id,
            model_id=model_id,
            model_status="retired",
            drift=drift,
            retirement=retirement,
            recommendation="retrain",
            healthy=False,
        )

    return ModelHealth(
        dataset_id=dataset_id,
        model_id=model_id,
        model_status=model_status,
        drift=drift,
        retirement=retirement,
        recommendation=drift.recommendation,
        healthy=not drift.drift_detected,
    )
