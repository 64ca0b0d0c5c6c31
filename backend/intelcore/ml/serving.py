"""
Prediction snapshots, validation and rolling accuracy.

Every prediction is persisted as a locked, SHA-256 signed snapshot before its
outcome is known. Validation later links exactly one immutable prediction log
to the snapshot.
"""

import hashlib
import json
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from intelcore.db.models import ModelSnapshot, PatternModel
from intelcore.db.repositories import PredictionLogRepository, SnapshotRepository
from intelcore.ml.schemas import RollingAccuracy, SnapshotView, ValidationResult
from intelcore.ml.training import classify_tier
from intelcore.utils.datetime import isoformat_z, utc_now
from intelcore.log_config import logger


DIRECTION_THRESHOLD = 0.5


def _canonical_number(value: float) -> Any:
    value = float(value)
    if value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def compute_snapshot_hash(
    feature_vector: Sequence[float],
    coefficients: Sequence[float],
    predicted_value: float,
    timestamp: str,
) -> str:
    """
    SHA-256 hex digest of the compact JSON payload
    {"featureVector", "coefficients", "predictedValue", "timestamp"} (in that key order).
    """
    payload = {
        "featureVector": [_canonical_number(v) for v in feature_vector],
        "coefficients": [_canonical_number(c) for c in coefficients],
        "predictedValue": _canonical_number(predicted_value),
        "timestamp": timestamp,
    }
    encoded = json.dumps(payload, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def verify_snapshot_signature(snapshot: Any) -> bool:
    """Recompute a snapshot's hash from its stored fields and compare."""
    expected = compute_snapshot_hash(
        snapshot.feature_vector,
        snapshot.coefficients_used,
        snapshot.predicted_value,
        snapshot.signed_at,
    )
    return expected == snapshot.hash_signature


def _is_directionally_correct(predicted: float, actual: float) -> bool:
    return (predicted >= DIRECTION_THRESHOLD) == (actual >= DIRECTION_THRESHOLD)


def summarize_accuracy(logs: Sequence[Any]) -> RollingAccuracy:
    """Mean directional/tier accuracy and MAE over the validated entries of `logs`."""
    validated = [log for log in logs if log.actual_value is not None]
    if not validated:
        return RollingAccuracy()

    n = len(validated)
    return RollingAccuracy(
        directional_accuracy=sum(1 for log in validated if log.directionally_correct) / n,
        tier_accuracy=sum(1 for log in validated if log.tier_correct) / n,
        mean_absolute_error=sum((log.absolute_error or 0.0) for log in validated) / n,
        sample_count=n,
    )


class PredictionService:
    """Issues snapshots and validates them within one session."""

    def __init__(self, db: Session):
        self.db = db
        self.snapshots = SnapshotRepository(db)
        self.logs = PredictionLogRepository(db)

    def create_snapshot(
        self,
        model: PatternModel,
        feature_vector: List[float],
        predicted_value: float,
        predicted_tier: str,
        confidence: float,
        source_id: Optional[str] = None,
        source_type: Optional[str] = None,
    ) -> ModelSnapshot:
        """
        Persist a locked, hash-signed snapshot.

        Args:
            model: Model whose coefficients produced the prediction
            feature_vector: Normalized features in the model's feature_names order
            predicted_value: Raw model output
            predicted_tier: classify_tier(predicted_value)
            confidence: Confidence reported with the prediction
            source_id: Optional id of the external item the prediction is about
            source_type: Optional type of that item

        Returns:
            The persisted ModelSnapshot
        """
        coefficients = list(model.coefficients)
        signed_at = isoformat_z(utc_now())
        signature = compute_snapshot_hash(feature_vector, coefficients, predicted_value, signed_at)

        snapshot = self.snapshots.create(
            dataset_id=model.dataset_id,
            model_id=model.id,
            feature_vector=list(feature_vector),
            coefficients_used=coefficients,
            predicted_value=predicted_value,
            predicted_tier=predicted_tier,
            confidence=confidence,
            hash_signature=signature,
            signed_at=signed_at,
            source_id=source_id,
            source_type=source_type,
        )
        logger.info(
            f"Created snapshot {snapshot.id} for dataset {model.dataset_id}: "
            f"predicted={predicted_value:.4f} tier={predicted_tier}"
        )
        return snapshot

    def confirm_upload(self, snapshot_id: str) -> SnapshotView:
        snapshot = self.snapshots.confirm_upload(snapshot_id)
        logger.info(f"Upload confirmed for snapshot {snapshot_id}; performance tracking started")
        return SnapshotView.model_validate(snapshot)

    def validate_prediction(self, snapshot_id: str, actual_value: float) -> ValidationResult:
        """
        Record the observed outcome of a snapshot.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
            DuplicateRecordError: If the snapshot was already validated
        """
        snapshot = self.snapshots.get(snapshot_id)

        predicted = snapshot.predicted_value
        error = predicted - actual_value
        actual_tier = classify_tier(actual_value)
        tier_correct = (snapshot.predicted_tier or classify_tier(predicted)) == actual_tier
        directionally_correct = _is_directionally_correct(predicted, actual_value)

        log = self.logs.create(
            snapshot_id=snapshot_id,
            dataset_id=snapshot.dataset_id,
            model_id=snapshot.model_id,
            predicted_value=predicted,
            predicted_tier=snapshot.predicted_tier,
            actual_value=actual_value,
            actual_tier=actual_tier,
            error=error,
            absolute_error=abs(error),
            directionally_correct=directionally_correct,
            tier_correct=tier_correct,
            validated_at=utc_now(),
        )
        logger.info(
            f"Validated snapshot {snapshot_id}: predicted={predicted:.4f} actual={actual_value:.4f} "
            f"error={error:.4f} tier_correct={tier_correct}"
        )

        return ValidationResult(
            prediction_log_id=log.id,
            snapshot_id=snapshot_id,
            dataset_id=log.dataset_id,
            model_id=log.model_id,
            predicted_value=predicted,
            actual_value=actual_value,
            error=error,
            absolute_error=abs(error),
            directionally_correct=directionally_correct,
            tier_correct=tier_correct,
            predicted_tier=snapshot.predicted_tier,
            actual_tier=actual_tier,
            validated_at=log.validated_at,
        )

    def get_rolling_accuracy(self, dataset_id: str, window_size: int = 20) -> RollingAccuracy:
        """Accuracy over the most recent `window_size` logs (only validated ones count)."""
        return summarize_accuracy(self.logs.get_recent(dataset_id, window_size))

    def get_snapshot(self, snapshot_id: str) -> SnapshotView:
        return SnapshotView.model_validate(self.snapshots.get(snapshot_id))
