"""
Closed-form linear regression training for pattern models.

Fits ordinary least squares via the normal equation over a chronological
train/test split. Feature columns are always ordered by sorted feature name;
PatternModel.feature_names stores that order and inference must reuse it.
"""

from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from intelcore.ml.schemas import TrainingMetrics, TrainingResult
from intelcore.log_config import logger


SINGULAR_PIVOT_THRESHOLD = 1e-12
TOP_TIER_THRESHOLD = 0.7
LOW_TIER_THRESHOLD = 0.3


def _record_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _created_sort_key(record: Any) -> float:
    created_at = _record_field(record, "created_at")
    if created_at is None:
        return 0.0
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    if created_at.tzinfo is None:
        return (created_at - datetime(1970, 1, 1)).total_seconds()
    return created_at.timestamp()


def split_data(records: Sequence[Any], train_ratio: float = 0.8) -> Tuple[List[Any], List[Any]]:
    """
    Chronological hold-out split.

    Records are sorted by created_at ascending (missing timestamps sort first),
    then cut at floor(n * train_ratio). The train slice is the earlier part.

    Returns:
        (train, test)
    """
    ordered = sorted(records, key=_created_sort_key)
    split_index = int(np.floor(len(ordered) * train_ratio))
    return ordered[:split_index], ordered[split_index:]


def classify_tier(value: float) -> str:
    """Bucket a value: > 0.7 top, < 0.3 low, otherwise mid."""
    if value > TOP_TIER_THRESHOLD:
        return "top"
    if value < LOW_TIER_THRESHOLD:
        return "low"
    return "mid"


def predict(coefficients: Sequence[float], intercept: float, feature_vector: Sequence[float]) -> float:
    """intercept + sum(coef_i * x_i); entries missing from the vector count as 0."""
    result = float(intercept)
    for i, coef in enumerate(coefficients):
        x = feature_vector[i] if i < len(feature_vector) else 0.0
        result += coef * (x if x is not None else 0.0)
    return result


def invert_matrix(matrix: np.ndarray) -> np.ndarray:
    """
    Gauss-Jordan inversion with partial pivoting.

    A column whose best pivot is below 1e-12 is treated as singular: that row of
    the inverse is zeroed and its diagonal set to 1, so the corresponding
    coefficient comes out as 0 instead of failing the solve.
    """
    n = matrix.shape[0]
    augmented = np.hstack([np.array(matrix, dtype=float), np.eye(n)])

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(augmented[col:, col])))
        if abs(augmented[pivot_row, col]) < SINGULAR_PIVOT_THRESHOLD:
            augmented[col, n:] = 0.0
            augmented[col, col] = 1.0
            continue

        if pivot_row != col:
            augmented[[col, pivot_row]] = augmented[[pivot_row, col]]

        augmented[col] /= augmented[col, col]
        for row in range(n):
            if row == col:
                continue
            factor = augmented[row, col]
            if factor != 0.0:
                augmented[row] -= factor * augmented[col]

    return augmented[:, n:]


def _feature_matrix(records: Sequence[Any], feature_names: Sequence[str]) -> np.ndarray:
    rows = []
    for record in records:
        features = _record_field(record, "normalized_features") or {}
        rows.append([float(features.get(name, 0.0) or 0.0) for name in feature_names])
    return np.array(rows, dtype=float).reshape(len(records), len(feature_names))


def _targets(records: Sequence[Any]) -> np.ndarray:
    return np.array([float(_record_field(record, "target_value")) for record in records], dtype=float)


def _median(values: np.ndarray) -> float:
    ordered = np.sort(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return float((ordered[mid - 1] + ordered[mid]) / 2)
    return float(ordered[mid])


def evaluate(predictions: np.ndarray, actuals: np.ndarray) -> Tuple[float, float, float, float]:
    """
    Held-out metrics.

    Returns:
        (r_squared, mae, tier_accuracy, directional_accuracy). Directional accuracy
        compares both values against the median of the actuals (>= counts as above).
    """
    residuals = actuals - predictions
    ss_res = float(np.sum(residuals ** 2))
    ss_tot = float(np.sum((actuals - actuals.mean()) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
    mae = float(np.mean(np.abs(residuals)))

    tier_hits = sum(1 for p, a in zip(predictions, actuals) if classify_tier(p) == classify_tier(a))
    tier_accuracy = tier_hits / len(actuals)

    median_actual = _median(actuals)
    direction_hits = sum(
        1 for p, a in zip(predictions, actuals) if (p >= median_actual) == (a >= median_actual)
    )
    directional_accuracy = direction_hits / len(actuals)

    return r_squared, mae, tier_accuracy, directional_accuracy


def train_model(
    records: Sequence[Any],
    train_ratio: float = 0.8,
    min_records: int = 3,
) -> TrainingResult:
    """
    Fit beta = (X^T X)^-1 X^T y on the chronological train slice.

    Records may be ORM rows or mappings exposing normalized_features,
    target_value and created_at.

    Args:
        records: Active dataset records
        train_ratio: Fraction of (oldest) records used for fitting
        min_records: Below this the result is the zeroed insufficient-data result

    Returns:
        TrainingResult. is_fitted is False when there was not enough data.
    """
    if len(records) < min_records:
        return TrainingResult()

    train, test = split_data(records, train_ratio)
    if not train or not test:
        return TrainingResult(
            metrics=TrainingMetrics(train_sample_count=len(train), test_sample_count=len(test))
        )

    feature_names = sorted(
        {name for record in train for name in (_record_field(record, "normalized_features") or {})}
    )

    x_train = np.hstack([np.ones((len(train), 1)), _feature_matrix(train, feature_names)])
    y_train = _targets(train)

    xtx_inv = invert_matrix(x_train.T @ x_train)
    beta = xtx_inv @ (x_train.T @ y_train)

    intercept = float(beta[0])
    coefficients = [float(b) for b in beta[1:]]

    x_test = _feature_matrix(test, feature_names)
    y_test = _targets(test)
    test_predictions = np.array([predict(coefficients, intercept, row) for row in x_test], dtype=float)

    r_squared, mae, tier_accuracy, directional_accuracy = evaluate(test_predictions, y_test)

    logger.debug(
        f"Fitted {len(feature_names)} features on {len(train)} records "
        f"(test {len(test)}): R²={r_squared:.4f}, MAE={mae:.4f}"
    )

    return TrainingResult(
        coefficients=coefficients,
        intercept=intercept,
        feature_names=feature_names,
        metrics=TrainingMetrics(
            r_squared=r_squared,
            mae=mae,
            tier_accuracy=tier_accuracy,
            directional_accuracy=directional_accuracy,
            train_sample_count=len(train),
            test_sample_count=len(test),
        ),
    )


class ModelTrainer:
    """Trains pattern models with a fixed split ratio and record floor."""

    def __init__(self, train_ratio: float = 0.8, min_records: int = 3):
        """
        Initialize trainer.

        Args:
            train_ratio: Chronological train fraction
            min_records: Minimum records the solver accepts
        """
        self.train_ratio = train_ratio
        self.min_records = min_records

    def train(self, records: Sequence[Any], dataset_id: Optional[str] = None) -> TrainingResult:
        logger.info(f"Training pattern model for dataset {dataset_id} on {len(records)} records")
        result = train_model(records, train_ratio=self.train_ratio, min_records=self.min_records)
        if not result.is_fitted:
            logger.warning(
                f"Insufficient data to train dataset {dataset_id}: "
                f"{len(records)} records (train={result.metrics.train_sample_count}, "
                f"test={result.metrics.test_sample_count})"
            )
        return result
