"""
Pydantic schemas for training, prediction, monitoring and exploration results.

Expected steady-state conditions (insufficient data, no drift) are represented
in these result types rather than raised.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


Tier = Literal["top", "mid", "low"]


class FeatureStats(BaseModel):
    """Per-feature statistics over a historical sample."""

    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    std_dev: float = 0.0


class TrainingMetrics(BaseModel):
    """Held-out (test slice) accuracy metrics."""

    r_squared: float = 0.0
    mae: float = 0.0
    tier_accuracy: float = 0.0
    directional_accuracy: float = 0.0
    train_sample_count: int = 0
    test_sample_count: int = 0


class TrainingResult(BaseModel):
    """Output of the closed-form solver. Empty coefficients mean insufficient data."""

    coefficients: List[float] = Field(default_factory=list)
    intercept: float = 0.0
    feature_names: List[str] = Field(default_factory=list)
    metrics: TrainingMetrics = Field(default_factory=TrainingMetrics)

    @property
    def is_fitted(self) -> bool:
        """False for the zeroed insufficient-data result."""
        return self.metrics.train_sample_count > 0 and self.metrics.test_sample_count > 0


class TrainingOutcome(BaseModel):
    """Result of IntelligenceCore.train."""

    model_config = ConfigDict(protected_namespaces=())

    status: Literal["trained", "insufficient_data"]
    dataset_id: str
    record_count: int
    model_id: Optional[str] = None
    result: Optional[TrainingResult] = None
    message: str = ""


class PredictionResult(BaseModel):
    """Result of IntelligenceCore.predict."""

    model_config = ConfigDict(protected_namespaces=())

    snapshot_id: str
    model_id: str
    predicted_value: float
    predicted_tier: Tier
    confidence: float
    hash_signature: str
    feature_vector: List[float]


class SnapshotView(BaseModel):
    """Read-only view of a locked prediction snapshot."""

    model_config = ConfigDict(frozen=True, from_attributes=True, protected_namespaces=())

    id: str
    dataset_id: str
    model_id: str
    source_id: Optional[str] = None
    source_type: Optional[str] = None
    feature_vector: List[float]
    coefficients_used: List[float]
    predicted_value: float
    predicted_tier: Tier
    confidence: float
    hash_signature: str
    signed_at: str
    is_locked: bool = True
    upload_confirmed: bool = False
    performance_tracking_started: bool = False
    created_at: Optional[datetime] = None


class ValidationResult(BaseModel):
    """Result of validating a snapshot against an observed outcome."""

    model_config = ConfigDict(protected_namespaces=())

    prediction_log_id: str
    snapshot_id: str
    dataset_id: str
    model_id: str
    predicted_value: float
    actual_value: float
    error: float
    absolute_error: float
    directionally_correct: bool
    tier_correct: bool
    predicted_tier: Optional[str] = None
    actual_tier: Tier
    validated_at: datetime


class RollingAccuracy(BaseModel):
    """Mean accuracy over the most recent validated prediction logs."""

    directional_accuracy: float = 0.0
    tier_accuracy: float = 0.0
    mean_absolute_error: float = 0.0
    sample_count: int = 0


class ModelSummary(BaseModel):
    """Stored model parameters and metrics."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    dataset_id: str
    coefficients: List[float]
    intercept: float
    feature_names: List[str]
    feature_stats: Optional[Dict[str, Dict[str, float]]] = None
    r_squared: float
    mae: float
    tier_accuracy: float
    directional_accuracy: float
    train_sample_count: int
    test_sample_count: int
    status: str
    retirement_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class DatasetMetrics(BaseModel):
    dataset_id: str
    rolling_accuracy: RollingAccuracy
    latest_model: Optional[ModelSummary] = None


class DriftStatus(BaseModel):
    """Outcome of drift detection over recent validated predictions."""

    drift_detected: bool = False
    drift_type: Optional[Literal["overestimation", "engagement_drop"]] = None
    severity: Literal["none", "mild", "moderate", "severe"] = "none"
    recommendation: Literal["none", "reduce_confidence", "retrain", "increase_exploration"] = "none"
    details: str = ""
    sample_count: int = 0
    reason: Optional[str] = None


class RetirementResult(BaseModel):
    """Outcome of the pattern retirement check."""

    pattern_id: str
    retired: bool = False
    reason: Optional[str] = None
    underperformance_std_dev: float = 0.0
    sample_count: int = 0


class ModelHealth(BaseModel):
    """Drift and retirement reconciled into one recommendation."""

    model_config = ConfigDict(protected_namespaces=())

    dataset_id: str
    model_id: Optional[str] = None
    model_status: Optional[str] = None
    drift: DriftStatus
    retirement: Optional[RetirementResult] = None
    recommendation: Literal["none", "reduce_confidence", "retrain", "increase_exploration"] = "none"
    healthy: bool = True


class TrendPoint(BaseModel):
    value: float
    timestamp: datetime


class TrendSignal(BaseModel):
    """Latest value of a metric relative to its rolling window."""

    signal_type: str = "trend"
    metric_name: str = "metric"
    value: float = 0.0
    rolling_mean: float = 0.0
    z_score: float = 0.0
    acceleration: float = 0.0
    is_anomaly: bool = False


class MutationBound(BaseModel):
    min: float
    max: float
    step: float = Field(gt=0)

    @model_validator(mode="after")
    def check_range(self) -> "MutationBound":
        if self.min > self.max:
            raise ValueError(f"mutation bound min ({self.min}) is greater than max ({self.max})")
        return self


class ExplorationConfig(BaseModel):
    """Per-call override of the epsilon-greedy parameters."""

    epsilon: Optional[float] = Field(default=None, ge=0, le=1)
    mutation_bounds: Optional[Dict[str, MutationBound]] = None


class FeatureMutation(BaseModel):
    original: float
    mutated: float
    delta: float


class ExplorationDecision(BaseModel):
    """One epsilon-greedy decision."""

    group_type: Literal["exploitation", "exploration"]
    epsilon: float
    features: Dict[str, float]
    mutation_parameters: Optional[Dict[str, float]] = None
    original_features: Optional[Dict[str, float]] = None
    ami_stage: Optional[str] = None
    experiment_group_id: Optional[str] = None


class OptimizationSuggestion(BaseModel):
    feature_name: str
    current_value: float
    suggested_value: float
    delta: float
    predicted_gain: float
    confidence: float


class OptimizationResult(BaseModel):
    """Greedy single-feature lift suggestions. Not a joint optimum."""

    suggestions: List[OptimizationSuggestion] = Field(default_factory=list)
    current_prediction: float = 0.0
    optimized_prediction: float = 0.0
    total_projected_lift: float = 0.0
    lift_percent: float = 0.0
    report: Optional[str] = None


class DatasetSummary(BaseModel):
    """Stored dataset definition and its current normalization statistics."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    dataset_type: str
    target_metric_name: str
    feature_stats: Optional[Dict[str, FeatureStats]] = None
    last_trained_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class IngestResult(BaseModel):
    dataset_id: str
    ingested_count: int
    record_ids: List[str] = Field(default_factory=list)
    active_record_count: int = 0
