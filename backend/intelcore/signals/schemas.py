"""
Pydantic schemas for external attention signals and the AMI.

Normalized signal features are stored and serialized with camelCase keys
(velocity, acceleration, relativeDeviation, anomalyZScore,
attentionDensityScore).
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


UpdateFrequency = Literal["hourly", "daily", "weekly"]
AMIStage = Literal["early_noise", "search_growth", "buyer_interest", "media_amplification"]


class NormalizedSignalFeatures(BaseModel):
    """Uniform feature shape every source normalizes into."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    velocity: float = 0.0
    acceleration: float = 0.0
    relative_deviation: float = 0.0
    anomaly_z_score: float = 0.0
    attention_density_score: float = 0.0

    def to_storage(self) -> Dict[str, float]:
        return self.model_dump(by_alias=True)


class SignalSourceInfo(BaseModel):
    name: str
    layer: int
    update_frequency: UpdateFrequency


class SignalRecord(BaseModel):
    """Persisted external signal."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    source_name: str
    layer: int
    keyword: str
    normalized_features: Dict[str, float]
    raw_data: Optional[Any] = None
    fetched_at: datetime


class SignalFetchOutcome(BaseModel):
    """Result of one fetch attempt.

    status:
        fetched      a signal was persisted (raw data may still be a mock marker)
        rate_limited the (source, keyword) pair was fetched too recently
        unavailable  the fetch or normalization failed; see error
    """

    source_name: str
    keyword: str
    layer: Optional[int] = None
    status: Literal["fetched", "rate_limited", "unavailable"]
    signal: Optional[SignalRecord] = None
    error: Optional[str] = None


class TimePoint(BaseModel):
    value: float
    timestamp: datetime


class LayerSeries(BaseModel):
    """One layer's time series for a keyword."""

    layer: int
    keyword: str
    values: List[TimePoint] = Field(default_factory=list)


class LagCorrelation(BaseModel):
    lag_days: int = 0
    correlation_strength: float = 0.0
    sample_size: int = 0


class CrossLayerCorrelation(BaseModel):
    source_layer: int
    target_layer: int
    keyword: str
    lag_days: int
    correlation_strength: float
    confidence: float
    sample_size: int
    pattern_id: Optional[str] = None


class AMIComponents(BaseModel):
    cultural_spike_score: float = 0.0
    search_acceleration_score: float = 0.0
    marketplace_rank_delta_score: float = 0.0
    media_amplification_score: float = 0.0


class AMIScore(BaseModel):
    """Attention Migration Index for a keyword."""

    ami: float
    stage: AMIStage
    confidence: float
    components: AMIComponents
    layer_scores: Dict[int, float] = Field(default_factory=dict)
