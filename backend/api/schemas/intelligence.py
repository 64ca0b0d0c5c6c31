"""Request bodies for the intelligence endpoints"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from intelcore.ml.schemas import MutationBound


class CreateDatasetRequest(BaseModel):
    name: str = Field(..., min_length=1)
    dataset_type: str = Field(..., description="Registered dataset type, e.g. 'video_ads'")
    target_metric_name: Optional[str] = None
    description: Optional[str] = None


class IngestRecordsRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(..., min_length=1, description="Raw records for the dataset type's extractors")


class PredictRequest(BaseModel):
    features: Dict[str, float] = Field(..., description="Raw feature values keyed by feature name")
    source_id: Optional[str] = None
    source_type: Optional[str] = None


class ValidateRequest(BaseModel):
    actual_value: float


class FetchSignalsRequest(BaseModel):
    keyword: str = Field(..., min_length=1)
    source_name: Optional[str] = Field(None, description="Fetch one source; all registered sources if omitted")


class KeywordRequest(BaseModel):
    keyword: str = Field(..., min_length=1)


class OptimizationRequest(BaseModel):
    features: Dict[str, float] = Field(..., description="Normalized feature values")


class ExplorationRequest(BaseModel):
    features: Dict[str, float] = Field(default_factory=dict)
    keyword: Optional[str] = Field(None, description="Scale epsilon by this keyword's AMI stage")
    epsilon: Optional[float] = Field(None, ge=0, le=1)
    mutation_bounds: Optional[Dict[str, MutationBound]] = None
