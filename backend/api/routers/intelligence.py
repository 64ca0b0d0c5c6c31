"""
Intelligence Core API Router

Endpoints for datasets, training, signed predictions, validation, drift and
model health, external signals, AMI, cross-layer correlations, exploration
and optimization.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_core
from api.schemas.intelligence import (
    CreateDatasetRequest,
    ExplorationRequest,
    FetchSignalsRequest,
    IngestRecordsRequest,
    KeywordRequest,
    OptimizationRequest,
    PredictRequest,
    ValidateRequest,
)
from intelcore.core import IntelligenceCore
from intelcore.ml.schemas import (
    DatasetMetrics,
    DatasetSummary,
    DriftStatus,
    ExplorationConfig,
    ExplorationDecision,
    IngestResult,
    ModelHealth,
    OptimizationResult,
    PredictionResult,
    SnapshotView,
    TrainingOutcome,
    ValidationResult,
)
from intelcore.signals.schemas import AMIScore, CrossLayerCorrelation, SignalFetchOutcome, SignalRecord

router = APIRouter(prefix="/api/intelligence", tags=["intelligence"])


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------

@router.get("/datasets", response_model=List[DatasetSummary])
def list_datasets(
    dataset_type: Optional[str] = Query(None, description="Filter by dataset type"),
    core: IntelligenceCore = Depends(get_core),
):
    return core.list_datasets(dataset_type)


@router.post("/datasets", response_model=DatasetSummary, status_code=201)
def create_dataset(body: CreateDatasetRequest, core: IntelligenceCore = Depends(get_core)):
    """Create a dataset of a registered type."""
    return core.create_dataset(
        name=body.name,
        dataset_type=body.dataset_type,
        target_metric_name=body.target_metric_name,
        description=body.description,
    )


@router.get("/datasets/{dataset_id}", response_model=DatasetSummary)
def get_dataset(dataset_id: str, core: IntelligenceCore = Depends(get_core)):
    return core.get_dataset(dataset_id)


@router.post("/datasets/{dataset_id}/records", response_model=IngestResult, status_code=201)
def ingest_records(dataset_id: str, body: IngestRecordsRequest, core: IntelligenceCore = Depends(get_core)):
    """Extract, normalize and store raw records."""
    return core.ingest_records(dataset_id, body.records)


@router.delete("/records/{record_id}")
def deactivate_record(record_id: str, core: IntelligenceCore = Depends(get_core)):
    core.deactivate_record(record_id)
    return {"record_id": record_id, "is_active": False}


# ---------------------------------------------------------------------------
# Training & Prediction
# ---------------------------------------------------------------------------

@router.post("/train/{dataset_id}", response_model=TrainingOutcome)
def train(dataset_id: str, core: IntelligenceCore = Depends(get_core)):
    """
    Train a new model for the dataset.

    Returns status "insufficient_data" (HTTP 200) when the dataset is too small.
    """
    return core.train(dataset_id)


@router.post("/predict/{dataset_id}", response_model=PredictionResult)
def predict(dataset_id: str, body: PredictRequest, core: IntelligenceCore = Depends(get_core)):
    """Predict with the latest model and store a signed snapshot."""
    return core.predict(dataset_id, body.features, source_id=body.source_id, source_type=body.source_type)


@router.get("/snapshots/{snapshot_id}", response_model=SnapshotView)
def get_snapshot(snapshot_id: str, core: IntelligenceCore = Depends(get_core)):
    return core.get_snapshot(snapshot_id)


@router.get("/snapshots/{snapshot_id}/verify")
def verify_snapshot(snapshot_id: str, core: IntelligenceCore = Depends(get_core)):
    return {"snapshot_id": snapshot_id, "valid": core.verify_snapshot(snapshot_id)}


@router.post("/confirm-upload/{snapshot_id}", response_model=SnapshotView)
def confirm_upload(snapshot_id: str, core: IntelligenceCore = Depends(get_core)):
    return core.confirm_upload(snapshot_id)


@router.post("/validate/{snapshot_id}", response_model=ValidationResult)
def validate(snapshot_id: str, body: ValidateRequest, core: IntelligenceCore = Depends(get_core)):
    """Record the observed outcome; a snapshot can be validated once."""
    return core.validate(snapshot_id, body.actual_value)


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

@router.get("/metrics/{dataset_id}", response_model=DatasetMetrics)
def get_metrics(dataset_id: str, core: IntelligenceCore = Depends(get_core)):
    return core.get_metrics(dataset_id)


@router.get("/drift/{dataset_id}", response_model=DriftStatus)
def get_drift(dataset_id: str, core: IntelligenceCore = Depends(get_core)):
    return core.get_drift(dataset_id)


@router.get("/health/{dataset_id}", response_model=ModelHealth)
def get_model_health(dataset_id: str, core: IntelligenceCore = Depends(get_core)):
    """Drift and retirement reconciled into one recommendation. Read-only: a flagged model is not retired here."""
    return core.assess_model_health(dataset_id)


@router.post("/health/{dataset_id}/reconcile", response_model=ModelHealth)
def reconcile_model_health(dataset_id: str, core: IntelligenceCore = Depends(get_core)):
    """Same assessment, and a model the retirement check flags is marked retired."""
    return core.assess_model_health(dataset_id, apply_retirement=True)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

@router.get("/signals/sources")
def list_signal_sources(core: IntelligenceCore = Depends(get_core)):
    return {"sources": [s.model_dump() for s in core.list_signal_sources()]}


@router.post("/signals/fetch", response_model=List[SignalFetchOutcome])
async def fetch_signals(body: FetchSignalsRequest, core: IntelligenceCore = Depends(get_core)):
    """
    Fetch one source, or every registered source, for a keyword.

    Rate-limited and unavailable sources are reported per outcome, not as errors.
    """
    if body.source_name:
        return [await core.fetch_signal(body.source_name, body.keyword)]
    return await core.fetch_all_signals(body.keyword)


@router.get("/signals/history", response_model=List[SignalRecord])
def get_signal_history(
    keyword: str = Query(..., min_length=1),
    source_name: Optional[str] = Query(None, description="Restrict to one source"),
    limit: int = Query(50, ge=1, le=500),
    core: IntelligenceCore = Depends(get_core),
):
    return core.get_signal_history(keyword, source_name=source_name, limit=limit)


@router.get("/ami/{keyword}", response_model=AMIScore)
def get_ami(keyword: str, core: IntelligenceCore = Depends(get_core)):
    return core.get_ami(keyword)


@router.post("/correlations/detect", response_model=List[CrossLayerCorrelation])
def detect_correlations(body: KeywordRequest, core: IntelligenceCore = Depends(get_core)):
    return core.detect_correlations(body.keyword)


# ---------------------------------------------------------------------------
# Exploration & Optimization
# ---------------------------------------------------------------------------

@router.post("/optimization/{dataset_id}", response_model=OptimizationResult)
def optimize(dataset_id: str, body: OptimizationRequest, core: IntelligenceCore = Depends(get_core)):
    return core.optimize(dataset_id, body.features)


@router.post("/exploration/{dataset_id}", response_model=ExplorationDecision)
def decide_exploration(dataset_id: str, body: ExplorationRequest, core: IntelligenceCore = Depends(get_core)):
    config = ExplorationConfig(epsilon=body.epsilon, mutation_bounds=body.mutation_bounds)
    return core.decide_exploration(dataset_id, body.features, keyword=body.keyword, config=config)
