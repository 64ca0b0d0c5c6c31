"""
Repository pattern for data access.

Provides clean interfaces for database operations, abstracting SQLAlchemy details.
Each repository handles a single aggregate and takes the session it works in;
the core never issues queries directly.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from intelcore.db.models import (
    CrossLayerPattern,
    Dataset,
    DatasetRecord,
    ExperimentGroup,
    ExternalSignal,
    ModelSnapshot,
    PatternModel,
    PredictionLog,
)
from intelcore.utils.datetime import utc_now
from intelcore.utils.errors import (
    DatasetNotFoundError,
    DuplicateRecordError,
    ModelNotFoundError,
    RecordNotFoundError,
    SnapshotNotFoundError,
)


class DatasetRepository:
    """Repository for Dataset operations."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, dataset_id: str) -> Optional[Dataset]:
        """Get dataset by ID."""
        return self.db.query(Dataset).filter(Dataset.id == dataset_id).first()

    def get(self, dataset_id: str) -> Dataset:
        """Get dataset by ID or raise DatasetNotFoundError."""
        dataset = self.get_by_id(dataset_id)
        if not dataset:
            raise DatasetNotFoundError(f"Dataset {dataset_id} not found", details={"dataset_id": dataset_id})
        return dataset

    def get_all(self, dataset_type: Optional[str] = None) -> List[Dataset]:
        query = self.db.query(Dataset)
        if dataset_type:
            query = query.filter(Dataset.dataset_type == dataset_type)
        return query.order_by(Dataset.created_at).all()

    def create(self, name: str, dataset_type: str, target_metric_name: str, **kwargs) -> Dataset:
        """Create a new dataset."""
        dataset = Dataset(
            name=name,
            dataset_type=dataset_type,
            target_metric_name=target_metric_name,
            **kwargs,
        )
        self.db.add(dataset)
        self.db.flush()
        return dataset

    def set_feature_stats(self, dataset_id: str, stats: Dict[str, Dict[str, float]]) -> Dataset:
        dataset = self.get(dataset_id)
        dataset.feature_stats = stats
        self.db.flush()
        return dataset

    def mark_trained(self, dataset_id: str, trained_at: Optional[datetime] = None) -> Dataset:
        dataset = self.get(dataset_id)
        dataset.last_trained_at = trained_at or utc_now()
        self.db.flush()
        return dataset


class DatasetRecordRepository:
    """Repository for DatasetRecord operations."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, record_id: str) -> Optional[DatasetRecord]:
        return self.db.query(DatasetRecord).filter(DatasetRecord.id == record_id).first()

    def create_many(self, dataset_id: str, rows: Sequence[Dict[str, Any]]) -> List[DatasetRecord]:
        """
        Insert a batch of records.

        Args:
            dataset_id: Owning dataset
            rows: Dicts with raw_features, normalized_features, target_value and optional created_at

        Returns:
            The persisted records in input order
        """
        records = [DatasetRecord(dataset_id=dataset_id, **row) for row in rows]
        self.db.add_all(records)
        self.db.flush()
        return records

    def get_active(self, dataset_id: str) -> List[DatasetRecord]:
        """Active records, oldest first."""
        return (
            self.db.query(DatasetRecord)
            .filter(DatasetRecord.dataset_id == dataset_id, DatasetRecord.is_active.is_(True))
            .order_by(DatasetRecord.created_at)
            .all()
        )

    def count_active(self, dataset_id: str) -> int:
        return (
            self.db.query(func.count(DatasetRecord.id))
            .filter(DatasetRecord.dataset_id == dataset_id, DatasetRecord.is_active.is_(True))
            .scalar()
        )

    def deactivate(self, record_id: str) -> DatasetRecord:
        """Soft-exclude a record from training."""
        record = self.get_by_id(record_id)
        if not record:
            raise RecordNotFoundError(f"Dataset record {record_id} not found", details={"record_id": record_id})
        record.is_active = False
        self.db.flush()
        return record


class PatternModelRepository:
    """Repository for PatternModel operations."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, model_id: str) -> Optional[PatternModel]:
        return self.db.query(PatternModel).filter(PatternModel.id == model_id).first()

    def get_latest(self, dataset_id: str) -> Optional[PatternModel]:
        """Most recently trained model for the dataset, whatever its status."""
        return (
            self.db.query(PatternModel)
            .filter(PatternModel.dataset_id == dataset_id)
            .order_by(desc(PatternModel.created_at))
            .first()
        )

    def get_latest_or_raise(self, dataset_id: str) -> PatternModel:
        model = self.get_latest(dataset_id)
        if not model:
            raise ModelNotFoundError(
                f"No trained model found for dataset {dataset_id}",
                details={"dataset_id": dataset_id},
            )
        return model

    def create(self, dataset_id: str, **kwargs) -> PatternModel:
        """Create a model, marking the previously active one superseded."""
        (
            self.db.query(PatternModel)
            .filter(PatternModel.dataset_id == dataset_id, PatternModel.status == "active")
            .update({PatternModel.status: "superseded"}, synchronize_session="fetch")
        )
        model = PatternModel(dataset_id=dataset_id, status="active", **kwargs)
        self.db.add(model)
        self.db.flush()
        return model

    def retire(self, model_id: str, reason: str) -> PatternModel:
        model = self.get_by_id(model_id)
        if not model:
            raise ModelNotFoundError(f"Model {model_id} not found", details={"model_id": model_id})
        model.status = "retired"
        model.retirement_reason = reason
        self.db.flush()
        return model


class SnapshotRepository:
    """Repository for ModelSnapshot operations."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, snapshot_id: str) -> Optional[ModelSnapshot]:
        return self.db.query(ModelSnapshot).filter(ModelSnapshot.id == snapshot_id).first()

    def get(self, snapshot_id: str) -> ModelSnapshot:
        snapshot = self.get_by_id(snapshot_id)
        if not snapshot:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found", details={"snapshot_id": snapshot_id})
        return snapshot

    def create(self, **kwargs) -> ModelSnapshot:
        snapshot = ModelSnapshot(is_locked=True, **kwargs)
        self.db.add(snapshot)
        self.db.flush()
        return snapshot

    def confirm_upload(self, snapshot_id: str) -> ModelSnapshot:
        """Flip the confirmation and tracking flags (the only allowed mutation)."""
        snapshot = self.get(snapshot_id)
        snapshot.upload_confirmed = True
        snapshot.performance_tracking_started = True
        self.db.flush()
        return snapshot


class PredictionLogRepository:
    """Repository for PredictionLog operations."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_snapshot(self, snapshot_id: str) -> Optional[PredictionLog]:
        return self.db.query(PredictionLog).filter(PredictionLog.snapshot_id == snapshot_id).first()

    def create(self, snapshot_id: str, **kwargs) -> PredictionLog:
        """Create the single log for a snapshot."""
        if self.get_by_snapshot(snapshot_id):
            raise DuplicateRecordError(
                f"Snapshot {snapshot_id} has already been validated",
                details={"snapshot_id": snapshot_id},
            )
        log = PredictionLog(snapshot_id=snapshot_id, **kwargs)
        self.db.add(log)
        self.db.flush()
        return log

    def get_recent(self, dataset_id: str, limit: int) -> List[PredictionLog]:
        """Most recent logs for the dataset, newest first."""
        return (
            self.db.query(PredictionLog)
            .filter(PredictionLog.dataset_id == dataset_id)
            .order_by(desc(PredictionLog.validated_at))
            .limit(limit)
            .all()
        )

    def get_for_model(self, model_id: str) -> List[PredictionLog]:
        """All logs produced by one model, oldest first."""
        return (
            self.db.query(PredictionLog)
            .filter(PredictionLog.model_id == model_id)
            .order_by(PredictionLog.validated_at)
            .all()
        )


class ExternalSignalRepository:
    """Repository for ExternalSignal operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, source_name: str, layer: int, keyword: str, **kwargs) -> ExternalSignal:
        signal = ExternalSignal(source_name=source_name, layer=layer, keyword=keyword, **kwargs)
        self.db.add(signal)
        self.db.flush()
        return signal

    def get_history(
        self,
        keyword: str,
        source_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[ExternalSignal]:
        """Signals for a keyword (optionally one source), newest first."""
        query = self.db.query(ExternalSignal).filter(ExternalSignal.keyword == keyword)
        if source_name:
            query = query.filter(ExternalSignal.source_name == source_name)
        return query.order_by(desc(ExternalSignal.fetched_at)).limit(limit).all()


class CrossLayerPatternRepository:
    """Repository for CrossLayerPattern operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> CrossLayerPattern:
        pattern = CrossLayerPattern(**kwargs)
        self.db.add(pattern)
        self.db.flush()
        return pattern

    def get_for_keyword(self, keyword: str, status: Optional[str] = "active") -> List[CrossLayerPattern]:
        query = self.db.query(CrossLayerPattern).filter(CrossLayerPattern.keyword == keyword)
        if status:
            query = query.filter(CrossLayerPattern.status == status)
        return query.order_by(desc(CrossLayerPattern.created_at)).all()


class ExperimentGroupRepository:
    """Repository for ExperimentGroup operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, dataset_id: str, group_type: str, epsilon: float, **kwargs) -> ExperimentGroup:
        group = ExperimentGroup(dataset_id=dataset_id, group_type=group_type, epsilon=epsilon, **kwargs)
        self.db.add(group)
        self.db.flush()
        return group

    def get_for_dataset(self, dataset_id: str) -> List[ExperimentGroup]:
        return (
            self.db.query(ExperimentGroup)
            .filter(ExperimentGroup.dataset_id == dataset_id)
            .order_by(ExperimentGroup.created_at)
            .all()
        )
