"""
SQLAlchemy 2.0 database models for the Intelligence Core.

Portable column types only (String UUID keys, JSON, Float) so the schema
works on SQLite as well as server databases.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import declarative_base, relationship

from intelcore.utils.datetime import utc_now
from intelcore.utils.errors import ImmutableRecordError

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Dataset(Base):
    """A registered collection of records sharing one feature/target extractor pair."""

    __tablename__ = "datasets"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    dataset_type = Column(String, nullable=False, index=True)
    target_metric_name = Column(String, nullable=False)
    feature_stats = Column(JSON, nullable=True)  # {feature: {min, max, mean, std_dev}}
    last_trained_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    records = relationship("DatasetRecord", back_populates="dataset")
    models = relationship("PatternModel", back_populates="dataset")

    def __repr__(self) -> str:
        return f"<Dataset(id={self.id}, name={self.name}, type={self.dataset_type})>"


class DatasetRecord(Base):
    """One observation: raw features, normalized features and target value."""

    __tablename__ = "dataset_records"
    __table_args__ = (
        Index("ix_dataset_records_dataset_created", "dataset_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    dataset_id = Column(String(36), ForeignKey("datasets.id"), nullable=False, index=True)
    raw_features = Column(JSON, nullable=False)
    normalized_features = Column(JSON, nullable=False)
    target_value = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    dataset = relationship("Dataset", back_populates="records")

    def __repr__(self) -> str:
        return f"<DatasetRecord(id={self.id}, dataset_id={self.dataset_id}, target={self.target_value})>"


class PatternModel(Base):
    """Trained linear model. coefficients[i] belongs to feature_names[i]."""

    __tablename__ = "pattern_models"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'superseded', 'retired')", name="check_pattern_model_status"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    dataset_id = Column(String(36), ForeignKey("datasets.id"), nullable=False, index=True)
    coefficients = Column(JSON, nullable=False)
    intercept = Column(Float, nullable=False, default=0.0)
    feature_names = Column(JSON, nullable=False)
    feature_stats = Column(JSON, nullable=True)  # normalization snapshot used at training time
    r_squared = Column(Float, nullable=False, default=0.0)
    mae = Column(Float, nullable=False, default=0.0)
    tier_accuracy = Column(Float, nullable=False, default=0.0)
    directional_accuracy = Column(Float, nullable=False, default=0.0)
    train_sample_count = Column(Integer, nullable=False, default=0)
    test_sample_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="active", index=True)
    retirement_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    dataset = relationship("Dataset", back_populates="models")

    def __repr__(self) -> str:
        return f"<PatternModel(id={self.id}, dataset_id={self.dataset_id}, r2={self.r_squared}, status={self.status})>"


class ModelSnapshot(Base):
    """Hash-signed prediction made before its outcome is known. Locked at insert."""

    __tablename__ = "model_snapshots"

    id = Column(String(36), primary_key=True, default=_uuid)
    dataset_id = Column(String(36), ForeignKey("datasets.id"), nullable=False, index=True)
    model_id = Column(String(36), ForeignKey("pattern_models.id"), nullable=False, index=True)
    source_id = Column(String, nullable=True)
    source_type = Column(String, nullable=True)
    feature_vector = Column(JSON, nullable=False)
    coefficients_used = Column(JSON, nullable=False)
    predicted_value = Column(Float, nullable=False)
    predicted_tier = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    hash_signature = Column(String(64), nullable=False, index=True)
    signed_at = Column(String, nullable=False)  # exact timestamp string that was hashed
    is_locked = Column(Boolean, default=True, nullable=False)
    upload_confirmed = Column(Boolean, default=False, nullable=False)
    performance_tracking_started = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<ModelSnapshot(id={self.id}, predicted={self.predicted_value}, tier={self.predicted_tier})>"


class PredictionLog(Base):
    """Outcome of validating exactly one snapshot. Never modified after insert."""

    __tablename__ = "prediction_logs"
    __table_args__ = (
        Index("ix_prediction_logs_dataset_validated", "dataset_id", "validated_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    snapshot_id = Column(String(36), ForeignKey("model_snapshots.id"), nullable=False, unique=True)
    dataset_id = Column(String(36), ForeignKey("datasets.id"), nullable=False, index=True)
    model_id = Column(String(36), ForeignKey("pattern_models.id"), nullable=False, index=True)
    predicted_value = Column(Float, nullable=False)
    actual_value = Column(Float, nullable=True)
    error = Column(Float, nullable=True)
    absolute_error = Column(Float, nullable=True)
    directionally_correct = Column(Boolean, nullable=True)
    tier_correct = Column(Boolean, nullable=True)
    predicted_tier = Column(String, nullable=True)
    actual_tier = Column(String, nullable=True)
    validated_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<PredictionLog(id={self.id}, snapshot_id={self.snapshot_id}, error={self.error})>"


class ExternalSignal(Base):
    """Append-only attention signal observation for one (source, keyword)."""

    __tablename__ = "external_signals"
    __table_args__ = (
        Index("ix_external_signals_source_keyword_fetched", "source_name", "keyword", "fetched_at"),
        Index("ix_external_signals_keyword_fetched", "keyword", "fetched_at"),
        CheckConstraint("layer >= 1 AND layer <= 6", name="check_external_signal_layer"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    source_name = Column(String, nullable=False)
    layer = Column(Integer, nullable=False)
    keyword = Column(String, nullable=False)
    normalized_features = Column(JSON, nullable=False)
    raw_data = Column(JSON, nullable=True)
    fetched_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<ExternalSignal(source={self.source_name}, layer={self.layer}, keyword={self.keyword})>"


class CrossLayerPattern(Base):
    """Lagged correlation between two consecutive attention layers for a keyword."""

    __tablename__ = "cross_layer_patterns"

    id = Column(String(36), primary_key=True, default=_uuid)
    source_layer = Column(Integer, nullable=False)
    target_layer = Column(Integer, nullable=False)
    keyword = Column(String, nullable=False, index=True)
    lag_days = Column(Integer, nullable=False)
    correlation_strength = Column(Float, nullable=False)
    confidence = Column(Float, nullable=False)
    sample_size = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="active")
    last_observed = Column(DateTime, default=utc_now)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CrossLayerPattern(L{self.source_layer}->L{self.target_layer}, "
            f"keyword={self.keyword}, lag={self.lag_days}d, r={self.correlation_strength})>"
        )


class ExperimentGroup(Base):
    """One epsilon-greedy decision: exploited features or an explored mutation."""

    __tablename__ = "experiment_groups"
    __table_args__ = (
        CheckConstraint("group_type IN ('exploitation', 'exploration')", name="check_experiment_group_type"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    dataset_id = Column(String(36), ForeignKey("datasets.id"), nullable=False, index=True)
    group_type = Column(String, nullable=False)
    epsilon = Column(Float, nullable=False)
    original_features = Column(JSON, nullable=False)
    mutated_features = Column(JSON, nullable=True)
    mutation_parameters = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<ExperimentGroup(id={self.id}, type={self.group_type}, epsilon={self.epsilon})>"


# ============================================================================
# Immutability Guards
# ============================================================================

LOCKED_SNAPSHOT_FIELDS = (
    "feature_vector",
    "coefficients_used",
    "predicted_value",
    "predicted_tier",
    "confidence",
    "hash_signature",
    "signed_at",
    "is_locked",
)


def _changed_fields(target, field_names) -> list:
    state = inspect(target)
    return [name for name in field_names if state.attrs[name].history.has_changes()]


@event.listens_for(ModelSnapshot, "before_update")
def _guard_locked_snapshot(mapper, connection, target):
    """Only confirmation and tracking flags may change on a locked snapshot."""
    changed = _changed_fields(target, LOCKED_SNAPSHOT_FIELDS)
    if changed:
        raise ImmutableRecordError(
            f"Snapshot {target.id} is locked",
            details={"snapshot_id": target.id, "fields": changed},
        )


@event.listens_for(PredictionLog, "before_update")
def _guard_prediction_log(mapper, connection, target):
    changed = _changed_fields(target, [attr.key for attr in mapper.column_attrs])
    if changed:
        raise ImmutableRecordError(
            f"Prediction log {target.id} is immutable",
            details={"prediction_log_id": target.id, "fields": changed},
        )
