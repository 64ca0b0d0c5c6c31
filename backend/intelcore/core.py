"""
Intelligence Core facade.

Owns the dataset type and signal source registries, the fetch rate limiter
and the per-dataset training locks, and exposes every operation the HTTP
layer and the jobs call. Each operation runs in its own transaction scope.
"""

import random
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from intelcore.config import Settings, settings as default_settings
from intelcore.db.models import PatternModel
from intelcore.db.repositories import (
    CrossLayerPatternRepository,
    DatasetRecordRepository,
    DatasetRepository,
    ExperimentGroupRepository,
    ExternalSignalRepository,
    PatternModelRepository,
    PredictionLogRepository,
)
from intelcore.db.session import build_engine, build_session_factory, init_db, transaction_scope
from intelcore.ml.exploration import ExplorationEngine
from intelcore.ml.feature_store import (
    DatasetTypeRegistry,
    collect_feature_arrays,
    compute_feature_stats,
    normalize_features,
    register_video_ad_types,
)
from intelcore.ml.feature_store.registry import FeatureExtractor, TargetExtractor, stats_from_dict, stats_to_dict
from intelcore.ml.monitoring import DriftMonitor, PatternRetirementMonitor, reconcile_health
from intelcore.ml.optimization import generate_optimization_report, optimize_features
from intelcore.ml.schemas import (
    DatasetMetrics,
    DatasetSummary,
    DriftStatus,
    ExplorationConfig,
    ExplorationDecision,
    IngestResult,
    ModelHealth,
    ModelSummary,
    OptimizationResult,
    PredictionResult,
    RetirementResult,
    RollingAccuracy,
    SnapshotView,
    TrainingOutcome,
    ValidationResult,
)
from intelcore.ml.serving import PredictionService, verify_snapshot_signature
from intelcore.ml.training import ModelTrainer, classify_tier, predict
from intelcore.signals.correlation import compute_ami, find_cross_layer_patterns, layer_score_from_features
from intelcore.signals.ingestion import SignalIngestor, SignalSource, SignalSourceRegistry
from intelcore.signals.schemas import (
    AMIScore,
    CrossLayerCorrelation,
    LayerSeries,
    SignalFetchOutcome,
    SignalRecord,
    SignalSourceInfo,
    TimePoint,
)
from intelcore.signals.sources import register_all_signal_sources
from intelcore.utils.datetime import to_naive_utc, utc_now
from intelcore.utils.errors import DatasetTypeNotRegisteredError, ValidationError
from intelcore.utils.rate_limit import FetchRateLimiter
from intelcore.log_config import logger


AMI_SIGNAL_SCAN_LIMIT = 100
CORRELATION_SIGNAL_LIMIT = 100


class IntelligenceCore:
    """
    Dataset-agnostic predictive modeling and attention-signal engine.

    Registration (dataset types, signal sources) must finish before the first
    ingest, train, predict or fetch call.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[sessionmaker] = None,
        dataset_types: Optional[DatasetTypeRegistry] = None,
        signal_sources: Optional[SignalSourceRegistry] = None,
        rate_limiter: Optional[FetchRateLimiter] = None,
        rng: Optional[random.Random] = None,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        """
        Initialize the core.

        Args:
            settings: Configuration (module-level settings if omitted)
            session_factory: Session factory bound to an initialized database
            dataset_types: Dataset type registry (video ad types registered if omitted)
            signal_sources: Signal source registry (empty if omitted)
            rate_limiter: Fetch rate limiter shared with the ingestor
            rng: Randomness for exploration decisions
            http_client_factory: Builds the AsyncClient used for signal fetches
        """
        if session_factory is None:
            raise ValueError("session_factory is required")

        self.settings = settings or default_settings
        self.session_factory = session_factory

        if dataset_types is None:
            dataset_types = DatasetTypeRegistry()
            register_video_ad_types(dataset_types)
        self.dataset_types = dataset_types
        self.signal_sources = signal_sources if signal_sources is not None else SignalSourceRegistry()
        self.rate_limiter = rate_limiter or FetchRateLimiter(enabled=self.settings.rate_limit_enabled)

        self.trainer = ModelTrainer(
            train_ratio=self.settings.train_ratio,
            min_records=self.settings.core_min_training_records,
        )
        self.drift_monitor = DriftMonitor(window_size=self.settings.drift_window)
        self.retirement_monitor = PatternRetirementMonitor()
        self.exploration = ExplorationEngine(
            mutation_bounds=self.settings.mutation_bounds,
            base_epsilon=self.settings.exploration_base_epsilon,
            rng=rng,
        )
        self.ingestor = SignalIngestor(
            registry=self.signal_sources,
            session_factory=session_factory,
            rate_limiter=self.rate_limiter,
            timeout=self.settings.signal_fetch_timeout_seconds,
            user_agent=self.settings.signal_user_agent,
            client_factory=http_client_factory,
        )

        self._training_locks: Dict[str, threading.Lock] = {}
        self._training_locks_guard = threading.Lock()

    # ========================================================================
    # Registration
    # ========================================================================

    def register_dataset_type(
        self,
        dataset_type: str,
        feature_extractor: FeatureExtractor,
        target_extractor: TargetExtractor,
        target_metric_name: str = "target",
    ) -> None:
        self.dataset_types.register(dataset_type, feature_extractor, target_extractor, target_metric_name)

    def register_signal_source(self, source: SignalSource) -> None:
        self.signal_sources.register(source)

    def register_default_signal_sources(self) -> None:
        register_all_signal_sources(self.signal_sources, self.settings)

    # ========================================================================
    # Datasets
    # ========================================================================

    def create_dataset(
        self,
        name: str,
        dataset_type: str,
        target_metric_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> DatasetSummary:
        """
        Create a dataset of a registered type.

        Raises:
            DatasetTypeNotRegisteredError: If the type has no registration
        """
        registration = self.dataset_types.get(dataset_type)
        if registration is None:
            raise DatasetTypeNotRegisteredError(
                f"Dataset type '{dataset_type}' is not registered",
                details={"dataset_type": dataset_type, "registered": self.dataset_types.list_types()},
            )

        with transaction_scope(self.session_factory) as db:
            dataset = DatasetRepository(db).create(
                name=name,
                dataset_type=dataset_type,
                target_metric_name=target_metric_name or registration.target_metric_name,
                description=description,
            )
            logger.info(f"Created dataset {dataset.id} ({name}, type={dataset_type})")
            return DatasetSummary.model_validate(dataset)

    def get_dataset(self, dataset_id: str) -> DatasetSummary:
        with transaction_scope(self.session_factory) as db:
            return DatasetSummary.model_validate(DatasetRepository(db).get(dataset_id))

    def list_datasets(self, dataset_type: Optional[str] = None) -> List[DatasetSummary]:
        with transaction_scope(self.session_factory) as db:
            return [DatasetSummary.model_validate(d) for d in DatasetRepository(db).get_all(dataset_type)]

    def ingest_records(
        self,
        dataset_id: str,
        raw_records: Sequence[Mapping[str, Any]],
        created_at: Optional[datetime] = None,
    ) -> IngestResult:
        """
        Extract, normalize and store a batch of raw records.

        The dataset's statistics snapshot is recomputed over the raw features of
        every active record plus the batch and the batch is normalized with it.
        Training re-normalizes every active record from one snapshot, so earlier
        rows never mix scales in a model.

        A raw record's own "created_at" (datetime or ISO string) takes precedence
        over the batch-level created_at.

        Raises:
            DatasetNotFoundError: If the dataset does not exist
            DatasetTypeNotRegisteredError: If the dataset's type is no longer registered
            ValidationError: If a record's created_at cannot be parsed
        """
        with transaction_scope(self.session_factory) as db:
            datasets = DatasetRepository(db)
            records = DatasetRecordRepository(db)
            dataset = datasets.get(dataset_id)

            if dataset.dataset_type not in self.dataset_types:
                raise DatasetTypeNotRegisteredError(
                    f"Dataset type '{dataset.dataset_type}' is not registered",
                    details={"dataset_id": dataset_id, "dataset_type": dataset.dataset_type},
                )

            extracted = [self.dataset_types.extract(dataset.dataset_type, raw) for raw in raw_records]

            history = [r.raw_features or {} for r in records.get_active(dataset_id)]
            stats = compute_feature_stats(collect_feature_arrays(history + [e.features for e in extracted]))
            datasets.set_feature_stats(dataset_id, stats_to_dict(stats))

            rows = []
            for raw, item in zip(raw_records, extracted):
                row = {
                    "raw_features": item.features,
                    "normalized_features": normalize_features(item.features, stats),
                    "target_value": item.target,
                }
                try:
                    stamp = to_naive_utc(raw.get("created_at")) or created_at
                except ValueError as e:
                    raise ValidationError(
                        f"Invalid created_at: {raw.get('created_at')!r}",
                        details={"dataset_id": dataset_id, "created_at": str(raw.get("created_at"))},
                    ) from e
                if stamp is not None:
                    row["created_at"] = stamp
                rows.append(row)

            stored = records.create_many(dataset_id, rows)
            active = records.count_active(dataset_id)
            logger.info(f"Ingested {len(stored)} records into dataset {dataset_id} ({active} active)")

            return IngestResult(
                dataset_id=dataset_id,
                ingested_count=len(stored),
                record_ids=[r.id for r in stored],
                active_record_count=active,
            )

    def deactivate_record(self, record_id: str) -> None:
        with transaction_scope(self.session_factory) as db:
            DatasetRecordRepository(db).deactivate(record_id)
        logger.info(f"Deactivated dataset record {record_id}")

    # ========================================================================
    # Training
    # ========================================================================

    def _training_lock(self, dataset_id: str) -> threading.Lock:
        with self._training_locks_guard:
            return self._training_locks.setdefault(dataset_id, threading.Lock())

    def train(self, dataset_id: str) -> TrainingOutcome:
        """
        Train a new pattern model over the dataset's active records.

        Trainings of one dataset are serialized. Active records are normalized
        afresh with statistics computed over all of them, and those statistics
        are stored on the model for its predictions. The new model becomes the
        active one; the previously active model is marked superseded.

        Raises:
            DatasetNotFoundError: If the dataset does not exist

        Returns:
            TrainingOutcome with status "trained" or "insufficient_data"
        """
        with self._training_lock(dataset_id):
            with transaction_scope(self.session_factory) as db:
                datasets = DatasetRepository(db)
                datasets.get(dataset_id)
                records = DatasetRecordRepository(db).get_active(dataset_id)

                required = self.settings.min_training_records
                if len(records) < required:
                    logger.info(
                        f"Dataset {dataset_id} has {len(records)} active records; {required} required for training"
                    )
                    return TrainingOutcome(
                        status="insufficient_data",
                        dataset_id=dataset_id,
                        record_count=len(records),
                        message=f"Insufficient data: {len(records)} active records, {required} required",
                    )

                stats = compute_feature_stats(collect_feature_arrays([r.raw_features or {} for r in records]))
                for record in records:
                    record.normalized_features = normalize_features(record.raw_features or {}, stats)
                feature_stats = stats_to_dict(stats)
                datasets.set_feature_stats(dataset_id, feature_stats)

                result = self.trainer.train(records, dataset_id)
                if not result.is_fitted:
                    return TrainingOutcome(
                        status="insufficient_data",
                        dataset_id=dataset_id,
                        record_count=len(records),
                        result=result,
                        message="Insufficient data to form train and test slices",
                    )

                metrics = result.metrics
                model = PatternModelRepository(db).create(
                    dataset_id,
                    coefficients=result.coefficients,
                    intercept=result.intercept,
                    feature_names=result.feature_names,
                    feature_stats=feature_stats,
                    r_squared=metrics.r_squared,
                    mae=metrics.mae,
                    tier_accuracy=metrics.tier_accuracy,
                    directional_accuracy=metrics.directional_accuracy,
                    train_sample_count=metrics.train_sample_count,
                    test_sample_count=metrics.test_sample_count,
                )
                datasets.mark_trained(dataset_id)

                logger.info(
                    f"Trained model {model.id} for dataset {dataset_id}: "
                    f"R²={metrics.r_squared:.4f}, MAE={metrics.mae:.4f}, "
                    f"train={metrics.train_sample_count}, test={metrics.test_sample_count}"
                )
                return TrainingOutcome(
                    status="trained",
                    dataset_id=dataset_id,
                    record_count=len(records),
                    model_id=model.id,
                    result=result,
                    message="Model trained",
                )

    # ========================================================================
    # Prediction & Validation
    # ========================================================================

    def predict(
        self,
        dataset_id: str,
        raw_features: Mapping[str, float],
        source_id: Optional[str] = None,
        source_type: Optional[str] = None,
    ) -> PredictionResult:
        """
        Predict with the dataset's latest model and persist a signed snapshot.

        Raw features are normalized with the statistics the model was trained
        with (the dataset's snapshot for models that predate them) and laid out in the model's feature_names order; missing features are 0.

        Raises:
            DatasetNotFoundError: If the dataset does not exist
            ModelNotFoundError: If the dataset has never been trained
        """
        with transaction_scope(self.session_factory) as db:
            dataset = DatasetRepository(db).get(dataset_id)
            model = PatternModelRepository(db).get_latest_or_raise(dataset_id)
            if model.status == "retired":
                logger.warning(f"Predicting with retired model {model.id} for dataset {dataset_id}")

            normalized = normalize_features(
                {name: float(value) for name, value in raw_features.items()},
                stats_from_dict(model.feature_stats or dataset.feature_stats),
            )
            vector = [normalized.get(name, 0.0) for name in model.feature_names]

            predicted_value = predict(model.coefficients, model.intercept, vector)
            predicted_tier = classify_tier(predicted_value)
            confidence = max(0.0, min(1.0, model.r_squared or 0.0))

            snapshot = PredictionService(db).create_snapshot(
                model,
                vector,
                predicted_value,
                predicted_tier,
                confidence,
                source_id=source_id,
                source_type=source_type,
            )
            return PredictionResult(
                snapshot_id=snapshot.id,
                model_id=model.id,
                predicted_value=predicted_value,
                predicted_tier=predicted_tier,
                confidence=confidence,
                hash_signature=snapshot.hash_signature,
                feature_vector=vector,
            )

    def get_snapshot(self, snapshot_id: str) -> SnapshotView:
        with transaction_scope(self.session_factory) as db:
            return PredictionService(db).get_snapshot(snapshot_id)

    def verify_snapshot(self, snapshot_id: str) -> bool:
        """True when the stored snapshot still matches its hash signature."""
        return verify_snapshot_signature(self.get_snapshot(snapshot_id))

    def confirm_upload(self, snapshot_id: str) -> SnapshotView:
        with transaction_scope(self.session_factory) as db:
            return PredictionService(db).confirm_upload(snapshot_id)

    def validate(self, snapshot_id: str, actual_value: float) -> ValidationResult:
        """
        Record the observed outcome for a snapshot.

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
            DuplicateRecordError: If the snapshot was already validated
        """
        with transaction_scope(self.session_factory) as db:
            return PredictionService(db).validate_prediction(snapshot_id, float(actual_value))

    def get_rolling_accuracy(self, dataset_id: str, window_size: Optional[int] = None) -> RollingAccuracy:
        """
        Raises:
            ValidationError: If window_size is below 1
        """
        window = self.settings.rolling_accuracy_window if window_size is None else window_size
        if window < 1:
            raise ValidationError("window_size must be at least 1", details={"window_size": window})
        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            return PredictionService(db).get_rolling_accuracy(dataset_id, window)

    def get_metrics(self, dataset_id: str) -> DatasetMetrics:
        """Rolling accuracy plus the latest model, if any."""
        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            rolling = PredictionService(db).get_rolling_accuracy(dataset_id, self.settings.rolling_accuracy_window)
            model = PatternModelRepository(db).get_latest(dataset_id)
            return DatasetMetrics(
                dataset_id=dataset_id,
                rolling_accuracy=rolling,
                latest_model=ModelSummary.model_validate(model) if model else None,
            )

    # ========================================================================
    # Drift & Retirement
    # ========================================================================

    def _detect_drift(self, db: Session, dataset_id: str) -> DriftStatus:
        logs = PredictionLogRepository(db).get_recent(dataset_id, self.settings.drift_history_limit)
        return self.drift_monitor.detect(list(reversed(logs)))

    def _check_retirement(self, db: Session, model: PatternModel, apply: bool = True) -> RetirementResult:
        logs = PredictionLogRepository(db).get_for_model(model.id)
        result = self.retirement_monitor.check(model.id, logs)
        if apply and result.retired and model.status != "retired":
            PatternModelRepository(db).retire(model.id, result.reason)
        return result

    def get_drift(self, dataset_id: str) -> DriftStatus:
        """Drift over the dataset's most recent prediction logs."""
        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            return self._detect_drift(db, dataset_id)

    def check_retirement(self, dataset_id: str) -> RetirementResult:
        """
        Run the retirement check over every log of the latest model and retire it if flagged.

        Raises:
            ModelNotFoundError: If the dataset has never been trained
        """
        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            model = PatternModelRepository(db).get_latest_or_raise(dataset_id)
            return self._check_retirement(db, model)

    def assess_model_health(self, dataset_id: str, apply_retirement: bool = False) -> ModelHealth:
        """
        Drift and retirement reconciled; retirement overrides the drift recommendation.

        Read-only unless apply_retirement is set, in which case a model the
        retirement check flags is marked retired in storage.
        """
        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            drift = self._detect_drift(db, dataset_id)
            model = PatternModelRepository(db).get_latest(dataset_id)
            if model is None:
                return reconcile_health(dataset_id, drift, None)

            retirement = self._check_retirement(db, model, apply=apply_retirement)
            health = reconcile_health(dataset_id, drift, retirement, model.id, model.status)
            if not health.healthy:
                logger.warning(f"Dataset {dataset_id} model {model.id} unhealthy: {health.recommendation}")
            return health

    # ========================================================================
    # Signals
    # ========================================================================

    async def fetch_signal(self, source_name: str, keyword: str) -> SignalFetchOutcome:
        return await self.ingestor.fetch_signal(source_name, keyword)

    async def fetch_all_signals(self, keyword: str) -> List[SignalFetchOutcome]:
        return await self.ingestor.fetch_all_signals(keyword)

    def get_signal_history(
        self,
        keyword: str,
        source_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[SignalRecord]:
        return self.ingestor.get_signal_history(keyword, source_name=source_name, limit=limit)

    def list_signal_sources(self) -> List[SignalSourceInfo]:
        return self.signal_sources.list_sources()

    def get_ami(self, keyword: str) -> AMIScore:
        """AMI from the most recent signal of each layer; storage errors yield the empty AMI."""
        try:
            with transaction_scope(self.session_factory) as db:
                signals = ExternalSignalRepository(db).get_history(keyword, limit=AMI_SIGNAL_SCAN_LIMIT)
                latest_by_layer = {}
                for signal in signals:
                    if signal.layer is not None and signal.layer not in latest_by_layer:
                        latest_by_layer[signal.layer] = signal.normalized_features
        except SQLAlchemyError as e:
            logger.error(f"Error computing AMI for keyword \"{keyword}\": {e}")
            return compute_ami({})

        layer_scores = {
            layer: layer_score_from_features(features)
            for layer, features in latest_by_layer.items()
            if isinstance(features, dict)
        }
        return compute_ami(layer_scores)

    def detect_correlations(self, keyword: str) -> List[CrossLayerCorrelation]:
        """Lag correlations between consecutive layers of the keyword's stored signals, persisted as active patterns."""
        with transaction_scope(self.session_factory) as db:
            signals = ExternalSignalRepository(db).get_history(keyword, limit=CORRELATION_SIGNAL_LIMIT)

            by_layer: Dict[int, List[TimePoint]] = {}
            for signal in signals:
                features = signal.normalized_features or {}
                by_layer.setdefault(signal.layer, []).append(
                    TimePoint(value=float(features.get("attentionDensityScore") or 0.0), timestamp=signal.fetched_at)
                )
            series = [
                LayerSeries(layer=layer, keyword=keyword, values=points)
                for layer, points in sorted(by_layer.items())
            ]

            correlations = find_cross_layer_patterns(series, max_lag_days=self.settings.max_lag_days)

            patterns = CrossLayerPatternRepository(db)
            observed_at = utc_now()
            stored = []
            for correlation in correlations:
                pattern = patterns.create(
                    **correlation.model_dump(exclude={"pattern_id"}),
                    status="active",
                    last_observed=observed_at,
                )
                stored.append(correlation.model_copy(update={"pattern_id": pattern.id}))
                logger.info(
                    f"Stored cross-layer pattern L{correlation.source_layer}->L{correlation.target_layer} "
                    f"for \"{keyword}\": lag={correlation.lag_days}d r={correlation.correlation_strength:.3f}"
                )
            return stored

    # ========================================================================
    # Exploration & Optimization
    # ========================================================================

    def decide_exploration(
        self,
        dataset_id: str,
        features: Mapping[str, float],
        keyword: Optional[str] = None,
        config: Optional[ExplorationConfig] = None,
    ) -> ExplorationDecision:
        """
        Epsilon-greedy decision, recorded as an ExperimentGroup.

        With a keyword the epsilon is scaled by the keyword's AMI stage.
        """
        ami_stage = self.get_ami(keyword).stage if keyword else None
        config = config or ExplorationConfig()

        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            decision = self.exploration.decide(
                features,
                ami_stage=ami_stage,
                epsilon=config.epsilon,
                mutation_bounds=config.mutation_bounds,
            )
            explored = decision.group_type == "exploration"
            group = ExperimentGroupRepository(db).create(
                dataset_id=dataset_id,
                group_type=decision.group_type,
                epsilon=decision.epsilon,
                original_features=decision.original_features if explored else decision.features,
                mutated_features=decision.features if explored else None,
                mutation_parameters=decision.mutation_parameters,
            )
            return decision.model_copy(update={"experiment_group_id": group.id})

    def optimize(self, dataset_id: str, features: Mapping[str, float]) -> OptimizationResult:
        """
        Lift suggestions for normalized features under the latest model.

        Raises:
            ModelNotFoundError: If the dataset has never been trained
        """
        with transaction_scope(self.session_factory) as db:
            DatasetRepository(db).get(dataset_id)
            model = PatternModelRepository(db).get_latest_or_raise(dataset_id)
            result = optimize_features(
                features,
                model.coefficients,
                model.intercept,
                model.feature_names,
                step_size=self.settings.optimization_step_size,
            )
        result.report = generate_optimization_report(result)
        return result


def build_core(app_settings: Optional[Settings] = None, with_signal_sources: bool = True) -> IntelligenceCore:
    """Build a core over app_settings.database_url, creating tables if needed."""
    app_settings = app_settings or default_settings
    engine = build_engine(app_settings.database_url)
    init_db(engine)
    core = IntelligenceCore(settings=app_settings, session_factory=build_session_factory(engine))
    if with_signal_sources:
        core.register_default_signal_sources()
    return core
