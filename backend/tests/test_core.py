"""
Integration tests for IntelligenceCore over an in-memory database.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import linear_records
from intelcore.core import IntelligenceCore
from intelcore.ml import serving
from intelcore.db.repositories import ExperimentGroupRepository, ExternalSignalRepository
from intelcore.db.session import transaction_scope
from intelcore.ml.schemas import ExplorationConfig
from intelcore.signals.ingestion import SignalSource
from intelcore.signals.schemas import NormalizedSignalFeatures
from intelcore.utils.errors import (
    DatasetNotFoundError,
    DatasetTypeNotRegisteredError,
    DuplicateRecordError,
    ModelNotFoundError,
    RecordNotFoundError,
    ValidationError,
)


def density_source(name, layer, density):
    async def fetch(keyword, client):
        return {"mock": False, "density": density}

    return SignalSource(
        name=name,
        layer=layer,
        fetch=fetch,
        normalize=lambda raw: NormalizedSignalFeatures(attention_density_score=raw["density"]),
        extract_features=lambda raw: {"density": raw["density"]},
    )


@pytest.fixture
def trained(core):
    dataset = core.create_dataset("linear ads", "linear")
    core.ingest_records(dataset.id, linear_records(12))
    outcome = core.train(dataset.id)
    assert outcome.status == "trained"
    return dataset


class TestConstruction:
    def test_requires_session_factory(self, test_settings):
        with pytest.raises(ValueError):
            IntelligenceCore(settings=test_settings)

    def test_default_registries(self, test_settings, session_factory):
        """Video ad types are available out of the box; signal sources are not."""
        core = IntelligenceCore(settings=test_settings, session_factory=session_factory)

        assert "video_ads" in core.dataset_types
        assert core.list_signal_sources() == []


class TestDatasets:
    """Tests for dataset creation and ingestion."""

    def test_unregistered_type(self, core):
        with pytest.raises(DatasetTypeNotRegisteredError):
            core.create_dataset("nope", "unknown_type")

    def test_create_and_list(self, core):
        dataset = core.create_dataset("linear ads", "linear", description="demo")

        assert dataset.target_metric_name == "y"
        assert core.get_dataset(dataset.id).description == "demo"
        assert [d.id for d in core.list_datasets("linear")] == [dataset.id]
        assert core.list_datasets("video_ads") == []

    def test_unknown_dataset(self, core):
        with pytest.raises(DatasetNotFoundError):
            core.get_dataset("missing")

    def test_ingest_records_stats(self, core):
        """The statistics snapshot covers every ingested raw feature."""
        dataset = core.create_dataset("linear ads", "linear")

        result = core.ingest_records(dataset.id, linear_records(12))
        stored = core.get_dataset(dataset.id)

        assert result.ingested_count == 12
        assert result.active_record_count == 12
        assert len(result.record_ids) == 12
        assert stored.feature_stats["x1"].min == 0.0
        assert stored.feature_stats["x1"].max == 1.0

    def test_deactivated_records_are_excluded(self, core):
        dataset = core.create_dataset("linear ads", "linear")
        result = core.ingest_records(dataset.id, linear_records(12))

        for record_id in result.record_ids[:3]:
            core.deactivate_record(record_id)
        outcome = core.train(dataset.id)

        assert outcome.status == "insufficient_data"
        assert outcome.record_count == 9

    def test_deactivate_unknown_record(self, core):
        with pytest.raises(RecordNotFoundError):
            core.deactivate_record("missing")

    def test_malformed_created_at_is_rejected(self, core):
        """The whole batch is refused and nothing is stored."""
        dataset = core.create_dataset("linear ads", "linear")
        records = linear_records(2)
        records[1]["created_at"] = "last tuesday"

        with pytest.raises(ValidationError) as exc_info:
            core.ingest_records(dataset.id, records)

        assert exc_info.value.details["created_at"] == "last tuesday"
        assert core.ingest_records(dataset.id, linear_records(1)).active_record_count == 1


class TestTrainingAndPrediction:
    """End-to-end training, prediction and validation."""

    def test_insufficient_data(self, core):
        dataset = core.create_dataset("small", "linear")
        core.ingest_records(dataset.id, linear_records(5))

        outcome = core.train(dataset.id)

        assert outcome.status == "insufficient_data"
        assert outcome.model_id is None
        assert "10 required" in outcome.message

    def test_predict_before_training(self, core):
        dataset = core.create_dataset("linear ads", "linear")
        with pytest.raises(ModelNotFoundError):
            core.predict(dataset.id, {"x1": 0.5, "x2": 0.5})

    def test_train_predict_validate(self, core, trained):
        """The linear generator is recovered and its predictions validate cleanly."""
        prediction = core.predict(trained.id, {"x1": 0.5, "x2": 0.5}, source_id="ad-1", source_type="video")

        assert prediction.predicted_value == pytest.approx(3.5, abs=1e-6)
        assert prediction.predicted_tier == "top"
        assert prediction.feature_vector == pytest.approx([0.5, 0.5])
        assert 0.0 <= prediction.confidence <= 1.0
        assert core.verify_snapshot(prediction.snapshot_id)

        result = core.validate(prediction.snapshot_id, 3.5)
        accuracy = core.get_rolling_accuracy(trained.id)

        assert result.absolute_error == pytest.approx(0.0, abs=1e-6)
        assert accuracy.sample_count == 1
        assert accuracy.directional_accuracy == 1.0

    def test_record_by_record_ingest_matches_bulk(self, core):
        """Training re-normalizes every active record with one set of statistics."""
        bulk = core.create_dataset("bulk", "linear")
        core.ingest_records(bulk.id, linear_records(12))
        expected = core.train(bulk.id).result

        incremental = core.create_dataset("incremental", "linear")
        for record in linear_records(12):
            core.ingest_records(incremental.id, [record])
        result = core.train(incremental.id).result

        assert result.coefficients == pytest.approx(expected.coefficients, abs=1e-9)
        assert result.intercept == pytest.approx(expected.intercept, abs=1e-9)
        assert core.predict(incremental.id, {"x1": 0.5, "x2": 0.5}).predicted_value == pytest.approx(3.5, abs=1e-6)

    def test_later_ingest_does_not_rescale_trained_model(self, core, trained):
        """Predictions use the statistics the model was trained with until it is retrained."""
        core.ingest_records(trained.id, [{"x1": 10.0, "x2": 0.0, "y": 21.0, "created_at": datetime(2024, 2, 1)}])

        assert core.get_dataset(trained.id).feature_stats["x1"].max == 10.0
        assert core.predict(trained.id, {"x1": 0.5, "x2": 0.5}).predicted_value == pytest.approx(3.5, abs=1e-6)

    def test_identical_predictions_in_one_millisecond(self, core, trained, monkeypatch):
        """Equal signatures are allowed; each prediction still gets its own snapshot."""
        monkeypatch.setattr(serving, "utc_now", lambda: datetime(2025, 1, 1, 12, 0, 0, 123456))

        first = core.predict(trained.id, {"x1": 0.5, "x2": 0.5})
        second = core.predict(trained.id, {"x1": 0.5, "x2": 0.5})

        assert first.snapshot_id != second.snapshot_id
        assert first.hash_signature == second.hash_signature
        assert core.verify_snapshot(first.snapshot_id)
        assert core.verify_snapshot(second.snapshot_id)

    def test_rolling_accuracy_window(self, core, trained):
        """An explicit window is honoured; windows below 1 are rejected."""
        for actual in (3.5, 0.1):
            prediction = core.predict(trained.id, {"x1": 0.5, "x2": 0.5})
            core.validate(prediction.snapshot_id, actual)

        assert core.get_rolling_accuracy(trained.id, window_size=1).sample_count == 1
        assert core.get_rolling_accuracy(trained.id).sample_count == 2
        with pytest.raises(ValidationError):
            core.get_rolling_accuracy(trained.id, window_size=0)

    def test_missing_features_are_zero(self, core, trained):
        prediction = core.predict(trained.id, {"x1": 1.0})
        assert prediction.predicted_value == pytest.approx(3.0, abs=1e-6)

    def test_validate_once(self, core, trained):
        prediction = core.predict(trained.id, {"x1": 0.5, "x2": 0.5})
        core.validate(prediction.snapshot_id, 3.0)

        with pytest.raises(DuplicateRecordError):
            core.validate(prediction.snapshot_id, 3.1)

    def test_confirm_upload(self, core, trained):
        prediction = core.predict(trained.id, {"x1": 0.5, "x2": 0.5})

        view = core.confirm_upload(prediction.snapshot_id)

        assert view.upload_confirmed is True
        assert core.verify_snapshot(prediction.snapshot_id)

    def test_metrics(self, core, trained):
        metrics = core.get_metrics(trained.id)

        assert metrics.latest_model.status == "active"
        assert metrics.latest_model.feature_names == ["x1", "x2"]
        assert metrics.rolling_accuracy.sample_count == 0
        assert core.get_dataset(trained.id).last_trained_at is not None

    def test_optimize(self, core, trained):
        """Both coefficients are positive, so both features are nudged up."""
        result = core.optimize(trained.id, {"x1": 0.5, "x2": 0.5})

        assert [s.feature_name for s in result.suggestions] == ["x2", "x1"]
        assert result.total_projected_lift == pytest.approx(0.25, abs=1e-6)
        assert result.report.startswith("Optimization Suggestions")


class TestModelHealth:
    """Tests for drift and retirement through the core."""

    def test_healthy_without_predictions(self, core, trained):
        health = core.assess_model_health(trained.id)

        assert health.healthy is True
        assert health.drift.reason == "insufficient_data"

    def overestimate(self, core, dataset_id):
        for i in range(10):
            prediction = core.predict(dataset_id, {"x1": 0.5, "x2": 0.5})
            core.validate(prediction.snapshot_id, 0.1 * (i + 1))

    def test_assessment_is_read_only(self, core, trained):
        """Retirement is reported but not written unless asked for."""
        self.overestimate(core, trained.id)

        health = core.assess_model_health(trained.id)

        assert health.retirement.retired is True
        assert health.recommendation == "retrain"
        assert core.get_metrics(trained.id).latest_model.status == "active"

    def test_overestimating_model_is_retired(self, core, trained):
        """Consistent overestimation triggers drift and retirement; retirement wins."""
        self.overestimate(core, trained.id)

        drift = core.get_drift(trained.id)
        health = core.assess_model_health(trained.id, apply_retirement=True)

        assert drift.severity == "severe"
        assert health.model_status == "retired"
        assert health.recommendation == "retrain"
        assert core.get_metrics(trained.id).latest_model.status == "retired"

        # still usable, only logged
        assert core.predict(trained.id, {"x1": 0.5, "x2": 0.5}).predicted_value == pytest.approx(3.5, abs=1e-6)

    def test_check_retirement_without_model(self, core):
        dataset = core.create_dataset("linear ads", "linear")
        with pytest.raises(ModelNotFoundError):
            core.check_retirement(dataset.id)


class TestSignalsThroughCore:
    """Signals, AMI, correlations and exploration."""

    def test_ami_from_latest_signal_per_layer(self, core):
        core.register_signal_source(density_source("culture", 1, 0.8))
        core.register_signal_source(density_source("search", 2, 0.1))

        outcomes = asyncio.run(core.fetch_all_signals("ai"))
        ami = core.get_ami("ai")

        assert {o.status for o in outcomes} == {"fetched"}
        assert ami.stage == "early_noise"
        assert ami.ami == pytest.approx(0.19)
        assert ami.layer_scores == {1: 0.8, 2: 0.1}

    def test_ami_without_signals(self, core):
        ami = core.get_ami("unseen")
        assert ami.ami == 0.0
        assert ami.confidence == pytest.approx(0.2)

    def test_detect_correlations_persists_patterns(self, core):
        """Layer 2 repeating layer 1 two days later is found and stored."""
        start = datetime(2024, 3, 1)
        values = [0.1, 0.5, 0.2, 0.8, 0.3, 0.9, 0.4, 0.7, 0.6, 1.0]
        with transaction_scope(core.session_factory) as db:
            signals = ExternalSignalRepository(db)
            for i, value in enumerate(values):
                signals.create("culture", 1, "ai", normalized_features={"attentionDensityScore": value},
                               fetched_at=start + timedelta(days=i))
                signals.create("search", 2, "ai", normalized_features={"attentionDensityScore": value},
                               fetched_at=start + timedelta(days=i + 2))

        patterns = core.detect_correlations("ai")

        assert len(patterns) == 1
        assert (patterns[0].source_layer, patterns[0].target_layer) == (1, 2)
        assert patterns[0].lag_days == 2
        assert patterns[0].correlation_strength == pytest.approx(1.0)
        assert patterns[0].pattern_id is not None

    def test_exploration_uses_ami_stage_and_persists(self, core, trained):
        core.register_signal_source(density_source("culture", 1, 0.8))
        asyncio.run(core.fetch_signal("culture", "ai"))

        decision = core.decide_exploration(trained.id, {"setupDuration": 0.5}, keyword="ai")

        assert decision.ami_stage == "early_noise"
        assert decision.epsilon == pytest.approx(0.18)
        with transaction_scope(core.session_factory) as db:
            groups = ExperimentGroupRepository(db).get_for_dataset(trained.id)
            assert [g.id for g in groups] == [decision.experiment_group_id]
            assert groups[0].group_type == decision.group_type

    def test_forced_exploration(self, core, trained):
        config = ExplorationConfig(epsilon=1.0, mutation_bounds={"x1": {"min": 0.0, "max": 1.0, "step": 0.25}})

        decision = core.decide_exploration(trained.id, {"x1": 0.5, "x2": 0.5}, config=config)

        assert decision.group_type == "exploration"
        assert decision.original_features == {"x1": 0.5, "x2": 0.5}
        assert 0.0 <= decision.features["x1"] <= 1.0
        assert decision.features["x2"] == 0.5
