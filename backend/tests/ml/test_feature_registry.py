"""
Unit tests for the dataset type registry, feature statistics and normalization.
"""

import pytest

from intelcore.ml.feature_store import (
    DatasetTypeRegistry,
    collect_feature_arrays,
    compute_feature_stats,
    normalize_features,
    register_video_ad_types,
)
from intelcore.ml.feature_store.registry import stats_from_dict, stats_to_dict
from intelcore.ml.feature_store.video_ads import extract_video_ad_features, extract_video_ad_target
from intelcore.ml.schemas import FeatureStats


class TestDatasetTypeRegistry:
    """Tests for DatasetTypeRegistry."""

    def test_register_and_extract(self):
        """Registered extractors run over the raw record."""
        registry = DatasetTypeRegistry()
        registry.register("t", lambda raw: {"a": raw["a"]}, lambda raw: raw["y"], target_metric_name="y")

        extracted = registry.extract("t", {"a": 2, "y": 5})

        assert "t" in registry
        assert extracted.features == {"a": 2.0}
        assert extracted.target == 5.0
        assert registry.get("t").target_metric_name == "y"

    def test_extract_unregistered_type_returns_none(self):
        """Unknown types yield no extraction."""
        registry = DatasetTypeRegistry()
        assert registry.extract("missing", {"a": 1}) is None
        assert "missing" not in registry

    def test_last_registration_wins(self):
        """Registering a name twice replaces the earlier extractors."""
        registry = DatasetTypeRegistry()
        registry.register("t", lambda raw: {"a": 1.0}, lambda raw: 0.0)
        registry.register("t", lambda raw: {"b": 2.0}, lambda raw: 1.0)

        assert registry.extract("t", {}).features == {"b": 2.0}
        assert registry.list_types() == ["t"]

    def test_register_video_ad_types(self):
        """Both built-in video ad types are registered with the engagement target."""
        registry = DatasetTypeRegistry()
        register_video_ad_types(registry)

        assert registry.list_types() == ["video_ads", "video_ads_outpost"]
        assert registry.get("video_ads").target_metric_name == "engagement_rate"


class TestFeatureStats:
    """Tests for compute_feature_stats."""

    def test_population_std(self):
        """Standard deviation is the population one."""
        stats = compute_feature_stats({"a": [1.0, 2.0, 3.0, 4.0]})

        assert stats["a"].min == 1.0
        assert stats["a"].max == 4.0
        assert stats["a"].mean == 2.5
        assert stats["a"].std_dev == pytest.approx(1.118033988749895)

    def test_empty_values_yield_zero_stats(self):
        """An empty sample gives all-zero stats."""
        stats = compute_feature_stats({"a": []})
        assert stats["a"] == FeatureStats()

    def test_collect_feature_arrays(self):
        """Feature maps pivot into per-feature value lists."""
        arrays = collect_feature_arrays([{"a": 1, "b": 2}, {"a": 3}])
        assert arrays == {"a": [1.0, 3.0], "b": [2.0]}

    def test_stats_dict_round_trip(self):
        """Stats survive storage as plain dicts."""
        stats = compute_feature_stats({"a": [0.0, 10.0]})
        assert stats_from_dict(stats_to_dict(stats)) == stats
        assert stats_from_dict(None) == {}


class TestNormalizeFeatures:
    """Tests for min-max normalization."""

    def test_values_scaled_and_clamped(self):
        """Values map into [0, 1] and out-of-range inputs are clamped."""
        stats = {"a": FeatureStats(min=0.0, max=10.0)}

        assert normalize_features({"a": 5.0}, stats) == {"a": 0.5}
        assert normalize_features({"a": 15.0}, stats) == {"a": 1.0}
        assert normalize_features({"a": -5.0}, stats) == {"a": 0.0}

    def test_constant_feature_normalizes_to_zero(self):
        """max == min gives exactly 0."""
        stats = {"a": FeatureStats(min=3.0, max=3.0)}
        assert normalize_features({"a": 3.0}, stats) == {"a": 0.0}

    def test_missing_stats_normalize_to_zero(self):
        """Features without stats give 0."""
        assert normalize_features({"unknown": 42.0}, {}) == {"unknown": 0.0}

    def test_output_always_in_unit_interval(self):
        """Every normalized value lies in [0, 1]."""
        stats = compute_feature_stats({"a": [-3.0, 7.0, 2.0], "b": [1.0, 1.0]})
        for value in (-100.0, -3.0, 0.0, 2.5, 7.0, 100.0):
            normalized = normalize_features({"a": value, "b": value}, stats)
            assert 0.0 <= normalized["a"] <= 1.0
            assert normalized["b"] == 0.0


class TestVideoAdFeatures:
    """Tests for the built-in video ad extractors."""

    def test_snake_case_payload(self):
        """Derived densities, retention and encodings from a snake_case record."""
        raw = {
            "setup_duration": 3.0,
            "punchline_timing": 8.0,
            "total_duration": 20.0,
            "delivery_pace_wps": 2.5,
            "tone_shift_count": 4,
            "escalation_beats": [1, 2, 3, 4, 5],
            "retention_curve": [100, 80, 60, 40],
            "word_count": 50,
            "platform": "TikTok",
            "humor_category": "broke_boys",
            "engagement_rate": 0.12,
        }

        features = extract_video_ad_features(raw)

        assert len(features) == 12
        assert features["toneShiftDensity"] == pytest.approx(0.2)
        assert features["escalationDensity"] == pytest.approx(0.25)
        assert features["retentionSlope"] == pytest.approx(-15.0)
        assert features["retentionDropPoint"] == pytest.approx(0.75)
        assert features["platformEncoding"] == 0.4
        assert features["categoryEncoding"] == pytest.approx(0.7)
        assert features["historicalPerformanceDelta"] == 0.0
        assert extract_video_ad_target(raw) == 0.12

    def test_nested_camel_case_payload(self):
        """camelCase keys nested under humor_performance are accepted."""
        raw = {
            "humor_performance": {
                "setupDuration": 2.0,
                "totalDuration": 0,
                "toneShiftCount": 3,
                "platform": "myspace",
                "engagementRate": 0.3,
            }
        }

        features = extract_video_ad_features(raw)

        assert features["setupDuration"] == 2.0
        assert features["toneShiftDensity"] == 0.0
        assert features["retentionDropPoint"] == 1.0
        assert features["platformEncoding"] == 1.0
        assert features["categoryEncoding"] == 0.0
        assert extract_video_ad_target(raw) == 0.3
