"""
Unit tests for epsilon-greedy exploration.
"""

import random

import pytest
from pydantic import ValidationError

from intelcore.ml.exploration import ExplorationEngine, adjust_epsilon, mutate_features
from intelcore.ml.schemas import ExplorationConfig, MutationBound


class FixedRandom:
    """Deterministic stand-in for random.Random."""

    def __init__(self, draw, steps=0):
        self.draw = draw
        self.steps = steps

    def random(self):
        return self.draw

    def randint(self, a, b):
        return max(a, min(b, self.steps))


class TestAdjustEpsilon:
    """Tests for AMI stage scaling."""

    def test_stage_factors(self):
        assert adjust_epsilon(0.15, "media_amplification") == pytest.approx(0.225)
        assert adjust_epsilon(0.15, "search_growth") == pytest.approx(0.105)
        assert adjust_epsilon(0.15, "buyer_interest") == pytest.approx(0.105)
        assert adjust_epsilon(0.15, "early_noise") == pytest.approx(0.18)

    def test_unknown_or_missing_stage(self):
        assert adjust_epsilon(0.15, None) == 0.15
        assert adjust_epsilon(0.15, "mystery") == 0.15


class TestMutateFeatures:
    """Tests for mutate_features."""

    def test_mutation_is_clamped(self):
        """Steps beyond the bound land on the bound."""
        bounds = {"a": MutationBound(min=0.0, max=1.0, step=0.1)}

        mutations = mutate_features({"a": 0.9}, bounds, FixedRandom(0.0, steps=5))

        assert mutations["a"].mutated == 1.0
        assert mutations["a"].delta == pytest.approx(0.1)

    def test_missing_feature_starts_from_min(self):
        bounds = {"a": {"min": 0.2, "max": 0.8, "step": 0.2}}

        mutations = mutate_features({}, bounds, FixedRandom(0.0, steps=1))

        assert mutations["a"].original == 0.2
        assert mutations["a"].mutated == pytest.approx(0.4)

    def test_mutations_stay_within_bounds(self):
        """Random mutations never leave [min, max]."""
        bounds = {"a": MutationBound(min=0.0, max=1.0, step=0.25)}
        rng = random.Random(7)
        for _ in range(50):
            mutated = mutate_features({"a": 0.5}, bounds, rng)["a"].mutated
            assert 0.0 <= mutated <= 1.0


class TestMutationBound:
    """Bounds are checked when built, whatever their origin."""

    def test_min_above_max_is_rejected(self):
        with pytest.raises(ValidationError):
            MutationBound(min=1.0, max=0.0, step=0.1)

    def test_per_call_config_is_checked(self):
        with pytest.raises(ValidationError):
            ExplorationConfig(epsilon=1.0, mutation_bounds={"a": {"min": 1.0, "max": 0.0, "step": 0.1}})

    def test_plain_dict_bounds_are_checked(self):
        with pytest.raises(ValidationError):
            mutate_features({"a": 0.5}, {"a": {"min": 1.0, "max": 0.0, "step": 0.1}}, FixedRandom(0.0))

    def test_single_point_range_is_allowed(self):
        mutations = mutate_features({"a": 0.4}, {"a": MutationBound(min=0.5, max=0.5, step=0.1)}, FixedRandom(0.0, steps=3))
        assert mutations["a"].mutated == 0.5


class TestExplorationEngine:
    """Tests for ExplorationEngine.decide."""

    def test_exploit_above_epsilon(self):
        """Draws at or above epsilon exploit with the input unchanged."""
        engine = ExplorationEngine({"a": MutationBound(min=0, max=1, step=0.1)}, rng=FixedRandom(0.15))

        decision = engine.decide({"a": 0.5})

        assert decision.group_type == "exploitation"
        assert decision.features == {"a": 0.5}
        assert decision.mutation_parameters is None

    def test_explore_below_epsilon(self):
        """Exploration records the deltas and the original features."""
        engine = ExplorationEngine({"a": MutationBound(min=0, max=1, step=0.1)}, rng=FixedRandom(0.1, steps=2))

        decision = engine.decide({"a": 0.5, "b": 0.3})

        assert decision.group_type == "exploration"
        assert decision.features["a"] == pytest.approx(0.7)
        assert decision.features["b"] == 0.3
        assert decision.mutation_parameters["a"] == pytest.approx(0.2)
        assert decision.original_features == {"a": 0.5, "b": 0.3}

    def test_stage_changes_outcome(self):
        """The same draw explores under media_amplification but exploits under search_growth."""
        bounds = {"a": MutationBound(min=0, max=1, step=0.1)}

        amplified = ExplorationEngine(bounds, rng=FixedRandom(0.2)).decide({"a": 0.5}, ami_stage="media_amplification")
        growth = ExplorationEngine(bounds, rng=FixedRandom(0.2)).decide({"a": 0.5}, ami_stage="search_growth")

        assert amplified.group_type == "exploration"
        assert amplified.epsilon == pytest.approx(0.225)
        assert growth.group_type == "exploitation"

    def test_epsilon_override(self):
        engine = ExplorationEngine({}, rng=FixedRandom(0.5))
        assert engine.decide({"a": 1.0}, epsilon=1.0).group_type == "exploration"
        assert engine.decide({"a": 1.0}, epsilon=0.0).group_type == "exploitation"

    def test_seeded_rng_is_reproducible(self):
        bounds = {"a": MutationBound(min=0, max=1, step=0.1)}
        first = ExplorationEngine(bounds, rng=random.Random(3))
        second = ExplorationEngine(bounds, rng=random.Random(3))
        for _ in range(5):
            assert first.decide({"a": 0.5}, epsilon=0.5) == second.decide({"a": 0.5}, epsilon=0.5)
