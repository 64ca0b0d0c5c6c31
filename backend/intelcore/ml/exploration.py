"""
Epsilon-greedy exploration over feature settings.

Epsilon is scaled by the keyword's AMI stage: exploit harder while attention
is clearly moving, explore more while it is noisy or saturating.
"""

import math
import random
from typing import Dict, Mapping, Optional

from intelcore.ml.schemas import ExplorationDecision, FeatureMutation, MutationBound
from intelcore.log_config import logger


DEFAULT_EPSILON = 0.15

AMI_STAGE_EPSILON_FACTORS: Dict[str, float] = {
    "search_growth": 0.7,
    "buyer_interest": 0.7,
    "early_noise": 1.2,
    "media_amplification": 1.5,
}


def adjust_epsilon(base_epsilon: float, ami_stage: Optional[str] = None) -> float:
    """Scale epsilon by the AMI stage factor; unknown or missing stages leave it unchanged."""
    if not ami_stage:
        return base_epsilon
    return base_epsilon * AMI_STAGE_EPSILON_FACTORS.get(ami_stage, 1.0)


def _as_bounds(bounds: Mapping[str, object]) -> Dict[str, MutationBound]:
    return {
        name: b if isinstance(b, MutationBound) else MutationBound(**b)
        for name, b in bounds.items()
    }


def mutate_features(
    features: Mapping[str, float],
    bounds: Mapping[str, object],
    rng: Optional[random.Random] = None,
) -> Dict[str, FeatureMutation]:
    """
    Move each bounded feature by a random whole number of steps.

    The step count is uniform over [-n, n] with n = floor((max - min) / step);
    the result is clamped to [min, max]. Features absent from `features` start
    from the bound's min.

    Returns:
        Feature name -> FeatureMutation (original, mutated, delta)
    """
    rng = rng or random.Random()
    log: Dict[str, FeatureMutation] = {}

    for name, bound in _as_bounds(bounds).items():
        original = float(features.get(name, bound.min))
        num_steps = int(math.floor((bound.max - bound.min) / bound.step))
        steps = rng.randint(-num_steps, num_steps)

        mutated = max(bound.min, min(bound.max, original + steps * bound.step))
        log[name] = FeatureMutation(original=original, mutated=mutated, delta=mutated - original)

    return log


class ExplorationEngine:
    """Epsilon-greedy decisions with injectable randomness."""

    def __init__(
        self,
        mutation_bounds: Mapping[str, object],
        base_epsilon: float = DEFAULT_EPSILON,
        rng: Optional[random.Random] = None,
    ):
        self.mutation_bounds = _as_bounds(mutation_bounds)
        self.base_epsilon = base_epsilon
        self.rng = rng or random.Random()

    def decide(
        self,
        features: Mapping[str, float],
        ami_stage: Optional[str] = None,
        epsilon: Optional[float] = None,
        mutation_bounds: Optional[Mapping[str, object]] = None,
    ) -> ExplorationDecision:
        """
        Draw once: below the adjusted epsilon, explore; otherwise exploit.

        Args:
            features: Current feature values
            ami_stage: Stage from the keyword's AMI, if known
            epsilon: Base epsilon override
            mutation_bounds: Bounds override

        Returns:
            ExplorationDecision. Exploration carries the per-feature deltas as
            mutation_parameters and the unmodified input as original_features.
        """
        base = self.base_epsilon if epsilon is None else epsilon
        adjusted = adjust_epsilon(base, ami_stage)

        if self.rng.random() >= adjusted:
            return ExplorationDecision(
                group_type="exploitation",
                epsilon=adjusted,
                features=dict(features),
                ami_stage=ami_stage,
            )

        bounds = mutation_bounds if mutation_bounds is not None else self.mutation_bounds
        mutations = mutate_features(features, bounds, self.rng)
        mutated = dict(features)
        mutated.update({name: m.mutated for name, m in mutations.items()})

        logger.info(
            f"Exploring {len(mutations)} features (epsilon={adjusted:.3f}, stage={ami_stage or 'none'})"
        )
        return ExplorationDecision(
            group_type="exploration",
            epsilon=adjusted,
            features=mutated,
            mutation_parameters={name: m.delta for name, m in mutations.items()},
            original_features=dict(features),
            ami_stage=ami_stage,
        )
