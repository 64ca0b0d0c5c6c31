"""
Single-feature perturbation search for expected lift.

Each feature is nudged up and down by a fixed step independently of the
others. The suggestions ignore feature interaction; the summed lift is an
upper bound estimate, not a joint optimum.
"""

from typing import List, Mapping, Sequence

from intelcore.ml.schemas import OptimizationResult, OptimizationSuggestion
from intelcore.ml.training import predict


DEFAULT_STEP_SIZE = 0.05


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def simulate_delta(
    feature_vector: Sequence[float],
    feature_index: int,
    delta: float,
    coefficients: Sequence[float],
    intercept: float,
) -> float:
    """Prediction after shifting one position of the vector by delta (clamped to [0, 1])."""
    if feature_index < 0 or feature_index >= len(feature_vector):
        raise IndexError(f"Invalid feature index: {feature_index}")
    shifted = list(feature_vector)
    shifted[feature_index] = _clamp_unit(shifted[feature_index] + delta)
    return predict(coefficients, intercept, shifted)


def optimize_features(
    current_features: Mapping[str, float],
    coefficients: Sequence[float],
    intercept: float,
    feature_names: Sequence[str],
    step_size: float = DEFAULT_STEP_SIZE,
) -> OptimizationResult:
    """
    Propose per-feature changes with a positive predicted gain.

    Args:
        current_features: Normalized feature values
        coefficients: Model coefficients aligned to feature_names
        intercept: Model intercept
        feature_names: Canonical feature order of the model
        step_size: Perturbation size

    Returns:
        OptimizationResult with suggestions sorted by predicted gain (descending)
    """
    vector = [float(current_features.get(name, 0.0)) for name in feature_names]
    current_prediction = predict(coefficients, intercept, vector)
    max_coefficient = max((abs(c) for c in coefficients), default=0.0)

    suggestions: List[OptimizationSuggestion] = []
    for i, name in enumerate(feature_names):
        current_value = vector[i]
        positive_gain = simulate_delta(vector, i, step_size, coefficients, intercept) - current_prediction
        negative_gain = simulate_delta(vector, i, -step_size, coefficients, intercept) - current_prediction

        if positive_gain > negative_gain and positive_gain > 0:
            suggested_value = _clamp_unit(current_value + step_size)
            gain = positive_gain
        elif negative_gain > 0:
            suggested_value = _clamp_unit(current_value - step_size)
            gain = negative_gain
        else:
            continue

        coefficient = coefficients[i] if i < len(coefficients) else 0.0
        confidence = min(1.0, abs(coefficient) / max_coefficient) if max_coefficient != 0 else 0.0

        suggestions.append(
            OptimizationSuggestion(
                feature_name=name,
                current_value=current_value,
                suggested_value=suggested_value,
                delta=suggested_value - current_value,
                predicted_gain=gain,
                confidence=confidence,
            )
        )

    suggestions.sort(key=lambda s: s.predicted_gain, reverse=True)

    total_lift = sum(s.predicted_gain for s in suggestions)
    lift_percent = total_lift / current_prediction * 100 if current_prediction != 0 else 0.0

    return OptimizationResult(
        suggestions=suggestions,
        current_prediction=current_prediction,
        optimized_prediction=current_prediction + total_lift,
        total_projected_lift=total_lift,
        lift_percent=lift_percent,
    )


def generate_optimization_report(result: OptimizationResult) -> str:
    """Render suggestions as plain text."""
    if not result.suggestions:
        return (
            "No optimization suggestions found.\n"
            f"Current prediction: {result.current_prediction:.4f}"
        )

    lines = [
        f"Optimization Suggestions ({len(result.suggestions)} features):",
        f"Current prediction: {result.current_prediction:.4f}",
        f"Optimized prediction: {result.optimized_prediction:.4f}",
        f"Total projected lift: {result.lift_percent:.2f}%",
        "",
    ]
    for s in result.suggestions:
        delta = f"+{s.delta:.2f}" if s.delta > 0 else f"{s.delta:.2f}"
        lines.append(
            f"{s.feature_name}: change from {s.current_value:.2f} to {s.suggested_value:.2f} ({delta}) "
            f"-> +{s.predicted_gain * 100:.2f}% lift (confidence: {s.confidence * 100:.0f}%)"
        )
    return "\n".join(lines) + "\n"
