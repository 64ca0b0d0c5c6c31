"""
ML package for the Intelligence Core.

Closed-form pattern model training, hash-signed prediction snapshots, drift
monitoring, epsilon-greedy exploration and lift optimization.
"""

from intelcore.ml.training import ModelTrainer, classify_tier, predict, split_data, train_model

__version__ = "1.0.0"

__all__ = [
    "ModelTrainer",
    "classify_tier",
    "predict",
    "split_data",
    "train_model",
]
