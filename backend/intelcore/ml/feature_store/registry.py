"""
Dataset type registry for the Intelligence Core.

Maps a dataset type name to a feature extractor and a target metric extractor,
and provides the per-feature statistics and min-max normalization applied to
every record before training or inference.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import numpy as np

from intelcore.ml.schemas import FeatureStats
from intelcore.log_config import logger


FeatureExtractor = Callable[[Mapping[str, Any]], Dict[str, float]]
TargetExtractor = Callable[[Mapping[str, Any]], float]


@dataclass(frozen=True)
class DatasetTypeRegistration:
    """A named feature/target extractor pair."""
    dataset_type: str
    feature_extractor: FeatureExtractor
    target_metric_name: str
    target_extractor: TargetExtractor


@dataclass(frozen=True)
class ExtractedRecord:
    features: Dict[str, float]
    target: float


class DatasetTypeRegistry:
    """
    Lookup table of dataset type registrations.

    Owned by one IntelligenceCore instance. Registration is expected to finish
    before the first ingest/train/predict call; registering a name twice
    replaces the earlier registration.
    """

    def __init__(self):
        self._registrations: Dict[str, DatasetTypeRegistration] = {}

    def register(
        self,
        dataset_type: str,
        feature_extractor: FeatureExtractor,
        target_extractor: TargetExtractor,
        target_metric_name: str = "target",
    ) -> DatasetTypeRegistration:
        registration = DatasetTypeRegistration(
            dataset_type=dataset_type,
            feature_extractor=feature_extractor,
            target_metric_name=target_metric_name,
            target_extractor=target_extractor,
        )
        if dataset_type in self._registrations:
            logger.debug(f"Replacing dataset type registration '{dataset_type}'")
        self._registrations[dataset_type] = registration
        logger.info(f"Registered dataset type '{dataset_type}' (target: {target_metric_name})")
        return registration

    def get(self, dataset_type: str) -> Optional[DatasetTypeRegistration]:
        return self._registrations.get(dataset_type)

    def __contains__(self, dataset_type: str) -> bool:
        return dataset_type in self._registrations

    def list_types(self) -> List[str]:
        return sorted(self._registrations)

    def extract(self, dataset_type: str, raw_record: Mapping[str, Any]) -> Optional[ExtractedRecord]:
        """
        Run the registered extractors over one raw record.

        Args:
            dataset_type: Registered type name
            raw_record: Raw record payload

        Returns:
            ExtractedRecord, or None if the type is not registered
        """
        registration = self._registrations.get(dataset_type)
        if registration is None:
            return None

        features = {name: float(value) for name, value in registration.feature_extractor(raw_record).items()}
        target = float(registration.target_extractor(raw_record))
        return ExtractedRecord(features=features, target=target)


def compute_feature_stats(feature_arrays: Mapping[str, Iterable[float]]) -> Dict[str, FeatureStats]:
    """
    Compute min/max/mean/population std per feature.

    Args:
        feature_arrays: Feature name -> sample values

    Returns:
        Feature name -> FeatureStats (all zero for an empty sample)
    """
    stats: Dict[str, FeatureStats] = {}
    for name, values in feature_arrays.items():
        arr = np.asarray(list(values), dtype=float)
        if arr.size == 0:
            stats[name] = FeatureStats()
            continue
        stats[name] = FeatureStats(
            min=float(arr.min()),
            max=float(arr.max()),
            mean=float(arr.mean()),
            std_dev=float(arr.std()),
        )
    return stats


def collect_feature_arrays(feature_maps: Iterable[Mapping[str, float]]) -> Dict[str, List[float]]:
    """Pivot a list of feature maps into feature name -> values."""
    arrays: Dict[str, List[float]] = {}
    for features in feature_maps:
        for name, value in features.items():
            arrays.setdefault(name, []).append(float(value))
    return arrays


def normalize_features(
    features: Mapping[str, float],
    stats: Mapping[str, FeatureStats],
) -> Dict[str, float]:
    """
    Min-max normalize into [0, 1].

    A feature with no stats or with max == min normalizes to exactly 0.
    """
    normalized: Dict[str, float] = {}
    for name, value in features.items():
        s = stats.get(name)
        if s is None or s.max == s.min:
            normalized[name] = 0.0
        else:
            normalized[name] = max(0.0, min(1.0, (value - s.min) / (s.max - s.min)))
    return normalized


def stats_to_dict(stats: Mapping[str, FeatureStats]) -> Dict[str, Dict[str, float]]:
    return {name: s.model_dump() for name, s in stats.items()}


def stats_from_dict(data: Optional[Mapping[str, Mapping[str, float]]]) -> Dict[str, FeatureStats]:
    return {name: FeatureStats(**values) for name, values in (data or {}).items()}
