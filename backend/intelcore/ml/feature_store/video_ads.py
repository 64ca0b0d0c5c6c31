"""
Built-in video ad dataset types.

Both `video_ads` and `video_ads_outpost` read the same humor-performance
payload. Keys may be snake_case or camelCase and may be nested under
`humor_performance`.
"""

from typing import Any, Dict, Mapping

from intelcore.ml.feature_store.registry import DatasetTypeRegistry


HUMOR_CATEGORIES = [
    "girlfriend_expensive",
    "wife_expensive",
    "kids_expensive",
    "walletus_maximus",
    "bluechew_wallet",
    "buddy_got_raise",
    "broke_boys",
    "bar_stool_economics",
    "chrome_addiction",
    "cubicle_vs_contractor",
]

PLATFORM_ENCODING = {
    "youtube": 0.2,
    "tiktok": 0.4,
    "instagram": 0.6,
    "facebook": 0.8,
}
OTHER_PLATFORM_ENCODING = 1.0

VIDEO_AD_DATASET_TYPES = ("video_ads", "video_ads_outpost")
VIDEO_AD_TARGET_METRIC = "engagement_rate"


def _payload(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    return raw.get("humor_performance") or raw


def _lookup(hp: Mapping[str, Any], snake: str, camel: str, default: Any = 0) -> Any:
    value = hp.get(snake)
    if value is None:
        value = hp.get(camel)
    return default if value is None else value


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def extract_video_ad_features(raw: Mapping[str, Any]) -> Dict[str, float]:
    """Derive the twelve humor-performance features from a raw video ad record."""
    hp = _payload(raw)

    setup_duration = _number(_lookup(hp, "setup_duration", "setupDuration"))
    punchline_timing = _number(_lookup(hp, "punchline_timing", "punchlineTiming"))
    duration = _number(_lookup(hp, "total_duration", "totalDuration"))
    delivery_pace = _number(_lookup(hp, "delivery_pace_wps", "deliveryPaceWps"))

    tone_shift_count = _number(_lookup(hp, "tone_shift_count", "toneShiftCount"))
    tone_shift_density = tone_shift_count / duration if duration > 0 else 0.0

    beats = _lookup(hp, "escalation_beats", "escalationBeats", [])
    beat_count = len(beats) if isinstance(beats, list) else 0
    escalation_density = beat_count / duration if duration > 0 else 0.0

    curve = _lookup(hp, "retention_curve", "retentionCurve", [])
    retention_slope = 0.0
    retention_drop_point = 1.0
    if isinstance(curve, list) and len(curve) >= 2:
        first = _number(curve[0])
        last = _number(curve[-1])
        retention_slope = (last - first) / len(curve)
        drop_index = next((i for i, v in enumerate(curve) if _number(v) < 50), -1)
        retention_drop_point = drop_index / len(curve) if drop_index >= 0 else 1.0

    word_count = _number(_lookup(hp, "word_count", "wordCount"))

    platform = str(hp.get("platform") or "other").lower()
    platform_encoding = PLATFORM_ENCODING.get(platform, OTHER_PLATFORM_ENCODING)

    category = str(_lookup(hp, "humor_category", "humorCategory", ""))
    category_encoding = (HUMOR_CATEGORIES.index(category) + 1) / 10 if category in HUMOR_CATEGORIES else 0.0

    return {
        "setupDuration": setup_duration,
        "punchlineTiming": punchline_timing,
        "duration": duration,
        "deliveryPaceWps": delivery_pace,
        "toneShiftDensity": tone_shift_density,
        "escalationDensity": escalation_density,
        "retentionSlope": retention_slope,
        "retentionDropPoint": retention_drop_point,
        "wordCount": word_count,
        "platformEncoding": platform_encoding,
        "categoryEncoding": category_encoding,
        "historicalPerformanceDelta": 0.0,
    }


def extract_video_ad_target(raw: Mapping[str, Any]) -> float:
    hp = _payload(raw)
    return _number(_lookup(hp, "engagement_rate", "engagementRate"))


def register_video_ad_types(registry: DatasetTypeRegistry) -> None:
    """Register the built-in video ad dataset types."""
    for dataset_type in VIDEO_AD_DATASET_TYPES:
        registry.register(
            dataset_type,
            extract_video_ad_features,
            extract_video_ad_target,
            target_metric_name=VIDEO_AD_TARGET_METRIC,
        )
