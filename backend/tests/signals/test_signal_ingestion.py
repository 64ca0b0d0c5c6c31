"""
Unit tests for signal source registration and ingestion.

Async entry points are driven with asyncio.run; sources are in-process
callables so no network is touched.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from intelcore.signals.ingestion import (
    SignalIngestor,
    SignalSource,
    SignalSourceRegistry,
    compute_relative_deviation,
    compute_signal_acceleration,
    compute_signal_velocity,
)
from intelcore.signals.schemas import NormalizedSignalFeatures
from intelcore.utils.errors import InvalidSignalSourceError, SignalSourceNotFoundError
from intelcore.utils.rate_limit import FetchRateLimiter


def make_source(name="counter", layer=1, update_frequency="daily", fetch=None, normalize=None):
    async def default_fetch(keyword, client):
        return {"mock": False, "keyword": keyword, "count": 3}

    def default_normalize(raw):
        return NormalizedSignalFeatures(velocity=raw["count"] / 10, attention_density_score=0.4)

    return SignalSource(
        name=name,
        layer=layer,
        fetch=fetch or default_fetch,
        normalize=normalize or default_normalize,
        extract_features=lambda raw: {"count": float(raw["count"])},
        update_frequency=update_frequency,
    )


@pytest.fixture
def registry():
    registry = SignalSourceRegistry()
    registry.register(make_source())
    return registry


@pytest.fixture
def ingestor(registry, session_factory):
    return SignalIngestor(registry, session_factory, rate_limiter=FetchRateLimiter(), timeout=0.5)


class TestSignalSourceRegistry:
    """Tests for SignalSourceRegistry."""

    def test_rejects_invalid_layer(self):
        with pytest.raises(InvalidSignalSourceError):
            SignalSourceRegistry().register(make_source(layer=7))

    def test_rejects_unknown_frequency(self):
        with pytest.raises(InvalidSignalSourceError):
            SignalSourceRegistry().register(make_source(update_frequency="monthly"))

    def test_reregistering_replaces(self, registry):
        registry.register(make_source(layer=4))

        assert len(registry) == 1
        assert registry.get("counter").layer == 4

    def test_require_unknown(self, registry):
        with pytest.raises(SignalSourceNotFoundError):
            registry.require("missing")

    def test_list_sources(self, registry):
        info = registry.list_sources()[0]
        assert (info.name, info.layer, info.update_frequency) == ("counter", 1, "daily")


class TestSignalMath:
    """Tests for the normalization helpers."""

    def test_velocity_per_second(self):
        t0 = datetime(2024, 1, 1)
        assert compute_signal_velocity([0, 60], [t0, t0 + timedelta(minutes=1)]) == pytest.approx(1.0)

    def test_velocity_needs_two_points(self):
        assert compute_signal_velocity([1], [datetime(2024, 1, 1)]) == 0.0

    def test_acceleration(self):
        t0 = datetime(2024, 1, 1)
        timestamps = [t0, t0 + timedelta(seconds=1), t0 + timedelta(seconds=2)]
        assert compute_signal_acceleration([0, 1, 3], timestamps) == pytest.approx(1.0)

    def test_relative_deviation(self):
        assert compute_relative_deviation([1.0, 3.0]) == pytest.approx(0.5)
        assert compute_relative_deviation([0.0, 0.0]) == 0.0
        assert compute_relative_deviation([5.0]) == 0.0


class TestSignalIngestor:
    """Tests for SignalIngestor."""

    def test_fetch_persists_signal(self, ingestor):
        """A successful fetch stores the normalized features under camelCase keys."""
        outcome = asyncio.run(ingestor.fetch_signal("counter", "ai"))

        assert outcome.status == "fetched"
        assert outcome.layer == 1
        assert outcome.signal.normalized_features["velocity"] == pytest.approx(0.3)
        assert outcome.signal.normalized_features["attentionDensityScore"] == pytest.approx(0.4)
        assert outcome.signal.raw_data["keyword"] == "ai"

    def test_second_fetch_is_rate_limited(self, ingestor):
        """A daily source cannot be fetched twice for the same keyword in a row."""
        asyncio.run(ingestor.fetch_signal("counter", "ai"))
        second = asyncio.run(ingestor.fetch_signal("counter", "ai"))
        other_keyword = asyncio.run(ingestor.fetch_signal("counter", "ml"))

        assert second.status == "rate_limited"
        assert second.signal is None
        assert other_keyword.status == "fetched"
        assert len(ingestor.get_signal_history("ai")) == 1

    def test_rate_limit_disabled(self, registry, session_factory):
        ingestor = SignalIngestor(registry, session_factory, rate_limiter=FetchRateLimiter(enabled=False))

        asyncio.run(ingestor.fetch_signal("counter", "ai"))
        second = asyncio.run(ingestor.fetch_signal("counter", "ai"))

        assert second.status == "fetched"

    def test_failed_fetch_releases_reservation(self, registry, ingestor):
        """A failing source reports unavailable and may be retried immediately."""
        calls = {"n": 0}

        async def flaky(keyword, client):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("upstream exploded")
            return {"count": 1}

        registry.register(make_source(name="flaky", fetch=flaky))

        first = asyncio.run(ingestor.fetch_signal("flaky", "ai"))
        second = asyncio.run(ingestor.fetch_signal("flaky", "ai"))

        assert first.status == "unavailable"
        assert "upstream exploded" in first.error
        assert second.status == "fetched"

    def test_timeout_is_unavailable(self, registry, ingestor):
        async def slow(keyword, client):
            await asyncio.sleep(5)
            return {"count": 1}

        registry.register(make_source(name="slow", fetch=slow))

        outcome = asyncio.run(ingestor.fetch_signal("slow", "ai"))

        assert outcome.status == "unavailable"
        assert "timed out" in outcome.error
        assert ingestor.rate_limiter.last_fetched("slow:ai") is None

    def test_unknown_source_raises(self, ingestor):
        with pytest.raises(SignalSourceNotFoundError):
            asyncio.run(ingestor.fetch_signal("missing", "ai"))

    def test_fetch_all_isolates_failures(self, registry, ingestor):
        """One broken source does not stop the others."""
        def broken_normalize(raw):
            raise ValueError("cannot normalize")

        registry.register(make_source(name="broken", layer=2, normalize=broken_normalize))
        registry.register(make_source(name="media", layer=4))

        outcomes = asyncio.run(ingestor.fetch_all_signals("ai"))

        statuses = {o.source_name: o.status for o in outcomes}
        assert statuses == {"counter": "fetched", "broken": "unavailable", "media": "fetched"}

    def test_fetch_all_with_no_sources(self, session_factory):
        ingestor = SignalIngestor(SignalSourceRegistry(), session_factory)
        assert asyncio.run(ingestor.fetch_all_signals("ai")) == []

    def test_history_newest_first(self, registry, session_factory):
        ingestor = SignalIngestor(registry, session_factory, rate_limiter=FetchRateLimiter(enabled=False))
        registry.register(make_source(name="other", layer=3))
        for _ in range(3):
            asyncio.run(ingestor.fetch_signal("counter", "ai"))
        asyncio.run(ingestor.fetch_signal("other", "ai"))

        history = ingestor.get_signal_history("ai")
        counter_only = ingestor.get_signal_history("ai", source_name="counter", limit=2)

        assert len(history) == 4
        fetched = [s.fetched_at for s in history]
        assert fetched == sorted(fetched, reverse=True)
        assert len(counter_only) == 2
        assert {s.source_name for s in counter_only} == {"counter"}
