"""
External signal ingestion.

Sources are registered into an owned registry, fetched through a shared
httpx.AsyncClient, normalized into a uniform feature shape and persisted as
append-only ExternalSignal rows. One source failing never aborts a batch.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from intelcore.db.repositories import ExternalSignalRepository
from intelcore.db.session import transaction_scope
from intelcore.signals.schemas import NormalizedSignalFeatures, SignalFetchOutcome, SignalRecord, SignalSourceInfo
from intelcore.utils.datetime import utc_now
from intelcore.utils.errors import InvalidSignalSourceError, SignalSourceError, SignalSourceNotFoundError
from intelcore.utils.rate_limit import UPDATE_FREQUENCY_INTERVALS, FetchRateLimiter
from intelcore.log_config import logger


ATTENTION_LAYERS = range(1, 7)
RELATIVE_DEVIATION_WINDOW = 10

FetchFunction = Callable[[str, httpx.AsyncClient], Awaitable[Any]]
NormalizeFunction = Callable[[Any], NormalizedSignalFeatures]
FeatureFunction = Callable[[Any], Dict[str, float]]


@dataclass(frozen=True)
class SignalSource:
    """A pluggable external signal source bound to one attention layer."""
    name: str
    layer: int
    fetch: FetchFunction
    normalize: NormalizeFunction
    extract_features: FeatureFunction
    update_frequency: str = "daily"

    def info(self) -> SignalSourceInfo:
        return SignalSourceInfo(name=self.name, layer=self.layer, update_frequency=self.update_frequency)


class SignalSourceRegistry:
    """Owned lookup of signal sources; re-registering a name replaces it."""

    def __init__(self):
        self._sources: Dict[str, SignalSource] = {}

    def register(self, source: SignalSource) -> SignalSource:
        if source.layer not in ATTENTION_LAYERS:
            raise InvalidSignalSourceError(
                f"Signal source '{source.name}' has invalid layer {source.layer}",
                details={"source": source.name, "layer": source.layer},
            )
        if source.update_frequency not in UPDATE_FREQUENCY_INTERVALS:
            raise InvalidSignalSourceError(
                f"Signal source '{source.name}' has unknown update frequency '{source.update_frequency}'",
                details={"source": source.name, "update_frequency": source.update_frequency},
            )
        self._sources[source.name] = source
        logger.info(f"Registered signal source '{source.name}' (layer {source.layer}, {source.update_frequency})")
        return source

    def get(self, name: str) -> Optional[SignalSource]:
        return self._sources.get(name)

    def require(self, name: str) -> SignalSource:
        source = self._sources.get(name)
        if source is None:
            raise SignalSourceNotFoundError(f"Signal source not found: {name}", details={"source": name})
        return source

    def list_sources(self) -> List[SignalSourceInfo]:
        return [source.info() for source in self._sources.values()]

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self):
        return iter(list(self._sources.values()))


# ============================================================================
# Normalization Helpers
# ============================================================================

def compute_signal_velocity(values: Sequence[float], timestamps: Sequence[datetime]) -> float:
    """Change per second between the two most recent points (0 with fewer than 2)."""
    if len(values) < 2 or len(timestamps) < 2:
        return 0.0
    dt = (timestamps[-1] - timestamps[-2]).total_seconds()
    if dt == 0:
        return 0.0
    return (values[-1] - values[-2]) / dt


def compute_signal_acceleration(values: Sequence[float], timestamps: Sequence[datetime]) -> float:
    """Change in velocity per second across the last three points (0 with fewer than 3)."""
    if len(values) < 3 or len(timestamps) < 3:
        return 0.0
    latest = compute_signal_velocity(values[-2:], timestamps[-2:])
    previous = compute_signal_velocity(values[-3:-1], timestamps[-3:-1])
    dt = (timestamps[-1] - timestamps[-2]).total_seconds()
    if dt == 0:
        return 0.0
    return (latest - previous) / dt


def compute_rolling_mean(values: Sequence[float], window_size: int = RELATIVE_DEVIATION_WINDOW) -> float:
    window = list(values)[-window_size:]
    if not window:
        return 0.0
    return float(np.mean(window))


def compute_relative_deviation(values: Sequence[float]) -> float:
    """(latest - rolling mean) / rolling mean over the last min(10, n) values."""
    if len(values) < 2:
        return 0.0
    rolling_mean = compute_rolling_mean(values, min(RELATIVE_DEVIATION_WINDOW, len(values)))
    if rolling_mean == 0:
        return 0.0
    return (values[-1] - rolling_mean) / rolling_mean


# ============================================================================
# Ingestor
# ============================================================================

class SignalIngestor:
    """Fetches, normalizes and persists signals with per-(source, keyword) rate limiting."""

    def __init__(
        self,
        registry: SignalSourceRegistry,
        session_factory: sessionmaker,
        rate_limiter: Optional[FetchRateLimiter] = None,
        timeout: float = 10.0,
        user_agent: str = "IntelCore/1.0 (signal-sources)",
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        """
        Initialize the ingestor.

        Args:
            registry: Registered signal sources
            session_factory: Session factory used to persist signals
            rate_limiter: Shared limiter (a fresh one is created if omitted)
            timeout: Seconds allowed per source fetch
            user_agent: User-Agent header sent to signal APIs
            client_factory: Builds the AsyncClient used for a batch (tests pass a MockTransport client)
        """
        self.registry = registry
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter or FetchRateLimiter()
        self.timeout = timeout
        self.user_agent = user_agent
        self._client_factory = client_factory

    def _new_client(self) -> httpx.AsyncClient:
        if self._client_factory is not None:
            return self._client_factory()
        return httpx.AsyncClient(timeout=self.timeout, headers={"User-Agent": self.user_agent})

    async def _fetch_and_normalize(
        self,
        source: SignalSource,
        keyword: str,
        client: Optional[httpx.AsyncClient],
    ) -> Tuple[Any, NormalizedSignalFeatures]:
        """Run the source's fetch under the timeout, then normalize. Any failure becomes SignalSourceError."""
        try:
            if client is None:
                async with self._new_client() as own_client:
                    raw = await asyncio.wait_for(source.fetch(keyword, own_client), timeout=self.timeout)
            else:
                raw = await asyncio.wait_for(source.fetch(keyword, client), timeout=self.timeout)
            return raw, source.normalize(raw)
        except asyncio.TimeoutError as e:
            raise SignalSourceError(f"timed out after {self.timeout}s", details={"source": source.name}) from e
        except Exception as e:
            raise SignalSourceError(str(e), details={"source": source.name}) from e

    async def fetch_signal(
        self,
        source_name: str,
        keyword: str,
        client: Optional[httpx.AsyncClient] = None,
    ) -> SignalFetchOutcome:
        """
        Fetch one source for one keyword.

        Raises:
            SignalSourceNotFoundError: If no source is registered under the name

        Returns:
            SignalFetchOutcome; rate limiting and source failures are reported in
            its status rather than raised
        """
        source = self.registry.require(source_name)

        key = self.rate_limiter.make_key(source_name, keyword)
        reservation = self.rate_limiter.try_reserve(key, UPDATE_FREQUENCY_INTERVALS[source.update_frequency])
        if reservation is None:
            logger.info(f"Rate limited: {source_name}/{keyword}. Update frequency: {source.update_frequency}")
            return SignalFetchOutcome(
                source_name=source_name, keyword=keyword, layer=source.layer, status="rate_limited"
            )

        try:
            raw, features = await self._fetch_and_normalize(source, keyword, client)

            with transaction_scope(self.session_factory) as db:
                signal = ExternalSignalRepository(db).create(
                    source_name=source_name,
                    layer=source.layer,
                    keyword=keyword,
                    normalized_features=features.to_storage(),
                    raw_data=raw,
                    fetched_at=utc_now(),
                )
                record = SignalRecord.model_validate(signal)
        except SignalSourceError as e:
            self.rate_limiter.release(reservation)
            logger.warning(f"Signal fetch from {source_name} failed: {e.message}")
            return SignalFetchOutcome(
                source_name=source_name, keyword=keyword, layer=source.layer,
                status="unavailable", error=e.message,
            )
        except SQLAlchemyError as e:
            self.rate_limiter.release(reservation)
            logger.error(f"Could not store signal from {source_name}: {e}")
            return SignalFetchOutcome(
                source_name=source_name, keyword=keyword, layer=source.layer,
                status="unavailable", error=str(e),
            )

        self.rate_limiter.commit(reservation)
        logger.info(f"Fetched signal from {source_name} for keyword: {keyword}")
        return SignalFetchOutcome(
            source_name=source_name, keyword=keyword, layer=source.layer, status="fetched", signal=record
        )

    async def _fetch_isolated(self, source_name: str, keyword: str, client: httpx.AsyncClient) -> SignalFetchOutcome:
        try:
            return await self.fetch_signal(source_name, keyword, client)
        except Exception as e:
            logger.error(f"Error fetching signal from {source_name}: {e}")
            return SignalFetchOutcome(source_name=source_name, keyword=keyword, status="unavailable", error=str(e))

    async def fetch_all_signals(self, keyword: str) -> List[SignalFetchOutcome]:
        """Fetch every registered source concurrently; each source's failure stays its own."""
        sources = list(self.registry)
        if not sources:
            return []

        async with self._new_client() as client:
            outcomes = await asyncio.gather(
                *(self._fetch_isolated(source.name, keyword, client) for source in sources)
            )

        fetched = sum(1 for o in outcomes if o.status == "fetched")
        logger.info(f"Fetched {fetched}/{len(outcomes)} signal sources for keyword: {keyword}")
        return list(outcomes)

    def get_signal_history(
        self,
        keyword: str,
        source_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[SignalRecord]:
        """Stored signals for a keyword, newest first."""
        with transaction_scope(self.session_factory) as db:
            signals = ExternalSignalRepository(db).get_history(keyword, source_name=source_name, limit=limit)
            return [SignalRecord.model_validate(s) for s in signals]
