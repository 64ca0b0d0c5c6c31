"""
Shared pytest fixtures for the Intelligence Core test suite.

Every test gets a fresh in-memory SQLite database, so no cleanup is needed.
"""

import os
import random
import sys
from datetime import datetime, timedelta

import pytest

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from intelcore.config import Settings
from intelcore.core import IntelligenceCore
from intelcore.db.session import build_engine, build_session_factory, init_db


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine with the schema created."""
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Plain session for repository-level tests; rolled back afterwards."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, database_url="sqlite:///:memory:", rate_limit_enabled=True)


@pytest.fixture
def core(test_settings, session_factory):
    """Core with a linear 'linear' dataset type and seeded randomness."""
    core = IntelligenceCore(
        settings=test_settings,
        session_factory=session_factory,
        rng=random.Random(42),
    )
    core.register_dataset_type(
        "linear",
        feature_extractor=lambda raw: {"x1": raw["x1"], "x2": raw["x2"]},
        target_extractor=lambda raw: raw["y"],
        target_metric_name="y",
    )
    return core


def linear_records(count=12, start=None):
    """Time-ordered records with y = 2*x1 + 3*x2 + 1 on a spread of inputs."""
    start = start or datetime(2024, 1, 1)
    records = []
    for i in range(count):
        x1 = (i * 7 % 11) / 10.0
        x2 = (i * 5 % 13) / 12.0
        records.append({
            "x1": x1,
            "x2": x2,
            "y": 2 * x1 + 3 * x2 + 1,
            "created_at": start + timedelta(days=i),
        })
    return records
