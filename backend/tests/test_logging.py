"""
Tests for logging configuration and error payloads.
"""

import pytest

from intelcore.log_config import SecretFilter, add_log_level, get_logger, log_context, logger
from intelcore.utils.errors import DatasetNotFoundError, IntelCoreError, RecordNotFoundError


@pytest.fixture
def captured_extra():
    records = []
    sink_id = logger.add(lambda message: records.append(dict(message.record["extra"])), level="INFO")
    yield records
    logger.remove(sink_id)


class TestSecretFilter:
    """Credentials never reach the log output."""

    def test_redacts_credential_fields(self):
        event = {"event": "fetch", "youtube_api_key": "abc", "reddit_client_secret": "xyz", "keyword": "ai"}

        filtered = SecretFilter()(None, "info", event)

        assert filtered["youtube_api_key"] == "[REDACTED]"
        assert filtered["reddit_client_secret"] == "[REDACTED]"
        assert filtered["keyword"] == "ai"

    def test_adds_level(self):
        assert add_log_level(None, "warning", {})["level"] == "WARNING"

    def test_get_logger(self):
        assert get_logger("intelcore.tests") is not None


class TestLogContext:
    def test_fields_bound_only_inside_block(self, captured_extra):
        with log_context(dataset_id="d1"):
            logger.info("inside")
        logger.info("outside")

        assert captured_extra[0]["dataset_id"] == "d1"
        assert "dataset_id" not in captured_extra[1]

    def test_bound_credentials_are_redacted(self, captured_extra):
        with log_context(keyword="ai", gnews_api_key="k-123"):
            logger.info("fetching")

        assert captured_extra[0]["keyword"] == "ai"
        assert captured_extra[0]["gnews_api_key"] == "[REDACTED]"


class TestErrors:
    def test_to_dict(self):
        error = DatasetNotFoundError("Dataset d1 not found", details={"dataset_id": "d1"})

        assert isinstance(error, RecordNotFoundError)
        assert error.to_dict() == {
            "error": "DatasetNotFoundError",
            "message": "Dataset d1 not found",
            "details": {"dataset_id": "d1"},
        }

    def test_details_default_to_empty(self):
        assert IntelCoreError("boom").details == {}
