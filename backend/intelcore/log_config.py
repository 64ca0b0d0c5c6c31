"""
Logging for the Intelligence Core.

Modules log through the loguru ``logger`` re-exported here. structlog is
configured alongside it for callers that want key/value events
(``get_logger``). Both honour ``log_context``, which tags every line
emitted inside it with dataset ids, keywords or source names.

Credentials for the signal sources (reddit client secret, api keys) are
redacted before anything is rendered.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
from loguru import logger
from structlog.typing import EventDict, WrappedLogger

from intelcore.config import Settings, settings

REDACTED = "[REDACTED]"

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "{extra} <level>{message}</level>"
)

_configured = False


class SecretFilter:
    """structlog processor that blanks out credential-like fields."""

    SECRET_MARKERS = ("api_key", "secret", "client_id", "token", "password", "authorization")

    def __call__(self, logger: WrappedLogger, name: str, event_dict: EventDict) -> EventDict:
        for key in list(event_dict.keys()):
            if any(marker in key.lower() for marker in self.SECRET_MARKERS):
                event_dict[key] = REDACTED
        return event_dict


def add_log_level(logger: WrappedLogger, name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = name.upper()
    return event_dict


def add_timestamp(logger: WrappedLogger, name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _redact_extra(record: dict) -> None:
    """loguru patcher applying the same redaction to bound context."""
    extra = record["extra"]
    for key in list(extra.keys()):
        if any(marker in key.lower() for marker in SecretFilter.SECRET_MARKERS):
            extra[key] = REDACTED


class InterceptHandler(logging.Handler):
    """Route stdlib logging (httpx, sqlalchemy, uvicorn) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(config: Optional[Settings] = None, force: bool = False) -> None:
    """
    Install the loguru sinks and the structlog pipeline.

    Runs once per process unless ``force`` is set; jobs and the API call it
    again with their own settings instance when they need to.
    """
    global _configured
    if _configured and not force:
        return

    config = config or settings
    serialize = config.log_format == "json"
    log_format = "{message}" if serialize else TEXT_FORMAT

    logger.remove()
    logger.configure(patcher=_redact_extra)
    logger.add(
        sys.stderr,
        format=log_format,
        level=config.log_level,
        serialize=serialize,
        backtrace=config.is_development,
        diagnose=config.is_development,
    )

    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.log_file,
            format=log_format,
            level=config.log_level,
            serialize=serialize,
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            enqueue=True,
        )

    processors = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_log_level,
        SecretFilter(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if serialize else structlog.dev.ConsoleRenderer(),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
    logger.debug(f"Logging configured level={config.log_level} format={config.log_format} env={config.app_env}")


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Tag every loguru and structlog line emitted inside the block with ``fields``."""
    with logger.contextualize(**fields), structlog.contextvars.bound_contextvars(**fields):
        yield


def get_logger(name: str) -> Any:
    """structlog logger bound to ``name``."""
    return structlog.get_logger(name).bind(logger=name)


configure_logging()
