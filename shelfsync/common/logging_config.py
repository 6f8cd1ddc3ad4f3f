"""Structured logging for shelfsync, built on structlog over stdlib logging."""

import logging
import logging.handlers
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, MutableMapping, Optional

import structlog

from .config import LoggingConfig

# Encoded book bodies and covers can run to megabytes of base64
ASSET_KEYS = frozenset(
    {"original_file", "original_cover_image", "originalFile", "originalCoverImage"}
)
SECRET_KEYS = frozenset({"token", "access_token", "authorization"})

THIRD_PARTY_LEVELS: Dict[str, str] = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "aiosqlite": "WARNING",
    "tenacity": "INFO",
}


def redact_payloads(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """
    structlog processor that keeps asset payloads and credentials out of logs.

    Encoded assets are replaced by their length, secrets by a fixed marker.

    Example:
        >>> redact_payloads(None, "info", {"event": "x", "originalFile": "UEsDBA=="})
        {'event': 'x', 'originalFile': '<8 encoded chars>'}
    """
    for key in ASSET_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = f"<{len(value)} encoded chars>"
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "<redacted>"
    return event_dict


def setup_logging(config: LoggingConfig, config_dir: Optional[Path] = None) -> None:
    """
    Configure structlog and the root stdlib logger.

    Args:
        config: LoggingConfig object with logging settings
        config_dir: Directory for the log file (file logging is skipped without it)

    Example:
        >>> from shelfsync.common.config import LoggingConfig
        >>> setup_logging(LoggingConfig(level="DEBUG", format="text"))
    """
    log_level = getattr(logging, config.level.upper())

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[],
        force=True,
    )

    for library, level in {**THIRD_PARTY_LEVELS, **config.third_party}.items():
        logging.getLogger(library).setLevel(getattr(logging, level.upper()))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_payloads,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    handlers = [console_handler]

    if config.file.enabled and config_dir is not None:
        log_path = config_dir / config.file.file_name
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_path),
            when="midnight",
            backupCount=config.file.backup_count,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structlog logger instance.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("import_complete", new=3, skipped=1)
    """
    return structlog.get_logger(name)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Attach key-value pairs to every log event emitted inside the block.

    Values bound outside the block are restored on exit.

    Example:
        >>> with log_context(sync_cycle="3f2c"):
        ...     logger.info("snapshot_downloaded")  # includes sync_cycle
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
