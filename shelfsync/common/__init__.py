"""Common utilities and infrastructure for shelfsync."""

from .config import (
    Config,
    LoggingConfig,
    MatchingConfig,
    RemoteConfig,
    RetryConfig,
    SyncConfig,
)
from .logging_config import get_logger, log_context, redact_payloads, setup_logging
from .string_utils import (
    levenshtein_distance,
    normalize_string,
    normalize_title,
    title_from_cover_filename,
    title_similarity,
)

__all__ = [
    "Config",
    "LoggingConfig",
    "MatchingConfig",
    "RemoteConfig",
    "RetryConfig",
    "SyncConfig",
    "get_logger",
    "log_context",
    "redact_payloads",
    "setup_logging",
    "levenshtein_distance",
    "normalize_string",
    "normalize_title",
    "title_from_cover_filename",
    "title_similarity",
]
