"""shelfsync package initialization."""

from pathlib import Path
from typing import Optional

import structlog

from .common.config import (
    Config,
    LoggingConfig,
    MatchingConfig,
    RemoteConfig,
    RetryConfig,
    SyncConfig,
)
from .common.logging_config import setup_logging
from .common.string_utils import normalize_title, title_similarity
from .core import (
    BinaryAsset,
    ConflictDismissed,
    DecodeError,
    LibraryRecord,
    LibrarySnapshot,
    NetworkError,
    PersistenceRetry,
    ShelfsyncError,
    SnapshotFormatError,
    TransientStorageError,
    ValidationError,
    compute_record_id,
    decode_asset,
    encode_asset,
)
from .core.db import (
    DatabaseConnectionError,
    DatabaseError,
    MigrationError,
    QueryError,
    RecordRepository,
)

__version__ = "0.1.0"
__all__ = [
    "Config",
    "LoggingConfig",
    "MatchingConfig",
    "RemoteConfig",
    "RetryConfig",
    "SyncConfig",
    "configure",
    "get_config",
    "get_repository",
    "close",
    "setup_logging",
    "normalize_title",
    "title_similarity",
    "BinaryAsset",
    "ConflictDismissed",
    "DecodeError",
    "LibraryRecord",
    "LibrarySnapshot",
    "NetworkError",
    "PersistenceRetry",
    "ShelfsyncError",
    "SnapshotFormatError",
    "TransientStorageError",
    "ValidationError",
    "compute_record_id",
    "decode_asset",
    "encode_asset",
    "DatabaseConnectionError",
    "DatabaseError",
    "MigrationError",
    "QueryError",
    "RecordRepository",
]

# Module-level logger (not configured yet)
logger = structlog.get_logger(__name__)

# Global config and repository state
_config: Optional[Config] = None
_repository: Optional[RecordRepository] = None


async def configure(config_path: Optional[Path] = None, config: Optional[Config] = None) -> None:
    """
    Configure the shelfsync package (async).

    Call once at startup to load configuration, set up logging and open the
    record store.

    Path Resolution:
    - If config is provided it is used as-is
    - Else if config_path is provided, load from that file
    - Otherwise look for config.yaml in SHELFSYNC_CONFIG_DIR (or the default
      config dir), then in the working directory, then fall back to defaults

    Example:
        >>> import shelfsync
        >>> await shelfsync.configure(config_path=Path("config.yaml"))
    """
    global _config, _repository

    from shelfsync.common.config import _get_default_config_dir

    if config is not None:
        _config = config
    elif config_path is not None:
        _config = Config.from_yaml(config_path)
    else:
        default_config_path = _get_default_config_dir() / "config.yaml"
        cwd_config_path = Path.cwd() / "config.yaml"

        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
            config_path = default_config_path
        elif cwd_config_path.exists():
            _config = Config.from_yaml(cwd_config_path)
            config_path = cwd_config_path
        elif _config is None:
            _config = Config()

    _config.resolve_paths(create_dirs=True)
    setup_logging(_config.logging, _config.config_dir)

    if _repository is None:
        _repository = await RecordRepository.open(_config.get_database_path())

    logger.info(
        "shelfsync_configured",
        version=__version__,
        config_path=str(config_path) if config_path else None,
        config_dir=str(_config.config_dir),
        database_path=str(_config.get_database_path()),
    )


def get_config() -> Config:
    """
    Get current configuration, initializing with defaults if needed.

    Example:
        >>> import shelfsync
        >>> shelfsync.get_config().sync.interval_seconds
        30.0
    """
    global _config
    if _config is None:
        _config = Config()
        setup_logging(_config.logging)
    return _config


async def get_repository() -> RecordRepository:
    """
    Get the record repository, opening it if needed (async).

    Example:
        >>> repo = await shelfsync.get_repository()
        >>> records = await repo.get_all()
    """
    global _repository

    if _repository is None:
        config = get_config()
        config.resolve_paths(create_dirs=True)
        _repository = await RecordRepository.open(config.get_database_path())
        logger.info("repository_auto_initialized", database_path=str(config.get_database_path()))

    return _repository


async def close() -> None:
    """Close the record store opened by configure() or get_repository()."""
    global _repository
    if _repository is not None:
        await _repository.close()
        _repository = None
