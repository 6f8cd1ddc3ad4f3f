"""Library sync between the local store and a remote snapshot file."""

from .merge import MergeEngine, MergeResult, restore_assets
from .orchestrator import (
    Authenticated,
    PickerResult,
    SnapshotPicker,
    SyncOrchestrator,
    SyncResult,
    SyncState,
    UploadResult,
)
from .remote import (
    Authenticator,
    DriveSnapshotAdapter,
    RemoteSnapshotStore,
    StaticTokenAuthenticator,
)
from .resolver import (
    CallbackResolver,
    ConflictResolver,
    Divergence,
    KeepLocalResolver,
    PreferRemoteResolver,
    describe_divergence,
)
from .session import SyncSession, SyncSettings, SyncSettingsStore

__all__ = [
    "MergeEngine",
    "MergeResult",
    "restore_assets",
    "Authenticated",
    "PickerResult",
    "SnapshotPicker",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "UploadResult",
    "Authenticator",
    "DriveSnapshotAdapter",
    "RemoteSnapshotStore",
    "StaticTokenAuthenticator",
    "CallbackResolver",
    "ConflictResolver",
    "Divergence",
    "KeepLocalResolver",
    "PreferRemoteResolver",
    "describe_divergence",
    "SyncSession",
    "SyncSettings",
    "SyncSettingsStore",
]
