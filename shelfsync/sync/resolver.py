"""Conflict resolvers: choosing between a local and a newer remote record."""

import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

import structlog

from shelfsync.core.exceptions import ConflictDismissed
from shelfsync.core.models import LibraryRecord

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Divergence:
    """A local and a remote record sharing one id whose timestamps disagree."""

    local: LibraryRecord
    remote: LibraryRecord

    @property
    def record_id(self) -> str:
        return self.local.id


@runtime_checkable
class ConflictResolver(Protocol):
    """
    Decides whether a newer remote record replaces the local one.

    ``resolve`` returns True to adopt the remote version. Raising
    ConflictDismissed is read as "keep local".
    """

    async def resolve(self, local: LibraryRecord, remote: LibraryRecord) -> bool:
        ...


def _format_timestamp(epoch_ms: Optional[int]) -> str:
    return datetime.fromtimestamp((epoch_ms or 0) / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_progress(progress: float) -> str:
    return f"{round(progress * 100)}%"


def describe_divergence(local: LibraryRecord, remote: LibraryRecord) -> str:
    """
    Summarize two diverging versions for a person choosing between them.

    Example:
        The book "Dune" has been modified both locally and remotely.
        Local version: 2024-01-01 10:00:00 - Progress: 10%
        Remote version: 2024-01-02 10:00:00 - Progress: 55%
    """
    return (
        f'The book "{local.title}" has been modified both locally and remotely.\n'
        f"Local version: {_format_timestamp(local.last_modified)}"
        f" - Progress: {_format_progress(local.progress)}\n"
        f"Remote version: {_format_timestamp(remote.last_modified)}"
        f" - Progress: {_format_progress(remote.progress)}"
    )


class KeepLocalResolver:
    """Never adopts the remote version."""

    async def resolve(self, local: LibraryRecord, remote: LibraryRecord) -> bool:
        return False


class PreferRemoteResolver:
    """Always adopts the remote version."""

    async def resolve(self, local: LibraryRecord, remote: LibraryRecord) -> bool:
        return True


ChoiceCallable = Callable[
    [LibraryRecord, LibraryRecord],
    Union[Optional[bool], Awaitable[Optional[bool]]],
]


class CallbackResolver:
    """
    Delegates the choice to a plain or async callable.

    The callable returns True (use remote), False (keep local) or None when
    the person dismissed the prompt, which counts as keeping local.

    Example:
        >>> def ask(local, remote):
        ...     print(describe_divergence(local, remote))
        ...     return input("Use remote version? [y/N] ").lower() == "y"
        >>> resolver = CallbackResolver(ask)
    """

    def __init__(self, choose: ChoiceCallable):
        self._choose = choose

    async def resolve(self, local: LibraryRecord, remote: LibraryRecord) -> bool:
        answer = self._choose(local, remote)
        if inspect.isawaitable(answer):
            answer = await answer
        if answer is None:
            raise ConflictDismissed(f"Conflict for {local.id} dismissed")
        logger.debug("conflict_resolved", record_id=local.id, use_remote=bool(answer))
        return bool(answer)
