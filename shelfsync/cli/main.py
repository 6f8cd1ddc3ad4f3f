"""Command line interface for managing and syncing a library."""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

import structlog

# Lazy imports to avoid circular dependencies
logger = structlog.get_logger(__name__)


async def _configure(config_path: Optional[Path]) -> None:
    import shelfsync

    await shelfsync.configure(config_path=config_path)


def _expand_paths(paths: List[str]) -> List[Path]:
    """Expand directories into the files directly inside them."""
    expanded: List[Path] = []
    for raw in paths:
        path = Path(raw).expanduser()
        if path.is_dir():
            expanded.extend(sorted(p for p in path.iterdir() if p.is_file()))
        else:
            expanded.append(path)
    return expanded


def _print_summary(label: str, summary) -> None:
    print(
        f"{label}: {summary.succeeded} succeeded "
        f"({summary.new} new, {summary.updated} updated), "
        f"{summary.skipped} skipped, {summary.failed} failed"
    )
    for item in summary.failed_items:
        print(f"  failed: {item['file_name']}: {item['error']}", file=sys.stderr)


async def import_books(paths: List[str], config_path: Optional[Path] = None) -> bool:
    """Import book files (or directories of them) into the library."""
    import shelfsync
    from shelfsync.services import LibraryService

    await _configure(config_path)
    try:
        service = LibraryService(await shelfsync.get_repository())
        summary = await service.import_books(_expand_paths(paths))
    finally:
        await shelfsync.close()

    _print_summary("Books", summary)
    return summary.failed == 0


async def import_covers(
    paths: List[str],
    threshold: Optional[float] = None,
    config_path: Optional[Path] = None,
) -> bool:
    """Attach cover images to the books whose titles they match."""
    import shelfsync
    from shelfsync.services import LibraryService

    await _configure(config_path)
    try:
        service = LibraryService(await shelfsync.get_repository())
        summary = await service.import_covers(_expand_paths(paths), threshold=threshold)
    finally:
        await shelfsync.close()

    _print_summary("Covers", summary)
    return summary.failed == 0


async def list_records(query: Optional[str] = None, config_path: Optional[Path] = None) -> bool:
    """Print every record in the library, or those matching ``query``."""
    import shelfsync
    from shelfsync.services import LibraryService

    await _configure(config_path)
    try:
        service = LibraryService(await shelfsync.get_repository())
        if query is None:
            records = await service.repository.get_all()
        else:
            records = await service.search(query)
    finally:
        await shelfsync.close()

    if not records:
        print("Library is empty" if query is None else f"No books match '{query}'")
        return True

    print(f"{'ID':<12} {'Progress':>8}  {'Title':<40} {'Author':<25}")
    print("-" * 88)
    for record in records:
        progress = f"{round(record.progress * 100)}%"
        print(f"{record.id:<12} {progress:>8}  {record.title[:40]:<40} {record.author[:25]:<25}")
    return True


async def save_progress(
    record_id: str,
    progress: float,
    font_size: Optional[int] = None,
    config_path: Optional[Path] = None,
) -> bool:
    """Record reading progress for one book."""
    import shelfsync
    from shelfsync.services import LibraryService

    await _configure(config_path)
    try:
        service = LibraryService(await shelfsync.get_repository())
        saved = await service.save_progress(record_id, progress, font_size)
    finally:
        await shelfsync.close()

    if not saved:
        print(f"Error: could not save progress for '{record_id}'", file=sys.stderr)
        return False
    print(f"Progress saved for '{record_id}'")
    return True


async def edit_record(
    record_id: str,
    title: Optional[str] = None,
    author: Optional[str] = None,
    config_path: Optional[Path] = None,
) -> bool:
    """Change a book's title and/or author. The record id is kept."""
    import shelfsync
    from shelfsync.services import LibraryService, NotFoundError

    await _configure(config_path)
    try:
        service = LibraryService(await shelfsync.get_repository())
        try:
            await service.get_record(record_id)
        except NotFoundError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return False

        changed = []
        if title is not None and await service.edit_title(record_id, title):
            changed.append("title")
        if author is not None and await service.edit_author(record_id, author):
            changed.append("author")
    finally:
        await shelfsync.close()

    if changed:
        print(f"Updated {' and '.join(changed)} for '{record_id}'")
    else:
        print(f"No changes for '{record_id}'")
    return True


async def clear_library(config_path: Optional[Path] = None) -> bool:
    """Remove every book from the local library."""
    import shelfsync
    from shelfsync.services import LibraryService

    await _configure(config_path)
    try:
        service = LibraryService(await shelfsync.get_repository())
        removed = await service.clear_library()
    finally:
        await shelfsync.close()

    if removed is None:
        print("Error: could not clear the library", file=sys.stderr)
        return False
    print(f"Removed {removed} books")
    return True


def _positive_seconds(value: str) -> float:
    seconds = float(value)
    if not 0 < seconds <= 86400:
        raise argparse.ArgumentTypeError("must be between 0 and 86400 seconds")
    return seconds


def _build_resolver(strategy: str):
    from shelfsync.sync import (
        CallbackResolver,
        KeepLocalResolver,
        PreferRemoteResolver,
        describe_divergence,
    )

    if strategy == "remote":
        return PreferRemoteResolver()
    if strategy == "local":
        return KeepLocalResolver()

    async def ask(local, remote) -> Optional[bool]:
        print(describe_divergence(local, remote))
        answer = await asyncio.to_thread(input, "Use remote version? [y/n, blank to skip] ")
        answer = answer.strip().lower()
        if not answer:
            return None
        return answer.startswith("y")

    return CallbackResolver(ask)


async def run_sync(
    file_id: Optional[str],
    token: Optional[str],
    strategy: str = "ask",
    config_path: Optional[Path] = None,
    interval: Optional[float] = None,
) -> bool:
    """
    Run one sync cycle against the remote snapshot file.

    ``file_id`` and ``interval`` are saved to the sync settings and apply to
    later runs as well.
    """
    import shelfsync
    from shelfsync.core.retry import PersistenceRetry
    from shelfsync.sync import (
        DriveSnapshotAdapter,
        StaticTokenAuthenticator,
        SyncOrchestrator,
        SyncSession,
    )

    await _configure(config_path)
    config = shelfsync.get_config()
    session = SyncSession.create(
        config.get_sync_settings_path(),
        default_interval_seconds=config.sync.interval_seconds,
    )
    await session.init()
    if file_id:
        await session.update(sync_enabled=True, file_id=file_id)
    if interval is not None:
        await session.update(sync_interval=int(interval * 1000))

    try:
        async with DriveSnapshotAdapter(config.remote) as remote:
            orchestrator = SyncOrchestrator(
                session=session,
                repository=await shelfsync.get_repository(),
                remote=remote,
                authenticator=StaticTokenAuthenticator(token),
                resolver=_build_resolver(strategy),
                retry=PersistenceRetry(config.retry),
            )
            result = await orchestrator.run_cycle()
    finally:
        await session.dispose()
        await shelfsync.close()

    if not result.success:
        print(f"Sync failed: {result.error}", file=sys.stderr)
        return False
    print(
        f"Sync complete: {result.added} added, {result.updated} updated, "
        f"{result.unresolved} kept local, {result.removed} removed"
    )
    return True


def main() -> None:
    """Main entry point for the shelfsync command."""
    parser = argparse.ArgumentParser(
        prog="shelfsync",
        description="Manage an ebook library and sync it with a remote backup",
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    books_parser = subparsers.add_parser(
        "import-books",
        help="Import book files",
        description="Import .epub, .pdf, .mobi, .azw3 and .cbz files",
    )
    books_parser.add_argument("paths", nargs="+", help="Files or directories")

    covers_parser = subparsers.add_parser(
        "import-covers",
        help="Attach cover images to books",
        description="Match cover images to books by file name and title similarity",
    )
    covers_parser.add_argument("paths", nargs="+", help="Image files or directories")
    covers_parser.add_argument(
        "--threshold",
        "-t",
        type=float,
        help="Minimum title similarity between 0 and 1 (default: from config)",
    )

    list_parser = subparsers.add_parser("list", help="List all books")
    list_parser.add_argument("--search", "-s", help="Only books whose title or author contains this text")

    progress_parser = subparsers.add_parser("progress", help="Save reading progress")
    progress_parser.add_argument("record_id", help="Record id (id_...)")
    progress_parser.add_argument("progress", type=float, help="Progress between 0 and 1")
    progress_parser.add_argument("--font-size", type=int, help="Reader font size (10-72)")

    edit_parser = subparsers.add_parser("edit", help="Change a book's title or author")
    edit_parser.add_argument("record_id", help="Record id (id_...)")
    edit_parser.add_argument("--title", help="New title (blank is ignored)")
    edit_parser.add_argument("--author", help="New author (may be blank)")

    clear_parser = subparsers.add_parser("clear", help="Remove every book from the local library")
    clear_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    sync_parser = subparsers.add_parser(
        "sync",
        help="Sync with the remote backup",
        description="Run one sync cycle against the remote snapshot file",
    )
    sync_parser.add_argument("--file-id", help="Remote snapshot file id (saved for later runs)")
    sync_parser.add_argument(
        "--token",
        default=os.environ.get("SHELFSYNC_TOKEN"),
        help="Access token (default: SHELFSYNC_TOKEN environment variable)",
    )
    sync_parser.add_argument(
        "--conflicts",
        choices=["ask", "local", "remote"],
        default="ask",
        help="How to resolve books changed on both sides (default: ask)",
    )
    sync_parser.add_argument(
        "--interval",
        type=_positive_seconds,
        help="Seconds between scheduled sync cycles (saved for later runs)",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "import-books":
        success = asyncio.run(import_books(args.paths, args.config))
    elif args.command == "import-covers":
        success = asyncio.run(import_covers(args.paths, args.threshold, args.config))
    elif args.command == "list":
        success = asyncio.run(list_records(args.search, args.config))
    elif args.command == "edit":
        if args.title is None and args.author is None:
            edit_parser.error("give --title and/or --author")
        success = asyncio.run(edit_record(args.record_id, args.title, args.author, args.config))
    elif args.command == "clear":
        if not args.yes:
            answer = input("Clear the entire library? This cannot be undone. [y/N] ")
            if not answer.strip().lower().startswith("y"):
                print("Cancelled")
                sys.exit(0)
        success = asyncio.run(clear_library(args.config))
    elif args.command == "progress":
        success = asyncio.run(
            save_progress(args.record_id, args.progress, args.font_size, args.config)
        )
    else:
        success = asyncio.run(
            run_sync(args.file_id, args.token, args.conflicts, args.config, args.interval)
        )

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
