"""
Conversation history sync engine.

Copies conversation files between the global Claude Code store and a
project's local ``.claude/history`` directory. The only conflict rule is
freshness: a file is copied when the destination is missing or strictly
older (by modification time) than the source. Copies preserve the source's
modification time, so mirrored files compare equal and a repeated pass
copies nothing.
"""

import logging
import os
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from claude_local.exceptions import ConversationParseError, StorageNotInitializedError
from claude_local.membership import SkipCounter, file_belongs_to_project, load_conversation
from claude_local.models import ConversationMetadata, StorageLocation, SyncResult
from claude_local.paths import (
    CONVERSATION_SUFFIXES,
    GlobalLayout,
    PathLike,
    get_global_source_path,
    get_global_storage_path,
    get_history_path,
    get_local_storage_path,
)

logger = logging.getLogger(__name__)

README_CONTENT = """\
# Claude Code Local Storage

This directory holds the conversation history for this project, mirrored
from Claude Code's global store (`~/.claude`) by `claude-local`.

## Structure

- `history/`: Conversation history files (`.jsonl` / `.json`)
- `config.json`: Local configuration (if present)

## Git Integration

`.claude/history/` is not gitignored unless you ask for it, so the
history can be committed and shared with your team.

To keep history private, add this to `.gitignore` (or run
`claude-local gitignore add`):

```
/.claude/history/
```

To share history, commit the `.claude/` directory. Team members run
`claude-local sync` (or `claude-local daemon start`) to make the
conversations available in Claude Code.

## Management

- `claude-local sync`: Sync conversations both ways (initializes if needed)
- `claude-local status`: Show storage locations and sync state
- `claude-local daemon start`: Keep every discovered project in sync
"""


def list_conversation_files(directory: Path) -> list[str]:
    """Names of conversation files directly inside ``directory``."""
    try:
        return sorted(
            entry.name
            for entry in os.scandir(directory)
            if entry.is_file() and Path(entry.name).suffix in CONVERSATION_SUFFIXES
        )
    except OSError:
        return []


def should_copy(source: Path, dest: Path) -> bool:
    """
    Freshness policy: copy iff dest is absent or strictly older than source.

    Equal timestamps never copy. If either stat fails the copy is attempted
    and any real problem surfaces from the copy itself.
    """
    try:
        dest_stat = dest.stat()
    except OSError:
        return True

    try:
        return source.stat().st_mtime_ns > dest_stat.st_mtime_ns
    except OSError:
        return True


class StorageManager:
    """
    Manages conversation history across the global and local stores.

    The global root is fixed at construction; callers that read it from
    ConfigManager do so once, before building the manager.
    """

    def __init__(
        self,
        global_path: Optional[PathLike] = None,
        layout: GlobalLayout = GlobalLayout.PROJECTS,
    ):
        self.global_path = get_global_storage_path(global_path)
        self.layout = GlobalLayout(layout)
        self.skipped = SkipCounter()

    def global_source_path(self, project_root: PathLike) -> Path:
        """Global-side directory for a project under the configured layout."""
        return get_global_source_path(self.global_path, project_root, self.layout)

    def initialize_local_storage(self, project_root: PathLike) -> None:
        """Create ``.claude/history`` and the explanatory README. Idempotent."""
        local_path = get_local_storage_path(project_root)
        get_history_path(local_path).mkdir(parents=True, exist_ok=True)
        (local_path / "README.md").write_text(README_CONTENT, encoding="utf-8")
        logger.info(f"Initialized local storage at {local_path}")

    def get_storage_locations(
        self, project_root: Optional[PathLike] = None
    ) -> dict[str, Optional[StorageLocation]]:
        """Describe the global (and optionally local) store locations."""
        if project_root is not None:
            global_dir = self.global_source_path(project_root)
        else:
            global_dir = (
                get_history_path(self.global_path)
                if self.layout is GlobalLayout.FLAT
                else self.global_path / "projects"
            )

        locations: dict[str, Optional[StorageLocation]] = {
            "global": StorageLocation(
                path=global_dir, type="global", exists=global_dir.exists()
            ),
            "local": None,
        }
        if project_root is not None:
            local_history = get_history_path(get_local_storage_path(project_root))
            locations["local"] = StorageLocation(
                path=local_history, type="local", exists=local_history.exists()
            )
        return locations

    def _copy_fresh(
        self, source_dir: Path, dest_dir: Path, names: list[str], errors: list[Exception]
    ) -> int:
        """Freshness-gated copy of ``names``; per-file failures go to ``errors``."""
        copied = 0
        for name in names:
            source = source_dir / name
            dest = dest_dir / name
            try:
                if should_copy(source, dest):
                    shutil.copy2(source, dest)
                    copied += 1
                    logger.debug(f"Copied {name}: {source_dir} → {dest_dir}")
            except OSError as e:
                logger.warning(f"✗ Failed to copy {name} to {dest_dir}: {e}")
                errors.append(e)
        return copied

    def sync_to_local(
        self, project_root: PathLike, bidirectional: bool = False
    ) -> SyncResult:
        """
        Sync conversations from the global store into the project.

        Args:
            project_root: Project whose local store receives the files
            bidirectional: Also copy newer local files back to the global side

        Returns:
            SyncResult; success is False if any file failed to copy
        """
        start_time = time.perf_counter()
        errors: list[Exception] = []
        files_processed = 0
        skipped_before = self.skipped.count

        def result() -> SyncResult:
            return SyncResult(
                success=not errors,
                files_processed=files_processed,
                errors=errors,
                duration=time.perf_counter() - start_time,
                files_skipped=self.skipped.count - skipped_before,
            )

        try:
            local_history = get_history_path(get_local_storage_path(project_root))
            source_dir = self.global_source_path(project_root)

            if not local_history.exists():
                self.initialize_local_storage(project_root)

            # No global data yet is not an error; sync_to_global seeds it
            if not source_dir.is_dir():
                return result()

            names = list_conversation_files(source_dir)
            # Only the shared flat directory mixes projects together
            if self.layout is GlobalLayout.FLAT:
                names = [
                    name
                    for name in names
                    if file_belongs_to_project(
                        source_dir / name, project_root, skipped=self.skipped
                    )
                ]
            files_processed += self._copy_fresh(source_dir, local_history, names, errors)

            if bidirectional:
                source_dir.mkdir(parents=True, exist_ok=True)
                files_processed += self._copy_fresh(
                    local_history, source_dir, list_conversation_files(local_history), errors
                )
        except OSError as e:
            logger.error(f"✗ Sync failed for {project_root}: {e}", exc_info=True)
            errors.append(e)

        return result()

    def sync_to_global(self, project_root: PathLike) -> SyncResult:
        """
        Copy every local conversation to the global store, unconditionally.

        Used to restore a project's history on a machine whose global store
        has never seen it. Refuses to run on an uninitialized local store.
        """
        start_time = time.perf_counter()
        errors: list[Exception] = []
        files_processed = 0

        local_history = get_history_path(get_local_storage_path(project_root))
        if not local_history.exists():
            return SyncResult(
                success=False,
                files_processed=0,
                errors=[StorageNotInitializedError(str(project_root))],
                duration=time.perf_counter() - start_time,
            )

        dest_dir = self.global_source_path(project_root)
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            for name in list_conversation_files(local_history):
                try:
                    shutil.copy2(local_history / name, dest_dir / name)
                    files_processed += 1
                except OSError as e:
                    logger.warning(f"✗ Failed to copy {name} to global: {e}")
                    errors.append(e)
        except OSError as e:
            logger.error(f"✗ Reverse sync failed for {project_root}: {e}", exc_info=True)
            errors.append(e)

        return SyncResult(
            success=not errors,
            files_processed=files_processed,
            errors=errors,
            duration=time.perf_counter() - start_time,
        )

    def sync_file(
        self,
        source: PathLike,
        dest_dir: PathLike,
        project_root: Optional[PathLike] = None,
    ) -> bool:
        """
        Mirror a single file into ``dest_dir`` under the freshness policy.

        Args:
            source: File that changed
            dest_dir: Directory receiving the copy (created if missing)
            project_root: When given, the file must belong to this project

        Returns:
            True if the file was copied

        Raises:
            OSError: If the copy itself fails
        """
        source = Path(source)
        dest_dir = Path(dest_dir)
        if not source.is_file():
            return False
        if project_root is not None and not file_belongs_to_project(
            source, project_root, skipped=self.skipped
        ):
            return False

        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / source.name
        if not should_copy(source, dest):
            return False
        shutil.copy2(source, dest)
        return True

    def clean_local_storage(self, project_root: PathLike, preserve_config: bool = False) -> None:
        """
        Remove local history, and the whole ``.claude`` directory unless
        ``preserve_config`` is set.
        """
        local_path = get_local_storage_path(project_root)
        history_path = get_history_path(local_path)

        if history_path.exists():
            shutil.rmtree(history_path, ignore_errors=True)

        if not preserve_config and local_path.exists():
            shutil.rmtree(local_path, ignore_errors=True)

        logger.info(f"Cleaned local storage at {local_path}")

    def get_conversation_metadata(self, storage_path: PathLike) -> list[ConversationMetadata]:
        """
        Summarize every conversation in ``<storage_path>/history``.

        Timestamps come from the filesystem, not from file content. Files
        that cannot be parsed are skipped (and counted in ``skipped``).
        """
        history_path = get_history_path(storage_path)
        metadata: list[ConversationMetadata] = []

        for name in list_conversation_files(history_path):
            file_path = history_path / name
            try:
                document = load_conversation(file_path)
                file_stat = file_path.stat()
            except (ConversationParseError, OSError) as e:
                logger.debug(f"Skipping {name}: {e}")
                self.skipped.record(file_path)
                continue

            created = getattr(file_stat, "st_birthtime", file_stat.st_ctime)
            metadata.append(
                ConversationMetadata(
                    id=file_path.stem,
                    project_path=document.working_directory or "unknown",
                    created_at=datetime.fromtimestamp(created, tz=timezone.utc),
                    updated_at=datetime.fromtimestamp(file_stat.st_mtime, tz=timezone.utc),
                    message_count=document.message_count,
                    title=document.title,
                )
            )

        metadata.sort(key=lambda m: m.updated_at, reverse=True)
        return metadata
