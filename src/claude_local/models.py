"""
Data models shared by the sync engine, watcher and daemon.

Plain dataclasses: nothing here is persisted, every value is rebuilt from
the filesystem on demand.
"""

import enum
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Optional


class WatcherEventType(str, enum.Enum):
    """Kind of filesystem change seen by a watcher."""

    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


class SyncDirection(str, enum.Enum):
    """Direction of a daemon-triggered sync."""

    TO_LOCAL = "to-local"
    TO_GLOBAL = "to-global"
    BIDIRECTIONAL = "bidirectional"


@dataclass
class StorageLocation:
    """A store directory and whether it currently exists."""

    path: Path
    type: Literal["global", "local"]
    exists: bool


@dataclass
class SyncResult:
    """Outcome of one sync pass."""

    success: bool
    files_processed: int = 0
    errors: list[Exception] = field(default_factory=list)
    duration: float = 0.0  # seconds
    files_skipped: int = 0  # unparsable files left out by the membership filter

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for display or logging."""
        return {
            "success": self.success,
            "files_processed": self.files_processed,
            "errors": [str(e) for e in self.errors],
            "duration_ms": round(self.duration * 1000),
            "files_skipped": self.files_skipped,
        }


@dataclass
class ConversationMetadata:
    """Summary of one conversation file."""

    id: str
    project_path: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    title: Optional[str] = None


@dataclass
class ProjectInfo:
    """Project detection result."""

    root: Path
    is_git_repo: bool
    has_local_storage: bool
    claude_dir: Optional[Path] = None


@dataclass
class WatcherEvent:
    """A single filesystem change notification."""

    type: WatcherEventType
    path: Path
    timestamp: float = field(default_factory=time.time)
