"""
Path resolution for the global and local conversation stores.

Everything here is a pure path transform except ``path_exists`` and
``is_writable``, which are the only filesystem probes.
"""

import enum
import os
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, os.PathLike]

LOCAL_STORE_DIRNAME = ".claude"
HISTORY_DIRNAME = "history"
PROJECTS_DIRNAME = "projects"

# Newline-delimited logs (current Claude Code) and single-document logs (older)
CONVERSATION_SUFFIXES = (".jsonl", ".json")

# Reserved character that replaces path separators in encoded project paths
ENCODING_CHAR = "-"


class GlobalLayout(str, enum.Enum):
    """On-disk layout of the global store."""

    PROJECTS = "projects"  # <global>/projects/<encoded-project-path>/
    FLAT = "flat"  # <global>/history/, shared by all projects


def get_global_storage_path(override: Optional[PathLike] = None) -> Path:
    """
    Get the global Claude Code storage path.

    Args:
        override: Explicit path (from config or CLI); wins over the default

    Returns:
        ``~/.claude`` unless overridden
    """
    if override:
        return Path(override).expanduser()
    return Path.home() / LOCAL_STORE_DIRNAME


def get_local_storage_path(project_root: PathLike) -> Path:
    """Get the local .claude directory for a project."""
    return Path(project_root) / LOCAL_STORE_DIRNAME


def get_history_path(storage_path: PathLike) -> Path:
    """Get the history subdirectory within a storage location."""
    return Path(storage_path) / HISTORY_DIRNAME


def encode_project_path(project_root: PathLike) -> str:
    """
    Encode an absolute project path into a single directory name.

    Claude Code names per-project directories by replacing every path
    separator with ``-``, so ``/Users/me/app`` becomes ``-Users-me-app``.

    The encoding is lossy: ``/a-b/c`` and ``/a/b-c`` both encode to
    ``-a-b-c`` and share one global directory. Nothing detects this.
    """
    return str(project_root).replace("\\", ENCODING_CHAR).replace("/", ENCODING_CHAR)


def get_global_project_path(global_storage_path: PathLike, project_root: PathLike) -> Path:
    """Get the directory where Claude Code keeps one project's conversations."""
    return Path(global_storage_path) / PROJECTS_DIRNAME / encode_project_path(project_root)


def get_global_source_path(
    global_storage_path: PathLike,
    project_root: PathLike,
    layout: GlobalLayout = GlobalLayout.PROJECTS,
) -> Path:
    """
    Get the global-side directory a project syncs against.

    With the PROJECTS layout this is the project's encoded directory; with
    the FLAT layout every project shares ``<global>/history``.
    """
    if GlobalLayout(layout) is GlobalLayout.FLAT:
        return get_history_path(global_storage_path)
    return get_global_project_path(global_storage_path, project_root)


def get_global_watch_root(
    global_storage_path: PathLike, layout: GlobalLayout = GlobalLayout.PROJECTS
) -> Path:
    """Get the directory the daemon watches for global-side changes."""
    if GlobalLayout(layout) is GlobalLayout.FLAT:
        return get_history_path(global_storage_path)
    return Path(global_storage_path) / PROJECTS_DIRNAME


def is_conversation_file(path: PathLike) -> bool:
    p = Path(path)
    return p.suffix in CONVERSATION_SUFFIXES and not p.name.startswith(".")


def path_exists(path: PathLike) -> bool:
    """Check if a path exists and is accessible."""
    return os.path.exists(path)


def is_writable(path: PathLike) -> bool:
    return os.access(path, os.W_OK)


def resolve_path(path: PathLike) -> Path:
    """Resolve a path relative to the current working directory."""
    return Path(path).expanduser().resolve()
