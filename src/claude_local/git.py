"""
Git helpers: repository detection and .gitignore editing.

All git calls shell out to the ``git`` binary with a short timeout. A missing
binary, a timeout or a non-repository directory all read as "not a repo".
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional

from claude_local.paths import PathLike

logger = logging.getLogger(__name__)

GITIGNORE_HEADER = "# Claude Code local storage"

GIT_TIMEOUT_SECONDS = 5


def _run_git(args: list[str], cwd: PathLike) -> Optional[subprocess.CompletedProcess]:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"git {' '.join(args)} failed in {cwd}: {e}")
        return None


def is_git_repository(path: PathLike) -> bool:
    """Check if ``path`` is inside a git work tree."""
    result = _run_git(["rev-parse", "--is-inside-work-tree"], path)
    return result is not None and result.returncode == 0 and result.stdout.strip() == "true"


def get_git_root(path: PathLike) -> Optional[Path]:
    """Top-level directory of the repository containing ``path``, or None."""
    result = _run_git(["rev-parse", "--show-toplevel"], path)
    if result is None or result.returncode != 0:
        return None
    root = result.stdout.strip()
    return Path(root) if root else None


def is_git_ignored(file_path: PathLike, project_root: PathLike) -> bool:
    """Check if git ignores ``file_path`` within ``project_root``."""
    result = _run_git(["check-ignore", "--quiet", str(file_path)], project_root)
    return result is not None and result.returncode == 0


def get_recommended_gitignore_entries() -> list[str]:
    return ["/.claude/history/", "/.claude/*.log", "/.claude/cache/"]


def _same_entry(line: str, entry: str) -> bool:
    # "/.claude/history/" and ".claude/history/" ignore the same thing at the root
    return line == entry or line == entry.lstrip("/")


def update_gitignore(project_root: PathLike, entries: list[str]) -> list[str]:
    """
    Append missing ``entries`` to the project's .gitignore under a header.

    Entries already present (with or without a leading slash) are left
    alone, so repeated calls change nothing.

    Returns:
        The entries that were added
    """
    gitignore_path = Path(project_root) / ".gitignore"
    exists = gitignore_path.exists()
    content = gitignore_path.read_text(encoding="utf-8") if exists else ""

    lines = [line.strip() for line in content.split("\n")]
    new_entries = [
        entry for entry in entries if not any(_same_entry(line, entry) for line in lines)
    ]
    if not new_entries:
        return []

    additions = "\n".join(new_entries) + "\n"
    if exists:
        separator = "" if content == "" or content.endswith("\n") else "\n"
        content = content + separator + f"\n{GITIGNORE_HEADER}\n" + additions
    else:
        content = f"{GITIGNORE_HEADER}\n" + additions

    gitignore_path.write_text(content, encoding="utf-8")
    logger.info(f"Added {len(new_entries)} entries to {gitignore_path}")
    return new_entries


def remove_from_gitignore(project_root: PathLike, entries: list[str]) -> None:
    """Remove ``entries`` and the claude-local header from .gitignore."""
    gitignore_path = Path(project_root) / ".gitignore"
    if not gitignore_path.exists():
        return

    kept = []
    for line in gitignore_path.read_text(encoding="utf-8").split("\n"):
        trimmed = line.strip()
        if trimmed == GITIGNORE_HEADER:
            continue
        if any(_same_entry(trimmed, entry) for entry in entries):
            continue
        kept.append(line)

    cleaned: list[str] = []
    previous_empty = False
    for line in kept:
        is_empty = line.strip() == ""
        if is_empty and previous_empty:
            continue
        cleaned.append(line)
        previous_empty = is_empty

    new_content = "\n".join(cleaned)
    if new_content and not new_content.endswith("\n"):
        new_content += "\n"
    gitignore_path.write_text(new_content, encoding="utf-8")
