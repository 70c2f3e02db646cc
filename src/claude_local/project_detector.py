"""Project root detection."""

import logging
import os
from pathlib import Path
from typing import Optional

from claude_local.exceptions import ProjectNotFoundError
from claude_local.git import get_git_root, is_git_repository
from claude_local.models import ProjectInfo
from claude_local.paths import (
    PathLike,
    get_history_path,
    get_local_storage_path,
    is_writable,
    path_exists,
    resolve_path,
)

logger = logging.getLogger(__name__)


class ProjectDetector:
    """Works out which project a directory belongs to and whether it is initialized."""

    def detect_project(self, search_path: Optional[PathLike] = None) -> ProjectInfo:
        """
        Detect project information for a directory.

        The project root is the enclosing git work tree if there is one,
        otherwise the directory itself.

        Raises:
            ProjectNotFoundError: If the directory does not exist
        """
        resolved = resolve_path(search_path or os.getcwd())
        if not path_exists(resolved):
            raise ProjectNotFoundError(str(resolved))
        is_git = is_git_repository(resolved)
        root = resolved
        if is_git:
            root = get_git_root(resolved) or resolved

        claude_dir = get_local_storage_path(root)
        return ProjectInfo(
            root=root,
            is_git_repo=is_git,
            has_local_storage=path_exists(get_history_path(claude_dir)),
            claude_dir=claude_dir if path_exists(claude_dir) else None,
        )

    def find_project_root(self, start_path: Optional[PathLike] = None) -> Path:
        start = resolve_path(start_path or os.getcwd())
        if is_git_repository(start):
            git_root = get_git_root(start)
            if git_root:
                return git_root
        return start

    def has_local_storage(self, project_root: PathLike) -> bool:
        return path_exists(get_history_path(get_local_storage_path(project_root)))

    def validate_project(self, project_root: PathLike) -> tuple[bool, list[str]]:
        """
        Check that a project can hold local storage.

        Returns:
            (valid, reasons). A missing or read-only directory is invalid;
            a directory outside git is valid but comes with an advisory reason.
        """
        reasons: list[str] = []
        if not path_exists(project_root):
            reasons.append("Project directory does not exist")
            return False, reasons

        if not is_writable(project_root):
            reasons.append("Project directory is not writable")
            return False, reasons

        if not is_git_repository(project_root):
            reasons.append(
                "Not a git repository - consider initializing git for better project tracking"
            )
        return True, reasons
