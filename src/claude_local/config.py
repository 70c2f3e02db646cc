"""
claude-local Configuration.

Process settings are loaded from environment variables with Pydantic Settings.
The user's persisted storage preferences (mode, global path, ignore patterns)
live in a small JSON file managed by ConfigManager.
"""

import json
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

StorageMode = Literal["global", "local", "hybrid"]

DEFAULT_IGNORE_PATTERNS = ["/.claude/history/", "/.claude/*.log", "/.claude/cache/"]


def get_default_global_storage_path() -> str:
    """Claude Code keeps its data in ~/.claude on every platform."""
    return str(Path.home() / ".claude")


def get_xdg_config_dir() -> str:
    """
    Get XDG-compliant config directory for claude-local.

    - Uses $XDG_CONFIG_HOME/claude-local if XDG_CONFIG_HOME is set
    - Falls back to $HOME/.config/claude-local if not set
    - Returns relative path .claude_local_config if HOME not available (dev/testing)

    Returns:
        str: Path to config directory
    """
    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    if xdg_config_home:
        return str(Path(xdg_config_home) / "claude-local")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".config" / "claude-local")

    return ".claude_local_config"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for claude-local logs.

    - Uses $XDG_STATE_HOME/claude-local/logs if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/claude-local/logs if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "claude-local" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "claude-local" / "logs")

    return "./logs"


def _default_search_paths() -> list[str]:
    home = Path.home()
    return [str(home / "Projects"), str(home / "code"), str(home / "src")]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLAUDE_LOCAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    global_storage_path: str = ""  # Empty = ~/.claude
    global_layout: Literal["projects", "flat"] = "projects"
    config_dir: str = ""  # Empty = XDG config dir

    # Watcher / daemon
    watch_debounce_seconds: float = 2.0  # Quiet period before a burst is synced
    watch_poll_interval: float = 0.1  # How often the debounce task checks for settle
    daemon_sync_cooldown_seconds: float = 5.0  # Minimum gap between syncs per project
    daemon_max_depth: int = 3  # Discovery recursion ceiling under each search root
    daemon_search_paths: list[str] = Field(default_factory=_default_search_paths)
    daemon_pid_file: str = str(Path.home() / ".claude-local-daemon.pid")

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Defaults to XDG state dir if empty
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def config_directory(self) -> Path:
        """Get the config directory path, using XDG default if not specified."""
        if self.config_dir:
            return Path(self.config_dir).expanduser()
        return Path(get_xdg_config_dir())


class LocalStorageConfig(BaseModel):
    """Persisted user configuration for the local storage system."""

    # global = original behavior, local = project-only, hybrid = sync both
    mode: StorageMode = "local"
    global_storage_path: str = Field(default_factory=get_default_global_storage_path)
    auto_sync: bool = True
    auto_gitignore: bool = True
    ignore_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS)
    )


class ConfigManager:
    """
    Read/write store for LocalStorageConfig.

    Every setter persists immediately, so separate instances pointed at the
    same directory always observe each other's changes.
    """

    FILENAME = "config.json"

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else settings.config_directory
        self._path = self.config_dir / self.FILENAME

    @property
    def config_path(self) -> Path:
        return self._path

    def _load(self) -> LocalStorageConfig:
        if not self._path.exists():
            return LocalStorageConfig()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return LocalStorageConfig.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable config {self._path}: {e}")
            return LocalStorageConfig()

    def _save(self, config: LocalStorageConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self._path.write_text(config.model_dump_json(indent=2), encoding="utf-8")

    def _update(self, **changes) -> None:
        data = self._load().model_dump()
        data.update(changes)
        self._save(LocalStorageConfig.model_validate(data))

    def get_config(self) -> LocalStorageConfig:
        return self._load()

    def get_mode(self) -> StorageMode:
        return self._load().mode

    def set_mode(self, mode: StorageMode) -> None:
        """Set the storage mode. Raises ValidationError for unknown modes."""
        self._update(mode=mode)

    def get_global_storage_path(self) -> str:
        # An environment override beats the persisted value
        if settings.global_storage_path:
            return str(Path(settings.global_storage_path).expanduser())
        return self._load().global_storage_path

    def set_global_storage_path(self, path: str) -> None:
        self._update(global_storage_path=path)

    def is_auto_sync_enabled(self) -> bool:
        return self._load().auto_sync

    def set_auto_sync(self, enabled: bool) -> None:
        self._update(auto_sync=enabled)

    def is_auto_gitignore_enabled(self) -> bool:
        return self._load().auto_gitignore

    def set_auto_gitignore(self, enabled: bool) -> None:
        self._update(auto_gitignore=enabled)

    def get_ignore_patterns(self) -> list[str]:
        return self._load().ignore_patterns

    def add_ignore_pattern(self, pattern: str) -> None:
        patterns = self.get_ignore_patterns()
        if pattern not in patterns:
            patterns.append(pattern)
            self._update(ignore_patterns=patterns)

    def remove_ignore_pattern(self, pattern: str) -> None:
        patterns = [p for p in self.get_ignore_patterns() if p != pattern]
        self._update(ignore_patterns=patterns)

    def reset(self) -> None:
        """Reset configuration to defaults."""
        self._path.unlink(missing_ok=True)


# Global settings instance
settings = Settings()
