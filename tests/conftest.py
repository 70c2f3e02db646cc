"""
Pytest configuration and shared fixtures.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

import pytest

from claude_local.config import ConfigManager, settings
from claude_local.paths import get_global_project_path
from claude_local.storage import StorageManager


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_conversation(
    path: Path,
    cwd: Optional[str] = None,
    messages: int = 2,
    mtime: Optional[float] = None,
) -> Path:
    """Write a small Claude Code style JSONL conversation."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = []
    for i in range(messages):
        record = {
            "type": "user" if i % 2 == 0 else "assistant",
            "uuid": f"msg-{i:03d}",
            "message": {"role": "user" if i % 2 == 0 else "assistant", "content": f"msg {i}"},
        }
        if cwd is not None:
            record["cwd"] = cwd
        lines.append(json.dumps(record))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep config, PID file and logs inside the test's tmp_path."""
    monkeypatch.setattr(settings, "config_dir", str(tmp_path / "config"))
    monkeypatch.setattr(settings, "daemon_pid_file", str(tmp_path / "daemon.pid"))
    monkeypatch.setattr(settings, "global_storage_path", "")
    monkeypatch.setattr(settings, "global_layout", "projects")
    monkeypatch.setattr(settings, "log_file_enabled", False)
    monkeypatch.setattr(settings, "log_console_enabled", False)
    yield
    # setup_logging() turns propagation off; restore it for caplog
    logger = logging.getLogger("claude_local")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True


@pytest.fixture
def global_dir(tmp_path):
    """Empty global store."""
    path = tmp_path / "global"
    path.mkdir()
    return path


@pytest.fixture
def project_root(tmp_path):
    """Empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def global_project_dir(global_dir, project_root):
    """The project's directory under <global>/projects."""
    path = get_global_project_path(global_dir, project_root)
    path.mkdir(parents=True)
    return path


@pytest.fixture
def local_history(project_root):
    """The project's initialized .claude/history directory."""
    path = project_root / ".claude" / "history"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def storage_manager(global_dir):
    return StorageManager(global_dir)


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(tmp_path / "config")


@pytest.fixture
def fake_clock():
    return FakeClock()
