"""Custom exceptions for claude-local."""


class ClaudeLocalError(Exception):
    """Base class for claude-local errors."""


class StorageNotInitializedError(ClaudeLocalError):
    """Raised when an operation needs a local store that was never initialized."""

    def __init__(self, project_root: str):
        self.project_root = project_root
        super().__init__(f"Local storage not initialized: {project_root}")


class ProjectNotFoundError(ClaudeLocalError):
    """Raised when a project root does not exist."""

    def __init__(self, project_root: str):
        self.project_root = project_root
        super().__init__(f"Project directory does not exist: {project_root}")


class ConversationParseError(ClaudeLocalError):
    """Raised when a conversation file cannot be parsed as JSON or JSON Lines."""

    def __init__(self, file_path: str | None = None, reason: str = ""):
        self.file_path = file_path
        message = "Could not parse conversation"
        if file_path:
            message += f": {file_path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class DaemonAlreadyRunningError(ClaudeLocalError):
    """Raised when starting the daemon while another instance holds the PID file."""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"Daemon already running (PID: {pid})")
