"""
Logging setup for claude-local.

Configures the ``claude_local`` logger hierarchy from Settings: console
handlers split by severity (INFO/DEBUG to stdout, WARNING+ to stderr) and an
optional rotating log file per context (``cli``, ``daemon``, ``watch``).
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from typing import Optional

from claude_local.config import Settings, settings as default_settings

ROOT_LOGGER = "claude_local"

STANDARD_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks handlers we installed so repeat calls replace rather than stack them
_HANDLER_FLAG = "_claude_local_handler"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


def _make_formatter(config: Settings) -> logging.Formatter:
    if config.log_format == "json":
        return JsonFormatter()
    return logging.Formatter(fmt=STANDARD_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(context: str = "cli", config: Optional[Settings] = None) -> logging.Logger:
    """
    Configure logging for a given run context.

    Args:
        context: Name of the log file (``<log_dir>/<context>.log``)
        config: Settings to use (defaults to the global settings)

    Returns:
        The configured ``claude_local`` logger
    """
    config = config or default_settings
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(config.log_level.upper())
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = _make_formatter(config)
    handlers: list[logging.Handler] = []

    if config.log_console_enabled:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        handlers.extend([stdout_handler, stderr_handler])

    if config.log_file_enabled:
        log_dir = config.log_directory
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / f"{context}.log",
                maxBytes=config.log_max_bytes,
                backupCount=config.log_backup_count,
                encoding="utf-8",
            )
            handlers.append(file_handler)
        except OSError as e:
            # Console logging still works; file logging is optional
            print(f"Warning: file logging disabled ({e})", file=sys.stderr)

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_FLAG, True)
        logger.addHandler(handler)

    return logger
