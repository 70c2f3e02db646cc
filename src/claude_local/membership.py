"""
Conversation parsing and project membership.

A conversation file is either a single JSON document (older format, with a
``messages`` list) or JSON Lines (Claude Code's current format, one record
per line). Membership is a heuristic: a recorded working directory equal to
the project root, or the project root appearing anywhere in the file.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from claude_local.exceptions import ConversationParseError

logger = logging.getLogger(__name__)

WORKING_DIRECTORY_FIELDS = ("cwd", "workingDirectory")


@dataclass
class ConversationDocument:
    """Parsed view of a conversation file."""

    records: list[dict[str, Any]]
    raw: str
    is_jsonl: bool = False

    @property
    def working_directory(self) -> Optional[str]:
        """First recorded working directory, if any."""
        for record in self.records:
            for key in WORKING_DIRECTORY_FIELDS:
                value = record.get(key)
                if isinstance(value, str) and value:
                    return value
        return None

    @property
    def message_count(self) -> int:
        if len(self.records) == 1 and isinstance(self.records[0].get("messages"), list):
            return len(self.records[0]["messages"])
        return sum(
            1
            for record in self.records
            if record.get("type") in ("user", "assistant") or "message" in record
        )

    @property
    def title(self) -> Optional[str]:
        for record in self.records:
            if isinstance(record.get("title"), str):
                return record["title"]
            # Claude Code writes {"type": "summary", "summary": "..."} records
            if record.get("type") == "summary" and isinstance(record.get("summary"), str):
                return record["summary"]
        return None


class SkipCounter:
    """Thread-safe tally of files skipped because they could not be parsed."""

    def __init__(self):
        self._lock = threading.Lock()
        self.paths: list[Path] = []

    def record(self, path: Path) -> None:
        with self._lock:
            self.paths.append(Path(path))

    @property
    def count(self) -> int:
        with self._lock:
            return len(self.paths)

    def reset(self) -> None:
        with self._lock:
            self.paths.clear()


def _as_records(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    return []


def parse_conversation(content: str, source: Optional[str] = None) -> ConversationDocument:
    """
    Parse conversation text as a JSON document, falling back to JSON Lines.

    Args:
        content: Raw file content
        source: Path used in error messages

    Returns:
        ConversationDocument with the parsed records

    Raises:
        ConversationParseError: If the content is neither valid JSON nor valid JSONL
    """
    try:
        return ConversationDocument(records=_as_records(json.loads(content)), raw=content)
    except (ValueError, RecursionError):
        # JSONDecodeError, oversized integers and runaway nesting all land here
        pass

    records: list[dict[str, Any]] = []
    for line_number, line in enumerate(content.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            records.extend(_as_records(json.loads(line)))
        except (ValueError, RecursionError) as e:
            reason = getattr(e, "msg", None) or type(e).__name__
            raise ConversationParseError(source, f"line {line_number}: {reason}") from e

    if not records:
        raise ConversationParseError(source, "no records")
    return ConversationDocument(records=records, raw=content, is_jsonl=True)


def load_conversation(file_path: Path) -> ConversationDocument:
    """
    Read and parse a conversation file.

    Raises:
        ConversationParseError: If the file is unreadable or malformed
    """
    try:
        content = Path(file_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConversationParseError(str(file_path), str(e)) from e
    return parse_conversation(content, source=str(file_path))


def _matches(document: ConversationDocument, project_root: str) -> bool:
    for record in document.records:
        for key in WORKING_DIRECTORY_FIELDS:
            if record.get(key) == project_root:
                return True
    if project_root in document.raw:
        return True
    # Backslashes are escaped inside JSON strings
    escaped = json.dumps(project_root)[1:-1]
    return escaped != project_root and escaped in document.raw


def belongs_to_project(content: str, project_root: str) -> bool:
    """
    Decide whether conversation content belongs to a project.

    The substring rule is permissive and can match a project
    whose path merely appears inside another project's conversation.
    Malformed content never belongs to any project.
    """
    try:
        document = parse_conversation(content)
    except ConversationParseError:
        return False
    return _matches(document, str(project_root))


def file_belongs_to_project(
    file_path: Path,
    project_root: Path | str,
    skipped: Optional[SkipCounter] = None,
) -> bool:
    """
    File-level membership check.

    Unreadable or unparsable files return False and are recorded in
    ``skipped`` when a counter is given; no exception escapes.
    """
    try:
        document = load_conversation(file_path)
    except ConversationParseError as e:
        logger.debug(f"Skipping {Path(file_path).name}: {e}")
        if skipped is not None:
            skipped.record(file_path)
        return False
    return _matches(document, str(project_root))
