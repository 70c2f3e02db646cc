"""Tests for conversation parsing and project membership."""

import json

import pytest

from claude_local.exceptions import ConversationParseError
from claude_local.membership import (
    SkipCounter,
    belongs_to_project,
    file_belongs_to_project,
    parse_conversation,
)


class TestParseConversation:
    """Tests for JSON / JSONL parsing."""

    def test_parses_single_json_document(self):
        doc = parse_conversation(
            json.dumps({"workingDirectory": "/work/app", "messages": [{}, {}, {}]})
        )

        assert doc.is_jsonl is False
        assert doc.working_directory == "/work/app"
        assert doc.message_count == 3

    def test_parses_jsonl(self):
        content = "\n".join(
            [
                json.dumps({"type": "summary", "summary": "Fix the build"}),
                json.dumps({"type": "user", "cwd": "/work/app", "message": {}}),
                json.dumps({"type": "assistant", "cwd": "/work/app", "message": {}}),
            ]
        )
        doc = parse_conversation(content)

        assert doc.is_jsonl is True
        assert doc.working_directory == "/work/app"
        assert doc.message_count == 2
        assert doc.title == "Fix the build"

    def test_blank_lines_are_ignored(self):
        doc = parse_conversation('{"type": "user"}\n\n{"type": "assistant"}\n')
        assert len(doc.records) == 2

    def test_malformed_line_raises(self):
        """Test a single bad line makes the whole file unparsable."""
        with pytest.raises(ConversationParseError, match="line 2"):
            parse_conversation('{"type": "user"}\n{not json\n', source="x.jsonl")

    def test_empty_content_raises(self):
        with pytest.raises(ConversationParseError):
            parse_conversation("")

    def test_oversized_integer_raises(self):
        """Test an integer past the interpreter's digit limit is a parse failure."""
        with pytest.raises(ConversationParseError):
            parse_conversation('{"n": ' + "1" * 5000 + "}", source="huge.json")

    def test_runaway_nesting_raises(self):
        with pytest.raises(ConversationParseError):
            parse_conversation("[" * 100000, source="deep.json")


class TestBelongsToProject:
    """Tests for the membership rule."""

    def test_matches_cwd(self):
        content = json.dumps({"type": "user", "cwd": "/work/app"})
        assert belongs_to_project(content, "/work/app")

    def test_matches_working_directory_field(self):
        content = json.dumps({"workingDirectory": "/work/app", "messages": []})
        assert belongs_to_project(content, "/work/app")

    def test_matches_substring(self):
        """Test a root mentioned anywhere in the file counts."""
        content = json.dumps({"type": "user", "message": {"content": "look at /work/app/main.py"}})
        assert belongs_to_project(content, "/work/app")

    def test_matches_escaped_windows_path(self):
        content = json.dumps({"type": "user", "cwd": "C:\\work\\app"})
        assert belongs_to_project(content, "C:\\work\\app")

    def test_other_project_does_not_match(self):
        content = json.dumps({"type": "user", "cwd": "/work/other"})
        assert not belongs_to_project(content, "/work/app")

    def test_malformed_content_never_matches(self):
        """Test unparsable content belongs to no project, even if it mentions the root."""
        assert not belongs_to_project("/work/app {broken", "/work/app")

    def test_oversized_integer_never_matches(self):
        content = '{"cwd": "/work/app", "n": ' + "1" * 5000 + "}"
        assert not belongs_to_project(content, "/work/app")


class TestFileBelongsToProject:
    """Tests for file-level membership."""

    def test_unparsable_file_is_counted_as_skipped(self, tmp_path):
        path = tmp_path / "bad.jsonl"
        path.write_text("{oops\n")
        skipped = SkipCounter()

        assert file_belongs_to_project(path, "/work/app", skipped=skipped) is False
        assert skipped.count == 1
        assert skipped.paths == [path]

    def test_missing_file_returns_false(self, tmp_path):
        assert file_belongs_to_project(tmp_path / "missing.jsonl", "/work/app") is False

    def test_deeply_nested_file_is_counted_as_skipped(self, tmp_path):
        path = tmp_path / "deep.json"
        path.write_text("[" * 100000)
        skipped = SkipCounter()

        assert file_belongs_to_project(path, "/work/app", skipped=skipped) is False
        assert skipped.paths == [path]

    def test_matching_file(self, tmp_path):
        path = tmp_path / "ok.jsonl"
        path.write_text(json.dumps({"type": "user", "cwd": str(tmp_path)}) + "\n")
        assert file_belongs_to_project(path, tmp_path)

    def test_skip_counter_reset(self, tmp_path):
        skipped = SkipCounter()
        skipped.record(tmp_path / "a.jsonl")
        skipped.reset()
        assert skipped.count == 0
