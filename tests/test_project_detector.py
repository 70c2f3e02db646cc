"""Tests for project root detection."""

from unittest.mock import patch

import pytest

from claude_local.exceptions import ProjectNotFoundError
from claude_local.project_detector import ProjectDetector


@pytest.fixture
def detector():
    return ProjectDetector()


class TestDetectProject:
    """Tests for detect_project()."""

    @patch("claude_local.project_detector.is_git_repository", return_value=False)
    def test_plain_directory(self, mock_is_git, detector, project_root):
        info = detector.detect_project(project_root)

        assert info.root == project_root.resolve()
        assert info.is_git_repo is False
        assert info.has_local_storage is False
        assert info.claude_dir is None

    @patch("claude_local.project_detector.is_git_repository", return_value=False)
    def test_initialized_project(self, mock_is_git, detector, project_root, local_history):
        info = detector.detect_project(project_root)

        assert info.has_local_storage is True
        assert info.claude_dir == project_root.resolve() / ".claude"

    @patch("claude_local.project_detector.get_git_root")
    @patch("claude_local.project_detector.is_git_repository", return_value=True)
    def test_git_root_wins(self, mock_is_git, mock_git_root, detector, project_root):
        subdir = project_root / "src" / "pkg"
        subdir.mkdir(parents=True)
        mock_git_root.return_value = project_root.resolve()

        info = detector.detect_project(subdir)

        assert info.root == project_root.resolve()
        assert info.is_git_repo is True

    @patch("claude_local.project_detector.get_git_root", return_value=None)
    @patch("claude_local.project_detector.is_git_repository", return_value=True)
    def test_missing_git_root_falls_back(self, mock_is_git, mock_git_root, detector, project_root):
        assert detector.detect_project(project_root).root == project_root.resolve()

    def test_missing_directory_raises(self, detector, tmp_path):
        with pytest.raises(ProjectNotFoundError, match="does not exist"):
            detector.detect_project(tmp_path / "missing")


class TestFindProjectRoot:
    """Tests for find_project_root()."""

    @patch("claude_local.project_detector.is_git_repository", return_value=False)
    def test_non_git_returns_start(self, mock_is_git, detector, project_root):
        assert detector.find_project_root(project_root) == project_root.resolve()

    @patch("claude_local.project_detector.get_git_root")
    @patch("claude_local.project_detector.is_git_repository", return_value=True)
    def test_git_returns_top_level(self, mock_is_git, mock_git_root, detector, tmp_path):
        mock_git_root.return_value = tmp_path
        assert detector.find_project_root(tmp_path / "x") == tmp_path


class TestValidateProject:
    """Tests for validate_project()."""

    def test_missing_directory_is_invalid(self, detector, tmp_path):
        valid, reasons = detector.validate_project(tmp_path / "missing")

        assert valid is False
        assert reasons == ["Project directory does not exist"]

    @patch("claude_local.project_detector.is_writable", return_value=False)
    def test_read_only_directory_is_invalid(self, mock_writable, detector, project_root):
        valid, reasons = detector.validate_project(project_root)

        assert valid is False
        assert reasons == ["Project directory is not writable"]

    @patch("claude_local.project_detector.is_git_repository", return_value=False)
    def test_non_git_is_valid_with_advice(self, mock_is_git, detector, project_root):
        valid, reasons = detector.validate_project(project_root)

        assert valid is True
        assert "Not a git repository" in reasons[0]

    @patch("claude_local.project_detector.is_git_repository", return_value=True)
    def test_git_project_is_clean(self, mock_is_git, detector, project_root):
        assert detector.validate_project(project_root) == (True, [])

    def test_has_local_storage(self, detector, project_root, local_history):
        assert detector.has_local_storage(project_root) is True
