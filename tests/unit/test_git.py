"""Tests for repository cloning helpers."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cli.core.exceptions import CloneError
from cli.core.git import clone_repository, current_revision, strip_vcs_metadata


def _proc(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@patch("cli.core.git.subprocess.run")
def test_clone_builds_shallow_command(mock_run, tmp_path):
    mock_run.return_value = _proc()
    clone_repository("https://github.com/org/web.git", "main", tmp_path / "src")

    cmd = mock_run.call_args.args[0]
    assert cmd == [
        "git", "clone", "--branch", "main", "--single-branch", "--depth", "1",
        "--", "https://github.com/org/web.git", str(tmp_path / "src"),
    ]
    assert mock_run.call_args.kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"


@patch("cli.core.git.subprocess.run")
def test_full_clone(mock_run, tmp_path):
    mock_run.return_value = _proc()
    clone_repository("https://example.com/r.git", "dev", tmp_path, shallow=False)
    assert "--depth" not in mock_run.call_args.args[0]


@patch("cli.core.git.subprocess.run")
def test_clone_failure_carries_stderr(mock_run, tmp_path):
    mock_run.return_value = _proc(128, stderr="fatal: Remote branch nope not found\n")
    with pytest.raises(CloneError, match="Remote branch nope not found"):
        clone_repository("https://github.com/org/web.git", "nope", tmp_path)


@patch("cli.core.git.subprocess.run", side_effect=FileNotFoundError("git"))
def test_git_missing(mock_run, tmp_path):
    with pytest.raises(CloneError, match="git executable not found"):
        clone_repository("https://github.com/org/web.git", "main", tmp_path)


@patch(
    "cli.core.git.subprocess.run",
    side_effect=subprocess.TimeoutExpired(cmd="git", timeout=5),
)
def test_clone_timeout(mock_run, tmp_path):
    with pytest.raises(CloneError, match="timed out"):
        clone_repository("https://github.com/org/web.git", "main", tmp_path, timeout=5)


@pytest.mark.parametrize("branch", ["", "-upload-pack=evil", "main; rm -rf /", "feat branch"])
def test_rejects_unsafe_branch(branch, tmp_path):
    with patch("cli.core.git.subprocess.run") as mock_run:
        with pytest.raises(CloneError):
            clone_repository("https://github.com/org/web.git", branch, tmp_path)
        mock_run.assert_not_called()


def test_rejects_option_like_url(tmp_path):
    with pytest.raises(CloneError):
        clone_repository("--upload-pack=evil", "main", tmp_path)


@patch("cli.core.git.subprocess.run")
def test_current_revision(mock_run, tmp_path):
    mock_run.return_value = _proc(stdout="0123456789abcdef0123456789abcdef01234567\n")
    assert current_revision(tmp_path) == "0123456789abcdef0123456789abcdef01234567"


@patch("cli.core.git.subprocess.run")
def test_current_revision_not_a_repo(mock_run, tmp_path):
    mock_run.return_value = _proc(128, stderr="fatal: not a git repository")
    assert current_revision(tmp_path) is None


def test_strip_vcs_metadata(tmp_path):
    (tmp_path / ".git" / "objects").mkdir(parents=True)
    (tmp_path / "index.html").write_text("<h1>hi</h1>")
    strip_vcs_metadata(tmp_path)
    assert not (tmp_path / ".git").exists()
    assert (tmp_path / "index.html").exists()
    strip_vcs_metadata(tmp_path)
