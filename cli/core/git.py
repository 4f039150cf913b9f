"""Repository access for build checkouts."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from pathlib import Path

from cli.core.exceptions import CloneError

_SAFE_BRANCH_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")


def clone_repository(
    url: str,
    branch: str,
    dest: Path,
    *,
    shallow: bool = True,
    timeout: int = 300,
) -> None:
    """Clone *url* at *branch* into *dest*.

    Raises :class:`CloneError` for every failure mode (bad URL, auth,
    unknown branch, missing git binary, timeout) with git's own message.
    """
    if not branch or not _SAFE_BRANCH_RE.match(branch) or branch.startswith("-"):
        raise CloneError(f"Invalid branch name: {branch!r}")
    if url.startswith("-"):
        raise CloneError(f"Invalid repository URL: {url!r}")

    cmd = ["git", "clone", "--branch", branch, "--single-branch"]
    if shallow:
        cmd += ["--depth", "1"]
    cmd += ["--", url, str(dest)]

    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
        )
    except FileNotFoundError as exc:
        raise CloneError("git executable not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise CloneError(f"Cloning {url} timed out after {timeout}s") from exc

    if proc.returncode != 0:
        detail = (proc.stderr or proc.stdout or "").strip()
        raise CloneError(f"git clone failed (exit {proc.returncode}): {detail}")


def current_revision(repo_dir: Path) -> str | None:
    """Return the checked-out commit hash, or None if it cannot be read."""
    try:
        proc = subprocess.run(
            ["git", "-C", str(repo_dir), "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout.strip()[:40] or None


def strip_vcs_metadata(repo_dir: Path) -> None:
    """Remove ``.git`` so it never lands in the build context."""
    shutil.rmtree(repo_dir / ".git", ignore_errors=True)
