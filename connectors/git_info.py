"""Read branch, dirty count and last commit of a folder with the git CLI.

``read_git_status`` never raises: a folder that is not a repository reports
``"no branch"``, and failing git commands leave the default values.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from registry.models import GitStatus

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 10
UNKNOWN_BRANCH = "unknown"


def run_git(args: list[str], cwd: str | Path) -> str | None:
    """Output of ``git <args>`` in ``cwd``, or None when git fails."""
    env = {**os.environ, "GIT_OPTIONAL_LOCKS": "0"}  # keep `git status` from rewriting the index
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git %s failed in %s: %s", " ".join(args), cwd, exc)
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout


def git_dir_of(path: str | Path) -> Path | None:
    """The repository's git directory, following ``gitdir:`` files of worktrees."""
    dot_git = Path(path) / ".git"
    if dot_git.is_dir():
        return dot_git
    if dot_git.is_file():
        try:
            content = dot_git.read_text().strip()
        except OSError:
            return None
        if content.startswith("gitdir:"):
            target = Path(content[len("gitdir:"):].strip())
            return target if target.is_absolute() else (Path(path) / target).resolve()
    return None


def read_branch(git_dir: Path) -> str:
    try:
        head = (git_dir / "HEAD").read_text()
    except OSError:
        return UNKNOWN_BRANCH
    if head.startswith("ref: "):
        return head[len("ref: "):].strip().removeprefix("refs/heads/")
    return head.strip()[:7] or UNKNOWN_BRANCH


def read_git_status(path: str | Path) -> GitStatus:
    git_dir = git_dir_of(path)
    if git_dir is None or not (git_dir / "HEAD").exists():
        return GitStatus()

    branch = read_branch(git_dir)

    dirty_count = 0
    porcelain = run_git(["status", "--porcelain"], path)
    if porcelain is not None:
        dirty_count = sum(1 for line in porcelain.splitlines() if line.strip())

    # fails on repositories without commits
    last_commit = run_git(["log", "-1", "--format=%s (%h)"], path)

    return GitStatus(branch=branch, dirty_count=dirty_count,
                     last_commit_summary=(last_commit or "").strip())


def local_git_identity(path: str | Path) -> dict[str, str]:
    """``user.name`` / ``user.email`` configured locally in the repository at ``path``."""
    identity = {}
    for key in ("user.name", "user.email"):
        value = run_git(["config", "--local", key], path)
        if value and value.strip():
            identity[key] = value.strip()
    return identity


def apply_git_identity(path: str | Path, identity: dict[str, str]) -> None:
    for key, value in identity.items():
        if run_git(["config", "--local", key, value], path) is None:
            logger.warning("Could not set %s in %s", key, path)


__all__ = ["apply_git_identity", "git_dir_of", "local_git_identity", "read_branch", "read_git_status", "run_git"]
