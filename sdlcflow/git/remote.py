"""Git remote operations."""

import re
from pathlib import Path

from sdlcflow.git.runner import run_git, GitResult

_HEAD_BRANCH_PATTERN = re.compile(r'^\s*HEAD branch:\s*(\S+)\s*$', re.MULTILINE)


def has_remote(repo: Path) -> bool:
    """Check if repo has any remotes configured."""
    result = run_git(["remote"], repo)
    return bool(result.stdout.strip())


def fetch(repo: Path, remote: str = "origin", branch: str | None = None) -> GitResult:
    """Fetch from remote."""
    args = ["fetch", remote]
    if branch:
        args.append(branch)
    return run_git(args, repo, timeout=60)


def push(repo: Path, remote: str = "origin", branch: str | None = None) -> GitResult:
    """Push the given branch (or the current upstream) to remote."""
    args = ["push", remote]
    if branch:
        args.append(branch)
    return run_git(args, repo, timeout=60)


def push_set_upstream(repo: Path, remote: str, branch: str) -> GitResult:
    """Push and set upstream tracking."""
    return run_git(["push", "-u", remote, branch], repo, timeout=60)


def pull_ff_only(repo: Path, remote: str = "origin", branch: str | None = None) -> GitResult:
    """Pull with fast-forward only (no merge commits)."""
    args = ["pull", "--ff-only"]
    if branch:
        args += [remote, branch]
    return run_git(args, repo, timeout=60)


def checkout_branch(repo: Path, branch: str) -> GitResult:
    """Checkout a branch."""
    return run_git(["checkout", branch], repo)


def get_remote_head_branch(repo: Path, remote: str = "origin") -> str | None:
    """Ask the remote which branch its HEAD points at.

    Parses the ``HEAD branch:`` line of ``git remote show <remote>``.
    Returns None if the remote is unreachable or reports no HEAD.
    """
    result = run_git(["remote", "show", remote], repo, timeout=60)
    if not result.success:
        return None
    match = _HEAD_BRANCH_PATTERN.search(result.stdout)
    if not match or match.group(1) == "(unknown)":
        return None
    return match.group(1)
