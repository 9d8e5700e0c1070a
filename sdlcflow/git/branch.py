"""Git branch operations."""

from pathlib import Path

from sdlcflow.git.runner import run_git, GitResult


def get_current_branch(repo: Path) -> str | None:
    """Get the current branch name, or None if detached HEAD."""
    result = run_git(["branch", "--show-current"], repo)
    if result.success:
        return result.stdout.strip() or None
    return None


def branch_exists(repo: Path, branch: str) -> bool:
    """Check if a local branch exists."""
    result = run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], repo)
    return result.success


def remote_branch_exists(repo: Path, branch: str, remote: str = "origin") -> bool:
    """Check if a remote-tracking branch exists."""
    result = run_git(
        ["show-ref", "--verify", "--quiet", f"refs/remotes/{remote}/{branch}"], repo
    )
    return result.success


def create_branch(repo: Path, branch: str) -> GitResult:
    """Create and check out a new branch from the current HEAD."""
    return run_git(["checkout", "-b", branch], repo)
