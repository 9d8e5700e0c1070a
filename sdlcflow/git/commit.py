"""Git commit operations."""

from pathlib import Path

from sdlcflow.git.runner import run_git, GitResult


def stage_all(repo: Path) -> GitResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(["add", "-A"], repo)


def has_staged_changes(repo: Path) -> bool:
    """Check if the index differs from HEAD.

    ``git diff --cached --quiet`` exits 1 when there are staged changes.
    """
    result = run_git(["diff", "--cached", "--quiet"], repo)
    return result.returncode == 1


def commit(
    repo: Path,
    message: str,
    body: str | None = None,
    author: tuple[str, str] | None = None,
) -> GitResult:
    """Create a commit with the given message.

    Args:
        repo: Repository root
        message: Subject line
        body: Optional commit body (second -m)
        author: Optional (name, email) used for both author and committer
    """
    args: list[str] = []
    if author:
        name, email = author
        args += ["-c", f"user.name={name}", "-c", f"user.email={email}"]
    args += ["commit", "-m", message]
    if body:
        args += ["-m", body]
    return run_git(args, repo)
