"""Git command runner with timeout handling."""

import subprocess
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TIMEOUT = 30


@dataclass
class GitResult:
    """Result of a git command."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_git(
    args: list[str],
    repo: Path,
    timeout: int = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> GitResult:
    """
    Run a git command against an explicit repository path.

    The process working directory is never changed; the repository is
    always addressed with ``git -C <repo>``.

    Args:
        args: Git command arguments (e.g., ["status", "--porcelain"])
        repo: Repository root the command operates on
        timeout: Timeout in seconds
        env: Full environment for the child process (None inherits)

    Returns:
        GitResult with returncode, stdout, stderr, and timed_out flag
    """
    cmd = ["git", "-C", str(repo)] + args
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
        return GitResult(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
    except subprocess.TimeoutExpired:
        return GitResult(
            returncode=-1,
            stdout="",
            stderr=f"Command timed out after {timeout}s",
            timed_out=True,
        )
    except OSError as e:
        return GitResult(returncode=-1, stdout="", stderr=f"Failed to run git: {e}")
