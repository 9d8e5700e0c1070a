"""
GitHub integration helpers for the PR workflow.

Provides utilities for interacting with GitHub via the gh CLI. gh reads its
token from GH_TOKEN; callers pass the environment built by
PipelineConfig.subprocess_env().
"""

import json
import logging
import subprocess
from pathlib import Path

from sdlcflow.lib.types import PullRequest

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30


def _run_gh(args: list[str], repo_path: Path | None, env: dict[str, str] | None):
    return subprocess.run(
        ["gh"] + args,
        capture_output=True,
        text=True,
        cwd=str(repo_path) if repo_path else None,
        timeout=GH_TIMEOUT_SECONDS,
        env=env,
    )


def check_gh_available(env: dict[str, str] | None = None) -> tuple[bool, str]:
    """Check that gh is installed and authenticated.

    Returns: (ok, message)
    """
    try:
        result = _run_gh(["auth", "status"], None, env)
    except FileNotFoundError:
        return False, "gh CLI not installed (https://cli.github.com)"
    except (subprocess.TimeoutExpired, subprocess.SubprocessError) as e:
        return False, f"gh auth status failed: {e}"
    if result.returncode != 0:
        return False, f"gh is not authenticated: {(result.stderr or result.stdout).strip()}"
    return True, "gh authenticated"


def get_authenticated_user(env: dict[str, str] | None = None) -> str | None:
    """Return the GitHub login gh is acting as, or None."""
    try:
        result = _run_gh(["api", "user", "--jq", ".login"], None, env)
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _pr_number_from_url(url: str) -> int | None:
    try:
        return int(url.rstrip("/").split("/")[-1])
    except (ValueError, IndexError):
        return None


def create_github_pr(
    repo_path: Path,
    head: str,
    base: str,
    title: str,
    body: str,
    env: dict[str, str] | None = None,
) -> tuple[bool, str, int | None]:
    """
    Create a GitHub PR for an already-pushed branch.

    Returns: (success, url_or_error, pr_number)
    """
    try:
        result = _run_gh(
            ["pr", "create",
             "--base", base,
             "--head", head,
             "--title", title,
             "--body", body],
            repo_path, env,
        )
    except subprocess.TimeoutExpired:
        return False, "GitHub operation timed out", None
    except (OSError, subprocess.SubprocessError) as e:
        return False, f"GitHub operation failed: {e}", None

    if result.returncode != 0:
        return False, f"Failed to create PR: {result.stderr.strip()}", None

    # gh prints progress lines before the URL on some versions
    lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    pr_url = lines[-1] if lines else ""
    return True, pr_url, _pr_number_from_url(pr_url) if pr_url else None


def find_pr_for_head(
    repo_path: Path,
    head: str,
    env: dict[str, str] | None = None,
) -> PullRequest | None:
    """Find an open PR whose head is the given branch."""
    try:
        result = _run_gh(
            ["pr", "list", "--head", head, "--state", "open",
             "--json", "number,url,baseRefName", "--limit", "1"],
            repo_path, env,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"gh pr list failed: {e}")
        return None

    if result.returncode != 0:
        logger.warning(f"gh pr list failed: {result.stderr.strip()}")
        return None

    try:
        prs = json.loads(result.stdout or "[]")
    except json.JSONDecodeError:
        logger.warning("Invalid JSON from gh pr list")
        return None

    if not prs:
        return None
    pr = prs[0]
    return PullRequest(
        number=pr.get("number"),
        url=pr.get("url", ""),
        head=head,
        base=pr.get("baseRefName", ""),
    )
