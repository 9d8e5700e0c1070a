"""
Version-control gateway.

One VersionControl object owns one repository path; every operation is
addressed to that path explicitly. Low-level results from sdlcflow.git and
sdlcflow.lib.github are converted to VCSError here so stages see a single
failure type.
"""

import logging
from pathlib import Path

from sdlcflow import git
from sdlcflow.lib import github
from sdlcflow.lib.types import PullRequest

logger = logging.getLogger(__name__)

FALLBACK_DEFAULT_BRANCH = "main"


class VCSError(Exception):
    """A git or code-host operation failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class VersionControl:
    """Branch, commit, push and PR operations on one repository."""

    def __init__(self, repo: Path, env: dict[str, str] | None = None, remote: str = "origin"):
        self.repo = Path(repo)
        self.env = env
        self.remote = remote

    def current_branch(self) -> str | None:
        return git.get_current_branch(self.repo)

    def checkout(self, branch: str) -> None:
        result = git.checkout_branch(self.repo, branch)
        if not result.success:
            raise VCSError("checkout", f"could not check out '{branch}': {result.stderr.strip()}")
        logger.info(f"Checked out {branch}")

    def pull(self, branch: str) -> bool:
        """Fast-forward the current branch from the remote. Failure is only logged."""
        if not git.has_remote(self.repo):
            return False
        result = git.pull_ff_only(self.repo, self.remote, branch)
        if not result.success:
            logger.warning(f"Could not pull {branch}: {result.stderr.strip()}")
            return False
        return True

    def ensure_branch(self, name: str, base: str) -> str:
        """Check out branch `name`, creating it from `base` if it does not exist.

        Re-running for an existing branch checks it out; it is never recreated.
        """
        has_remote = git.has_remote(self.repo)
        if has_remote:
            fetched = git.fetch(self.repo, self.remote)
            if not fetched.success:
                logger.warning(f"Fetch failed: {fetched.stderr.strip()}")

        if git.branch_exists(self.repo, name) or (
            has_remote and git.remote_branch_exists(self.repo, name, self.remote)
        ):
            logger.info(f"Branch {name} exists, checking it out")
            self.checkout(name)
            return name

        logger.info(f"Creating branch {name} from {base}")
        self.checkout(base)
        self.pull(base)
        result = git.create_branch(self.repo, name)
        if not result.success:
            raise VCSError("branch", f"could not create '{name}': {result.stderr.strip()}")
        return name

    def commit_all(
        self,
        message: str,
        body: str | None = None,
        author: tuple[str, str] | None = None,
    ) -> bool:
        """Stage everything and commit.

        Returns:
            True if a commit was created, False if there was nothing to commit
        """
        staged = git.stage_all(self.repo)
        if not staged.success:
            raise VCSError("add", staged.stderr.strip())

        if not git.has_staged_changes(self.repo):
            logger.info("Nothing to commit")
            return False

        result = git.commit(self.repo, message, body=body, author=author)
        if not result.success:
            raise VCSError("commit", (result.stderr or result.stdout).strip())
        logger.info(f"Committed: {message}")
        return True

    def push(self, branch: str, set_upstream: bool = True) -> None:
        if set_upstream:
            result = git.push_set_upstream(self.repo, self.remote, branch)
        else:
            result = git.push(self.repo, self.remote, branch)
        if not result.success:
            raise VCSError("push", f"could not push '{branch}': {result.stderr.strip()}")
        logger.info(f"Pushed {branch} to {self.remote}")

    def detect_default_branch(self, fallback: str = FALLBACK_DEFAULT_BRANCH) -> str:
        """Resolve the remote's default branch, falling back to `fallback`."""
        if git.has_remote(self.repo):
            head = git.get_remote_head_branch(self.repo, self.remote)
            if head:
                return head
        logger.debug(f"Could not detect default branch, using {fallback}")
        return fallback

    def create_pr(self, title: str, body: str, base: str, head: str) -> PullRequest:
        """Open a PR from head into base, reusing an already-open PR for head."""
        existing = github.find_pr_for_head(self.repo, head, self.env)
        if existing:
            logger.info(f"PR already open for {head}: {existing.url}")
            return existing

        ok, url_or_error, number = github.create_github_pr(
            self.repo, head=head, base=base, title=title, body=body, env=self.env,
        )
        if not ok:
            raise VCSError("pr", url_or_error)

        if number is None:
            found = github.find_pr_for_head(self.repo, head, self.env)
            if found:
                return found
        return PullRequest(number=number, url=url_or_error, head=head, base=base)
