"""Tests for the version-control gateway."""

from pathlib import Path
from unittest.mock import patch

import pytest

from sdlcflow.git.runner import GitResult
from sdlcflow.lib.types import PullRequest
from sdlcflow.vcs import VCSError, VersionControl

OK = GitResult(returncode=0, stdout="", stderr="")
FAIL = GitResult(returncode=1, stdout="", stderr="boom")


@pytest.fixture
def vcs():
    return VersionControl(Path("/repo"))


class TestEnsureBranch:

    @patch("sdlcflow.vcs.git")
    def test_existing_local_branch_is_checked_out_not_recreated(self, mock_git, vcs):
        mock_git.has_remote.return_value = True
        mock_git.fetch.return_value = OK
        mock_git.branch_exists.return_value = True
        mock_git.checkout_branch.return_value = OK

        assert vcs.ensure_branch("story/PROJ-1", "main") == "story/PROJ-1"

        mock_git.checkout_branch.assert_called_once_with(Path("/repo"), "story/PROJ-1")
        mock_git.create_branch.assert_not_called()

    @patch("sdlcflow.vcs.git")
    def test_remote_only_branch_is_checked_out(self, mock_git, vcs):
        mock_git.has_remote.return_value = True
        mock_git.fetch.return_value = OK
        mock_git.branch_exists.return_value = False
        mock_git.remote_branch_exists.return_value = True
        mock_git.checkout_branch.return_value = OK

        vcs.ensure_branch("story/PROJ-1", "main")

        mock_git.create_branch.assert_not_called()

    @patch("sdlcflow.vcs.git")
    def test_new_branch_created_from_pulled_base(self, mock_git, vcs):
        mock_git.has_remote.return_value = True
        mock_git.fetch.return_value = OK
        mock_git.branch_exists.return_value = False
        mock_git.remote_branch_exists.return_value = False
        mock_git.checkout_branch.return_value = OK
        mock_git.pull_ff_only.return_value = OK
        mock_git.create_branch.return_value = OK

        vcs.ensure_branch("story/PROJ-1", "develop")

        mock_git.checkout_branch.assert_called_once_with(Path("/repo"), "develop")
        mock_git.pull_ff_only.assert_called_once_with(Path("/repo"), "origin", "develop")
        mock_git.create_branch.assert_called_once_with(Path("/repo"), "story/PROJ-1")

    @patch("sdlcflow.vcs.git")
    def test_pull_failure_is_only_a_warning(self, mock_git, vcs):
        mock_git.has_remote.return_value = True
        mock_git.fetch.return_value = OK
        mock_git.branch_exists.return_value = False
        mock_git.remote_branch_exists.return_value = False
        mock_git.checkout_branch.return_value = OK
        mock_git.pull_ff_only.return_value = FAIL
        mock_git.create_branch.return_value = OK

        assert vcs.ensure_branch("story/PROJ-1", "main") == "story/PROJ-1"

    @patch("sdlcflow.vcs.git")
    def test_create_failure_raises(self, mock_git, vcs):
        mock_git.has_remote.return_value = False
        mock_git.branch_exists.return_value = False
        mock_git.checkout_branch.return_value = OK
        mock_git.create_branch.return_value = FAIL

        with pytest.raises(VCSError, match="branch"):
            vcs.ensure_branch("story/PROJ-1", "main")


class TestCommitAll:

    @patch("sdlcflow.vcs.git")
    def test_nothing_to_commit_returns_false(self, mock_git, vcs):
        mock_git.stage_all.return_value = OK
        mock_git.has_staged_changes.return_value = False

        assert vcs.commit_all("feat: x") is False
        mock_git.commit.assert_not_called()

    @patch("sdlcflow.vcs.git")
    def test_commits_with_body_and_author(self, mock_git, vcs):
        mock_git.stage_all.return_value = OK
        mock_git.has_staged_changes.return_value = True
        mock_git.commit.return_value = OK

        assert vcs.commit_all("feat: x", body="why", author=("bot", "b@x")) is True
        mock_git.commit.assert_called_once_with(Path("/repo"), "feat: x", body="why", author=("bot", "b@x"))

    @patch("sdlcflow.vcs.git")
    def test_commit_failure_raises(self, mock_git, vcs):
        mock_git.stage_all.return_value = OK
        mock_git.has_staged_changes.return_value = True
        mock_git.commit.return_value = FAIL

        with pytest.raises(VCSError):
            vcs.commit_all("feat: x")


class TestPush:

    @patch("sdlcflow.vcs.git")
    def test_push_sets_upstream_by_default(self, mock_git, vcs):
        mock_git.push_set_upstream.return_value = OK
        vcs.push("story/PROJ-1")
        mock_git.push_set_upstream.assert_called_once_with(Path("/repo"), "origin", "story/PROJ-1")

    @patch("sdlcflow.vcs.git")
    def test_push_failure_raises(self, mock_git, vcs):
        mock_git.push.return_value = FAIL
        with pytest.raises(VCSError, match="push"):
            vcs.push("story/PROJ-1", set_upstream=False)


class TestDefaultBranch:

    @patch("sdlcflow.vcs.git")
    def test_uses_remote_head(self, mock_git, vcs):
        mock_git.has_remote.return_value = True
        mock_git.get_remote_head_branch.return_value = "develop"
        assert vcs.detect_default_branch() == "develop"

    @patch("sdlcflow.vcs.git")
    def test_falls_back_to_main(self, mock_git, vcs):
        mock_git.has_remote.return_value = False
        assert vcs.detect_default_branch() == "main"


class TestCreatePR:

    @patch("sdlcflow.vcs.github")
    def test_reuses_open_pr_for_head(self, mock_gh, vcs):
        existing = PullRequest(number=7, url="https://github.com/o/r/pull/7", head="story/PROJ-1", base="main")
        mock_gh.find_pr_for_head.return_value = existing

        assert vcs.create_pr("t", "b", base="main", head="story/PROJ-1") == existing
        mock_gh.create_github_pr.assert_not_called()

    @patch("sdlcflow.vcs.github")
    def test_creates_pr(self, mock_gh, vcs):
        mock_gh.find_pr_for_head.return_value = None
        mock_gh.create_github_pr.return_value = (True, "https://github.com/o/r/pull/9", 9)

        pr = vcs.create_pr("t", "b", base="main", head="story/PROJ-1")

        assert pr.number == 9
        assert pr.head == "story/PROJ-1"
        assert pr.base == "main"

    @patch("sdlcflow.vcs.github")
    def test_create_failure_raises(self, mock_gh, vcs):
        mock_gh.find_pr_for_head.return_value = None
        mock_gh.create_github_pr.return_value = (False, "no permission", None)

        with pytest.raises(VCSError, match="no permission"):
            vcs.create_pr("t", "b", base="main", head="story/PROJ-1")
