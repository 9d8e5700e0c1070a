"""Tests for the gh CLI helpers."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock

from sdlcflow.lib.github import (
    check_gh_available,
    create_github_pr,
    find_pr_for_head,
    get_authenticated_user,
)


class TestCheckGhAvailable:

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_authenticated(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="Logged in", stderr="")
        ok, _ = check_gh_available()
        assert ok

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_not_installed(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gh")
        ok, message = check_gh_available()
        assert not ok
        assert "not installed" in message

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_not_authenticated(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="You are not logged in")
        ok, message = check_gh_available()
        assert not ok
        assert "not logged in" in message

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_passes_environment(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        check_gh_available({"GH_TOKEN": "t"})
        assert mock_run.call_args.kwargs["env"] == {"GH_TOKEN": "t"}


class TestAuthenticatedUser:

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_returns_login(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="octocat\n", stderr="")
        assert get_authenticated_user() == "octocat"

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_none_on_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="err")
        assert get_authenticated_user() is None


class TestCreatePR:

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_url_is_last_stdout_line(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout="Creating pull request for story/PROJ-1 into main\n\nhttps://github.com/o/r/pull/42\n",
            stderr="",
        )
        ok, url, number = create_github_pr(Path("/repo"), "story/PROJ-1", "main", "title", "body")
        assert ok
        assert url == "https://github.com/o/r/pull/42"
        assert number == 42
        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["gh", "pr", "create"]
        assert cmd[cmd.index("--base") + 1] == "main"
        assert cmd[cmd.index("--head") + 1] == "story/PROJ-1"
        assert mock_run.call_args.kwargs["cwd"] == "/repo"

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="already exists")
        ok, message, number = create_github_pr(Path("/repo"), "h", "main", "t", "b")
        assert not ok
        assert "already exists" in message
        assert number is None

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=30)
        ok, message, _ = create_github_pr(Path("/repo"), "h", "main", "t", "b")
        assert not ok
        assert "timed out" in message


class TestFindPR:

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_found(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout=json.dumps([{"number": 3, "url": "https://github.com/o/r/pull/3", "baseRefName": "main"}]),
            stderr="",
        )
        pr = find_pr_for_head(Path("/repo"), "story/PROJ-1")
        assert pr.number == 3
        assert pr.base == "main"
        assert pr.head == "story/PROJ-1"

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_none_when_empty(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="[]", stderr="")
        assert find_pr_for_head(Path("/repo"), "story/PROJ-1") is None

    @patch("sdlcflow.lib.github.subprocess.run")
    def test_none_on_bad_json(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="not json", stderr="")
        assert find_pr_for_head(Path("/repo"), "story/PROJ-1") is None
