"""Shared fixtures: a workspace config, a run context and in-memory gateways."""

from pathlib import Path

import pytest

from sdlcflow.agents.coding_agent import AgentResult
from sdlcflow.lib.config import load_config
from sdlcflow.lib.jira import IssueNotFound
from sdlcflow.lib.types import PullRequest, WorkItem
from sdlcflow.runner.context import RunContext


class FakeAgent:
    """Stands in for CodingAgent.

    `actions` maps an agent stage to a callable(output_dir, workspace) that
    writes whatever the agent would; `failures` lists stages that exit 1
    after their action has run.
    """

    def __init__(self, actions=None, failures=()):
        self.actions = actions or {}
        self.failures = set(failures)
        self.calls: list[tuple[str, str]] = []

    def invoke(self, stage, workspace_root, instruction, output_dir=None, log_file=None):
        self.calls.append((stage, instruction))
        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(f"agent {stage}\n")
        written = []
        action = self.actions.get(stage)
        if action:
            written = action(output_dir, Path(workspace_root)) or []
        if stage in self.failures:
            return AgentResult(success=False, exit_code=1, stdout="", stderr="agent crashed",
                               files_written=written)
        return AgentResult(success=True, exit_code=0, stdout="done", stderr="", files_written=written)

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]


class FakeTracker:
    """Stands in for JiraClient with issues held in a dict."""

    def __init__(self, issues=None):
        self.issues: dict[str, WorkItem] = dict(issues or {})
        self.created: list[tuple[str, str]] = []
        self.verified: list[tuple[str, str]] = []
        self._next = 100

    def test_connection(self):
        return "Test User"

    def get_project(self, project_key=None):
        return "Project"

    def browse_url(self, key):
        return f"https://jira.example.com/browse/{key}"

    def _new_key(self):
        self._next += 1
        return f"PROJ-{self._next}"

    def create_epic(self, title, description):
        key = self._new_key()
        self.issues[key] = WorkItem(kind="Epic", key=key, title=title, description=description)
        self.created.append(("Epic", key))
        return key

    def create_story(self, title, description, parent_key=None, priority="Medium"):
        key = self._new_key()
        self.issues[key] = WorkItem(kind="Story", key=key, title=title, description=description,
                                    priority=priority, parent=parent_key)
        self.created.append(("Story", key))
        return key

    def get_issue(self, key):
        if key not in self.issues:
            raise IssueNotFound(f"Not found: /issue/{key}", status_code=404)
        return self.issues[key]

    def verify_type(self, key, expected):
        self.verified.append((key, expected.value))
        return self.get_issue(key).kind == expected.value


class FakeVCS:
    """Stands in for VersionControl; records every call."""

    def __init__(self, branch="main", commit_result=True):
        self.branch = branch
        self.commit_result = commit_result
        self.commits: list[str] = []
        self.pushes: list[str] = []
        self.prs: list[dict] = []
        self.branches: list[tuple[str, str]] = []

    def current_branch(self):
        return self.branch

    def checkout(self, branch):
        self.branch = branch

    def pull(self, branch):
        return True

    def ensure_branch(self, name, base):
        self.branches.append((name, base))
        self.branch = name
        return name

    def commit_all(self, message, body=None, author=None):
        self.commits.append(message)
        return self.commit_result

    def push(self, branch, set_upstream=True):
        self.pushes.append(branch)

    def detect_default_branch(self, fallback="main"):
        return "main"

    def create_pr(self, title, body, base, head):
        self.prs.append({"title": title, "body": body, "base": base, "head": head})
        number = len(self.prs)
        return PullRequest(number=number, url=f"https://github.com/o/r/pull/{number}", head=head, base=base)


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "repo"
    ws.mkdir()
    return ws


@pytest.fixture
def config(workspace):
    return load_config(workspace, environ={}).with_overrides(
        jira_base_url="https://jira.example.com",
        jira_email="bot@example.com",
        jira_token="token",
        jira_project_key="PROJ",
    )


@pytest.fixture
def ctx(config):
    return RunContext.create(config, "test")
