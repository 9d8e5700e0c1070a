"""
sdlc check - verify the environment before running the pipeline.

Checks configuration, tracker connectivity and project access, the agent
CLI, git, and gh availability/authentication.
"""

from pathlib import Path

from sdlcflow import git
from sdlcflow.commands.common import load_command_config
from sdlcflow.lib import github
from sdlcflow.lib.agents_config import DEFAULT_STAGE_COMMANDS, load_agents_config, validate_stage_binaries
from sdlcflow.lib.config import ConfigError
from sdlcflow.lib.constants import EXIT_FAILURE, EXIT_SUCCESS
from sdlcflow.lib.jira import JiraClient, TrackerError


def _line(ok: bool, label: str, detail: str = "") -> bool:
    mark = "ok  " if ok else "FAIL"
    print(f"[{mark}] {label}" + (f": {detail}" if detail else ""))
    return ok


def cmd_check(args) -> int:
    config = load_command_config(args)
    results = []

    try:
        client = JiraClient.from_config(config)
    except ConfigError as e:
        results.append(_line(False, "JIRA configuration", str(e)))
        client = None
    if client is not None:
        try:
            results.append(_line(True, "JIRA connection", f"logged in as {client.test_connection()}"))
            results.append(_line(True, "JIRA project", client.get_project()))
        except TrackerError as e:
            results.append(_line(False, "JIRA", str(e)))

    agents = load_agents_config(config.workspace_root)
    binaries = validate_stage_binaries(agents, list(DEFAULT_STAGE_COMMANDS))
    results.append(_line(binaries.ok, "Agent CLI",
                         "available" if binaries.ok else f"'{binaries.missing_binary}' not found"))

    is_repo = git.get_current_branch(config.workspace_root) is not None
    results.append(_line(is_repo, "Git repository", str(config.workspace_root)))
    if is_repo:
        results.append(_line(git.has_remote(config.workspace_root), "Git remote"))
        # Not fatal: auto-fix commits would sweep these changes in
        if git.has_uncommitted_changes(config.workspace_root):
            print("[warn] Working tree has uncommitted changes")

    env = config.subprocess_env()
    ok, message = github.check_gh_available(env)
    user = github.get_authenticated_user(env) if ok else None
    results.append(_line(ok, "GitHub CLI", f"{message} as {user}" if user else message))

    if config.brd_path:
        results.append(_line(Path(config.brd_path).is_file(), "BRD", config.brd_path))

    if not binaries.ok and binaries.error_message:
        print()
        print(binaries.error_message)

    return EXIT_SUCCESS if all(results) else EXIT_FAILURE
