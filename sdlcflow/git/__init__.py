"""Git plumbing for sdlcflow.

Every function takes the repository path explicitly; nothing here relies on
the process working directory.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
  Examples: stage_all(), commit(), fetch(), push()
- Functions returning bool: True on success/condition met, False otherwise.
  Examples: has_uncommitted_changes(), branch_exists(), has_staged_changes()
- Functions returning parsed values (str, list): Return None/empty on failure.
  Examples: get_current_branch() -> None, get_changed_files() -> []
"""

from sdlcflow.git.runner import GitResult, run_git
from sdlcflow.git.status import (
    has_uncommitted_changes,
    get_changed_files,
    get_file_statuses,
    get_diff_added_lines,
)
from sdlcflow.git.branch import (
    get_current_branch,
    branch_exists,
    remote_branch_exists,
    create_branch,
)
from sdlcflow.git.commit import (
    stage_all,
    has_staged_changes,
    commit,
)
from sdlcflow.git.remote import (
    has_remote,
    fetch,
    push,
    push_set_upstream,
    pull_ff_only,
    checkout_branch,
    get_remote_head_branch,
)

__all__ = [
    # runner
    "GitResult",
    "run_git",
    # status
    "has_uncommitted_changes",
    "get_changed_files",
    "get_file_statuses",
    "get_diff_added_lines",
    # branch
    "get_current_branch",
    "branch_exists",
    "remote_branch_exists",
    "create_branch",
    # commit
    "stage_all",
    "has_staged_changes",
    "commit",
    # remote
    "has_remote",
    "fetch",
    "push",
    "push_set_upstream",
    "pull_ff_only",
    "checkout_branch",
    "get_remote_head_branch",
]
