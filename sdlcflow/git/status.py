"""Git status operations."""

from pathlib import Path

from sdlcflow.git.runner import run_git


def has_uncommitted_changes(repo: Path) -> bool:
    """Check if repo has any uncommitted changes (staged, unstaged, or untracked)."""
    result = run_git(["status", "--porcelain"], repo)
    return bool(result.stdout.strip())


def get_changed_files(repo: Path) -> list[str]:
    """Get list of changed files (staged + unstaged + untracked).

    Uses -z for null-separated output to handle filenames with spaces/special chars.
    Returns empty list on git failure (e.g., not a repo).
    """
    return [path for _status, path in get_file_statuses(repo)]


def get_file_statuses(repo: Path) -> list[tuple[str, str]]:
    """Get (XY status, path) pairs for every changed file.

    Renames and copies report the destination path.
    Untracked directories are expanded to the files inside them.
    """
    result = run_git(["status", "--porcelain", "-z", "--untracked-files=all"], repo)
    if not result.success or not result.stdout:
        return []

    entries = result.stdout.split('\0')
    statuses = []
    i = 0
    while i < len(entries):
        entry = entries[i]
        if len(entry) < 3:
            i += 1
            continue

        status = entry[:2]
        filename = entry[3:]

        # -z puts the rename source in the following entry
        if status[0] in ('R', 'C') and i + 1 < len(entries):
            statuses.append((status, filename))
            i += 2
        else:
            statuses.append((status, filename))
            i += 1

    return statuses


def get_diff_added_lines(repo: Path, path: str) -> list[str]:
    """Return lines added to a file relative to HEAD (without the leading '+')."""
    result = run_git(["diff", "HEAD", "--unified=0", "--", path], repo)
    if not result.success:
        return []
    return [
        line[1:] for line in result.stdout.splitlines()
        if line.startswith("+") and not line.startswith("+++")
    ]
