"""
Policy loader and instruction composer for sdlcflow.

Every agent instruction is a natural-language policy document followed by a
structured EXECUTION CONTEXT block (work item fields, paths, output
directory), the list of files the agent must create, and a closing line.

Policies live in sdlcflow/policies/<name>.policy.md unless the workspace
configures a POLICIES_DIR or the command passes --policy-file.

HTML comments (<!-- ... -->) are stripped before the policy is sent - use them
for documentation that shouldn't reach the agent.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = [
    "PolicyError",
    "POLICIES_DIR",
    "load_policy",
    "resolve_policy_path",
    "build_instruction",
    "build_section",
    "clear_cache",
]

_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

POLICIES_DIR = Path(__file__).resolve().parent.parent / "policies"

CONTEXT_SEPARATOR = "\n\n---\n\n"


class PolicyError(Exception):
    """Raised when a policy file cannot be found or read."""
    pass


def resolve_policy_path(
    name: str,
    policies_dir: Path | None = None,
    policy_file: Path | None = None,
) -> Path:
    """Pick the policy file for a stage.

    An explicit policy_file wins, then <policies_dir>/<name>.policy.md, then
    the packaged default.
    """
    if policy_file is not None:
        return Path(policy_file)
    if policies_dir is not None:
        candidate = Path(policies_dir) / f"{name}.policy.md"
        if candidate.exists():
            return candidate
        logger.debug(f"No {candidate}, falling back to packaged policy")
    return POLICIES_DIR / f"{name}.policy.md"


@lru_cache(maxsize=32)
def _read_policy(path: str) -> str:
    content = Path(path).read_text()
    content = _HTML_COMMENT_PATTERN.sub('', content)
    return content.strip()


def load_policy(
    name: str,
    policies_dir: Path | None = None,
    policy_file: Path | None = None,
) -> str:
    """
    Load a policy document (cached per path).

    Raises:
        PolicyError: If the policy file doesn't exist
    """
    path = resolve_policy_path(name, policies_dir, policy_file)
    if not path.exists():
        raise PolicyError(f"Policy '{name}' not found. Expected file: {path}")
    logger.debug(f"Loading policy {name} from {path}")
    return _read_policy(str(path))


def build_section(
    content: str | None,
    header: str,
    empty_msg: str | None = None
) -> str:
    """
    Build a labelled block if content exists.

    Returns:
        Formatted section string. Empty string if content is None AND empty_msg is None.
    """
    if content:
        return f"{header}\n{content}\n"
    elif empty_msg is not None:
        return f"{header}\n{empty_msg}\n"
    else:
        return ""


def _format_fields(fields: dict[str, object]) -> str:
    lines = []
    for label, value in fields.items():
        if value is None or value == "" or value == ():
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        lines.append(f"- {label}: {value}")
    return "\n".join(lines)


def build_instruction(
    policy: str,
    context: dict[str, object],
    required_files: list[tuple[str, str]] | None = None,
    sections: list[str] | None = None,
    closing: str = "Begin analysis and generation now.",
) -> str:
    """
    Compose the full instruction handed to the coding agent.

    Args:
        policy: Policy text (verbatim)
        context: Ordered label -> value pairs for the EXECUTION CONTEXT block;
            empty values are omitted
        required_files: (filename, description) pairs the agent must create
        sections: Extra pre-rendered blocks (see build_section) placed after
            the context fields
        closing: Final line of the instruction

    Returns:
        Instruction text
    """
    parts = [policy, CONTEXT_SEPARATOR, "EXECUTION CONTEXT:\n", _format_fields(context), "\n"]

    for section in sections or []:
        if section:
            parts.append("\n" + section)

    if required_files:
        parts.append("\nIMPORTANT: Create the following files:\n")
        for i, (filename, description) in enumerate(required_files, 1):
            parts.append(f"{i}. {filename} - {description}\n")

    parts.append(f"\n{closing}")
    return "".join(parts)


def clear_cache():
    """Clear the policy cache (useful for testing or hot-reload)."""
    _read_policy.cache_clear()
