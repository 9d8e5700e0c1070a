"""
Configuration loader for sdlcflow.

Builds one PipelineConfig per process from, lowest to highest precedence:
built-in defaults, the workspace's sdlc.env file, process environment
variables with the same keys, and explicit overrides (CLI flags).
The resulting object is passed explicitly to everything that needs it.
"""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

from .constants import (
    ARTIFACTS_DIR,
    DEFAULT_BOT_EMAIL,
    DEFAULT_BOT_NAME,
    DEFAULT_MAX_RETRIES,
)

logger = logging.getLogger(__name__)

ENV_FILE_NAME = "sdlc.env"

CONFIG_KEYS = (
    "JIRA_BASE_URL",
    "JIRA_EMAIL",
    "JIRA_TOKEN",
    "JIRA_PROJECT_KEY",
    "GITHUB_TOKEN",
    "BRD_PATH",
    "EXISTING_APP_BRD",
    "EXISTING_APP_ARCH",
    "CONTEXT_DIRS",
    "BASE_BRANCH",
    "MAX_RETRIES",
    "AGENT_TIMEOUT",
    "TEST_TIMEOUT",
    "POLICIES_DIR",
    "GIT_USER_NAME",
    "GIT_USER_EMAIL",
    "USE_PREFECT",
)


class ConfigError(Exception):
    """Configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class PipelineConfig:
    """Everything the pipeline needs to know about its environment."""
    workspace_root: Path
    jira_base_url: str = ""
    jira_email: str = ""
    jira_token: str = ""
    jira_project_key: str = ""
    github_token: str = ""
    brd_path: str = ""
    existing_app_brd: str = ""
    existing_app_arch: str = ""
    context_dirs: tuple[str, ...] = ("src", "docs")
    base_branch: str = ""  # Empty means: ask the remote for its default branch
    max_retries: int = DEFAULT_MAX_RETRIES
    agent_timeout: int = 1800
    test_timeout: int = 900
    policies_dir: Path | None = None  # None means: packaged default policies
    git_user_name: str = DEFAULT_BOT_NAME
    git_user_email: str = DEFAULT_BOT_EMAIL
    use_prefect: bool = False
    extra: dict = field(default_factory=dict)

    @property
    def artifacts_root(self) -> Path:
        return self.workspace_root / ARTIFACTS_DIR

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    @property
    def bot_identity(self) -> tuple[str, str]:
        return (self.git_user_name, self.git_user_email)

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def require_jira(self) -> None:
        """Raise ConfigError unless tracker credentials are complete."""
        missing = [
            key for key, value in (
                ("JIRA_BASE_URL", self.jira_base_url),
                ("JIRA_EMAIL", self.jira_email),
                ("JIRA_TOKEN", self.jira_token),
                ("JIRA_PROJECT_KEY", self.jira_project_key),
            ) if not value
        ]
        if missing:
            raise ConfigError(f"Missing tracker configuration: {', '.join(missing)}")

    def subprocess_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for child processes (gh needs GH_TOKEN)."""
        env = dict(os.environ if base is None else base)
        if self.github_token:
            env["GH_TOKEN"] = self.github_token
        return env


def _parse_int(raw: str, key: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {key}={raw!r}, using default {default}")
        return default
    if value < minimum:
        logger.warning(f"{key}={value} is below {minimum}, using default {default}")
        return default
    return value


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


# sdlc.env is data, never shell: a value that would do something when sourced is refused
_ENV_LINE = re.compile(r'^(?:export\s+)?(?P<key>[^=\s]+)\s*=\s*(?P<value>.*)$')
_ENV_KEY = re.compile(r'^[A-Z][A-Z0-9_]*$')
_SHELL_CONSTRUCT = re.compile(r'`|\$[({]|;|&&|\|')


def read_env_file(path: Path) -> dict[str, str]:
    """Parse KEY=value lines from an env file without a shell.

    Blank lines and # comments are skipped, a leading `export` is allowed and
    one pair of matching quotes around a value is removed.

    Raises:
        ConfigError: file missing, malformed line, bad key, or a shell construct in a value
    """
    if not path.is_file():
        raise ConfigError(f"Env file not found: {path}")

    values = {}
    for lineno, raw in enumerate(path.read_text().splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _ENV_LINE.match(line)
        if match is None:
            raise ConfigError(f"{path}:{lineno}: expected KEY=value")
        key, value = match["key"], match["value"].strip()
        if not _ENV_KEY.match(key):
            raise ConfigError(f"{path}:{lineno}: invalid key '{key}'")
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        if _SHELL_CONSTRUCT.search(value):
            raise ConfigError(f"{path}:{lineno}: shell construct not allowed in {key}")
        values[key] = value
    return values


def parse_context_dirs(raw: str) -> tuple[str, ...]:
    """Split a comma-separated directory list, dropping blanks."""
    return tuple(d.strip() for d in raw.split(",") if d.strip())


def load_config(
    workspace_root: Path,
    env_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> PipelineConfig:
    """Load PipelineConfig for a workspace.

    Args:
        workspace_root: Repository the pipeline works in
        env_file: Explicit env file; defaults to <workspace>/sdlc.env if present
        environ: Process environment (defaults to os.environ)

    Raises:
        ConfigError: if the env file is unreadable or malformed
    """
    workspace_root = Path(workspace_root).resolve()
    environ = os.environ if environ is None else environ

    values: dict[str, str] = {}
    path = env_file or workspace_root / ENV_FILE_NAME
    if env_file is not None or path.exists():
        values.update(read_env_file(path))
        logger.debug(f"Loaded configuration from {path}")

    for key in CONFIG_KEYS:
        if environ.get(key):
            values[key] = environ[key]

    policies_dir = values.get("POLICIES_DIR", "")
    extra = {k: v for k, v in values.items() if k not in CONFIG_KEYS}

    return PipelineConfig(
        workspace_root=workspace_root,
        jira_base_url=values.get("JIRA_BASE_URL", "").rstrip("/"),
        jira_email=values.get("JIRA_EMAIL", ""),
        jira_token=values.get("JIRA_TOKEN", ""),
        jira_project_key=values.get("JIRA_PROJECT_KEY", ""),
        github_token=values.get("GITHUB_TOKEN", ""),
        brd_path=values.get("BRD_PATH", ""),
        existing_app_brd=values.get("EXISTING_APP_BRD", ""),
        existing_app_arch=values.get("EXISTING_APP_ARCH", ""),
        context_dirs=parse_context_dirs(values.get("CONTEXT_DIRS", "src,docs")),
        base_branch=values.get("BASE_BRANCH", ""),
        max_retries=_parse_int(values.get("MAX_RETRIES", str(DEFAULT_MAX_RETRIES)),
                               "MAX_RETRIES", DEFAULT_MAX_RETRIES),
        agent_timeout=_parse_int(values.get("AGENT_TIMEOUT", "1800"), "AGENT_TIMEOUT", 1800, 1),
        test_timeout=_parse_int(values.get("TEST_TIMEOUT", "900"), "TEST_TIMEOUT", 900, 1),
        policies_dir=(workspace_root / policies_dir) if policies_dir else None,
        git_user_name=values.get("GIT_USER_NAME", DEFAULT_BOT_NAME),
        git_user_email=values.get("GIT_USER_EMAIL", DEFAULT_BOT_EMAIL),
        use_prefect=_parse_bool(values.get("USE_PREFECT", "false")),
        extra=extra,
    )
