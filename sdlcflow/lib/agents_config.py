"""
Agent command configuration.

Loads sdlc-agents.yaml from the workspace to determine which CLI command runs
the coding agent for each stage. If no config file exists, every stage uses
the auggie defaults below.

STAGE COMMAND TEMPLATES
=======================

Templates support {variable} substitution:
- {instruction}: The full instruction text. If present in the template it is
  passed as a single CLI argument. If absent, the instruction is written to
  the agent's stdin.
- {workspace}: Absolute path of the workspace root.

Example sdlc-agents.yaml:

    stages:
      implementation: claude --dangerously-skip-permissions -p {instruction}
      test_fix: auggie -p --workspace-root {workspace} --max-turns 5 {instruction}
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from sdlcflow.lib.constants import FIX_MAX_TURNS

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "sdlc-agents.yaml"

_AUGGIE = "auggie -p --workspace-root {workspace} {instruction}"

# Ordered by pipeline sequence.
DEFAULT_STAGE_COMMANDS = {
    "epic_stories": _AUGGIE,
    # BRD -> epic.md, stories.md

    "implementation": _AUGGIE,
    # Story -> code changes, changes-summary.md, pr.json

    "unit_test_plan": _AUGGIE,
    "unit_test_code": _AUGGIE,

    "integration_test_plan": _AUGGIE,
    "integration_test_code": _AUGGIE,

    "test_fix": f"auggie -p --workspace-root {{workspace}} --max-turns {FIX_MAX_TURNS} {{instruction}}",
    # Failing test output -> source/test fixes
}

_INSTRUCTION_PLACEHOLDER = "__SDLC_INSTRUCTION__"


@dataclass
class AgentsConfig:
    """Agent configuration from sdlc-agents.yaml."""
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())


def load_agents_config(workspace_root: Optional[Path]) -> AgentsConfig:
    """Load sdlc-agents.yaml and return AgentsConfig.

    If workspace_root is None or the file doesn't exist, returns defaults.
    """
    if workspace_root is None:
        return AgentsConfig()

    config_path = workspace_root / CONFIG_FILE_NAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    stages = DEFAULT_STAGE_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("stages"), dict):
        unknown = set(data["stages"]) - set(DEFAULT_STAGE_COMMANDS)
        if unknown:
            logger.warning(f"Ignoring unknown stages in {config_path}: {sorted(unknown)}")
        stages.update({k: str(v) for k, v in data["stages"].items() if k in DEFAULT_STAGE_COMMANDS})
    return AgentsConfig(stages=stages)


@dataclass
class StageCommand:
    """Result of building a stage command."""
    cmd: list[str]  # Command ready for subprocess
    instruction_via_stdin: bool

    def get_stdin_input(self, instruction: str) -> str | None:
        """Return instruction if it should be passed via stdin, else None."""
        return instruction if self.instruction_via_stdin else None


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str],
) -> StageCommand:
    """Build command list for a stage with variable substitution.

    Args:
        config: AgentsConfig instance
        stage: Stage name (e.g., "implementation", "test_fix")
        context: Variables for substitution; must include "workspace" and
            "instruction"

    Raises:
        ValueError: If stage is unknown

    Example:
        >>> result = get_stage_command(AgentsConfig(), "implementation",
        ...                            {"workspace": "/ws", "instruction": "do it"})
        >>> result.cmd
        ['auggie', '-p', '--workspace-root', '/ws', 'do it']
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    cmd_template = config.stages[stage]
    instruction_via_stdin = "{instruction}" not in cmd_template

    # Instruction text is inserted after shlex parsing so its quotes survive
    cmd_template = cmd_template.replace("{instruction}", _INSTRUCTION_PLACEHOLDER)
    for key, value in context.items():
        if key != "instruction":
            cmd_template = cmd_template.replace(f"{{{key}}}", shlex.quote(str(value)))

    remaining_vars = re.findall(r'\{(\w+)\}', cmd_template)
    if remaining_vars:
        logger.error(
            f"Stage '{stage}' has unsubstituted variables: {remaining_vars}. "
            f"Template: {cmd_template}"
        )

    cmd = shlex.split(cmd_template)
    instruction = context.get("instruction", "")
    cmd = [instruction if arg == _INSTRUCTION_PLACEHOLDER else arg for arg in cmd]

    return StageCommand(cmd=cmd, instruction_via_stdin=instruction_via_stdin)


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    """Get the binary name for a stage (first element of command)."""
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    parts = shlex.split(config.stages[stage])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None


@dataclass
class BinaryCheckResult:
    """Result of checking stage binaries."""
    ok: bool
    missing_binary: str | None = None
    stages_affected: list[str] = field(default_factory=list)
    error_message: str | None = None


def validate_stage_binaries(config: AgentsConfig, stages: list[str]) -> BinaryCheckResult:
    """Validate that binaries for the given stages are available.

    Returns:
        BinaryCheckResult with ok=True if all binaries available,
        or ok=False with details about what's missing and how to fix it.
    """
    binary_to_stages: dict[str, list[str]] = {}
    for stage in stages:
        if stage not in config.stages:
            continue
        binary_to_stages.setdefault(get_stage_binary(config, stage), []).append(stage)

    for binary, affected_stages in binary_to_stages.items():
        if not check_binary_available(binary):
            error_lines = [
                f"Required tool '{binary}' is not installed.",
                "",
                f"Stages that need it: {', '.join(affected_stages)}",
                "",
                "To fix this, either:",
                f"  1. Install {binary}",
                f"  2. Create {CONFIG_FILE_NAME} in the workspace to use a different tool:",
                "",
                "     stages:",
            ]
            for stage in affected_stages:
                error_lines.append(f"       {stage}: claude --dangerously-skip-permissions -p {{instruction}}")

            return BinaryCheckResult(
                ok=False,
                missing_binary=binary,
                stages_affected=affected_stages,
                error_message="\n".join(error_lines),
            )

    return BinaryCheckResult(ok=True)
