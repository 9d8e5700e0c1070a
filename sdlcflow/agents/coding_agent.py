"""
External coding agent integration for sdlcflow.

The agent is an opaque CLI (auggie by default, see lib/agents_config.py)
that receives a natural-language instruction and a workspace path and
writes whatever files it chooses. The only structured result is what can be
observed afterwards: exit status, captured output and the files that changed.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from sdlcflow import git
from sdlcflow.lib.agents_config import AgentsConfig, get_stage_command

logger = logging.getLogger(__name__)


@dataclass
class AgentResult:
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    files_written: list[str] = field(default_factory=list)
    timed_out: bool = False
    duration: float = 0.0


def _snapshot(directory: Path | None) -> dict[str, float]:
    """Map relative path -> mtime for every file under directory."""
    if directory is None or not directory.exists():
        return {}
    return {
        str(p.relative_to(directory)): p.stat().st_mtime
        for p in directory.rglob("*") if p.is_file()
    }


class CodingAgent:
    """Runs the configured agent CLI for a pipeline stage."""

    def __init__(
        self,
        agents_config: AgentsConfig,
        timeout: int = 1800,
        env: Optional[dict[str, str]] = None,
        on_command: Optional[Callable[[list[str], int, float], None]] = None,
    ):
        """
        Args:
            agents_config: Command templates per stage
            timeout: Seconds before an invocation is abandoned
            env: Environment for the child process (None inherits)
            on_command: Optional callback(cmd, exit_code, duration) for command logging
        """
        self.agents_config = agents_config
        self.timeout = timeout
        self.env = env
        self.on_command = on_command

    def invoke(
        self,
        stage: str,
        workspace_root: Path,
        instruction: str,
        output_dir: Path | None = None,
        log_file: Path | None = None,
    ) -> AgentResult:
        """
        Run the agent for one stage and report what it changed.

        Args:
            stage: Agent stage name (key in the agents config)
            workspace_root: Repository the agent works in
            instruction: Full instruction text
            output_dir: Artifact directory the agent was told to write into;
                new or modified files there are reported in files_written
            log_file: Where to write the command, exit code, stdout and stderr
        """
        stage_cmd = get_stage_command(
            self.agents_config, stage,
            {"workspace": str(workspace_root), "instruction": instruction},
        )
        before = _snapshot(output_dir)

        logger.info(f"Invoking agent for {stage} in {workspace_root}")
        start = time.time()
        try:
            proc = subprocess.run(
                stage_cmd.cmd,
                cwd=str(workspace_root),
                input=stage_cmd.get_stdin_input(instruction),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self.env,
            )
            result = AgentResult(
                success=proc.returncode == 0,
                exit_code=proc.returncode,
                stdout=proc.stdout,
                stderr=proc.stderr,
            )
        except subprocess.TimeoutExpired:
            result = AgentResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"Timed out after {self.timeout}s. Retry or increase AGENT_TIMEOUT.",
                timed_out=True,
            )
        except OSError as e:
            result = AgentResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"Failed to start agent '{stage_cmd.cmd[0]}': {e}",
            )
        result.duration = time.time() - start

        if self.on_command:
            self.on_command(_redact(stage_cmd.cmd, instruction), result.exit_code, result.duration)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(
                f"=== COMMAND ===\n{' '.join(_redact(stage_cmd.cmd, instruction))}\n\n"
                f"=== EXIT CODE ===\n{result.exit_code}\n\n"
                f"=== STDOUT ===\n{result.stdout}\n\n"
                f"=== STDERR ===\n{result.stderr}\n"
            )

        after = _snapshot(output_dir)
        written = [
            str(output_dir / rel) for rel, mtime in sorted(after.items())
            if before.get(rel) != mtime and output_dir / rel != log_file
        ]
        for path in git.get_changed_files(workspace_root):
            full = str(workspace_root / path)
            if full not in written:
                written.append(full)
        result.files_written = written

        if result.success:
            logger.info(f"Agent finished {stage} in {result.duration:.1f}s ({len(written)} file(s) changed)")
        else:
            logger.warning(f"Agent failed {stage} (exit {result.exit_code}): {result.stderr.strip()[:200]}")
        return result


def _redact(cmd: list[str], instruction: str) -> list[str]:
    """Replace the (long) instruction argument with a marker for logs."""
    return ["<instruction>" if arg == instruction else arg for arg in cmd]
