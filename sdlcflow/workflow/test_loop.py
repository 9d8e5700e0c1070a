"""
Test execution with bounded auto-fix.

For max_attempts = N + 1 (N = MAX_RETRIES):

    attempt 1..M: run the suite once, save output-<attempt>.txt
        pass                      -> LoopSuccess(attempt)
        fail, attempt == M        -> HardFailure(M)
        fail, attempt <  M        -> one fix invocation, commit + push, attempt += 1

A fix invocation that itself fails still consumes the attempt; nothing is
committed for it. A fix that skips, disables or deletes tests stops the loop
with ContractViolation.
"""

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from sdlcflow import git
from sdlcflow.lib.constants import SKIP_MARKER_PATTERNS, STAGE_TEST_RESULTS, TEST_TYPES
from sdlcflow.lib.prompts import build_instruction, build_section, load_policy
from sdlcflow.lib.test_parser import format_parsed_output, parse_test_output
from sdlcflow.lib.test_runner import (
    NoRunnerFound,
    RunnerCommand,
    SuiteRun,
    detect_test_command,
    run_tests,
)
from sdlcflow.runner.artifacts import check_schema
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.stages import (
    ContractViolation,
    GatewayError,
    HardFailure,
    NoTestRunnerDetected,
)
from sdlcflow.stages.transcript import Actor
from sdlcflow.vcs import VCSError

logger = logging.getLogger(__name__)

FIX_POLICY = "test-execution"
FIX_AGENT_STAGE = "test_fix"

# Path fragments that mark a file as test code
_TEST_PATH_HINTS = ("tests/", "test/", "__tests__/", "test_", "_test.", ".test.", ".spec.")


@dataclass
class RetryState:
    """Mutable state of one loop execution. Attempt numbers only increase."""
    max_attempts: int
    attempt: int = 1
    last_passed: Optional[bool] = None
    last_output: Optional[Path] = None
    last_fix_summary: Optional[Path] = None
    test_runs: int = 0
    fix_invocations: int = 0
    fix_failures: list[int] = field(default_factory=list)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self) -> None:
        if self.is_last_attempt:
            raise RuntimeError("No attempts left")
        self.attempt += 1


@dataclass(frozen=True)
class LoopSuccess:
    attempt: int
    output: Path
    fix_invocations: int


def is_test_path(path: str) -> bool:
    lowered = path.lower()
    return any(hint in lowered for hint in _TEST_PATH_HINTS)


def find_contract_violations(workspace: Path) -> list[str]:
    """Look for deleted test files and newly added skip markers in the working tree."""
    violations = []
    for status, path in git.get_file_statuses(workspace):
        if not is_test_path(path):
            continue
        if "D" in status:
            violations.append(f"deleted test file {path}")
            continue

        if status == "??":
            file_path = workspace / path
            if not file_path.is_file():
                continue
            added = file_path.read_text(errors="replace").splitlines()
        else:
            added = git.get_diff_added_lines(workspace, path)

        for line in added:
            if any(p.search(line) for p in SKIP_MARKER_PATTERNS):
                violations.append(f"skip marker added in {path}: {line.strip()[:80]}")
                break
    return violations


class RetryLoop:
    """Runs one test type to success or exhaustion."""

    def __init__(
        self,
        ctx: RunContext,
        agent,
        vcs,
        test_type: str,
        branch: Optional[str] = None,
        max_retries: Optional[int] = None,
        policy_file: Optional[Path] = None,
        context_dirs: Optional[tuple[str, ...]] = None,
        detect_fn: Callable[[Path, str, Path, int], RunnerCommand] = detect_test_command,
        run_fn: Callable[..., SuiteRun] = run_tests,
    ):
        """
        Args:
            ctx: Run context (config, artifacts, transcript)
            agent: Coding agent gateway (invoke(stage, workspace, instruction, ...))
            vcs: Version-control gateway for the workspace
            test_type: "unit" or "integration"
            branch: Branch fix commits are pushed to (None skips pushing)
            max_retries: Overrides config.max_retries
            policy_file: Fix policy to use instead of the default
            context_dirs: Overrides config.context_dirs in the fix instruction
        """
        if test_type not in TEST_TYPES:
            raise ValueError(f"Unknown test type: {test_type}")
        self.ctx = ctx
        self.agent = agent
        self.vcs = vcs
        self.test_type = test_type
        self.branch = branch
        retries = ctx.config.max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.state = RetryState(max_attempts=retries + 1)
        self.policy_file = policy_file
        self.context_dirs = context_dirs or ctx.config.context_dirs
        self.detect_fn = detect_fn
        self.run_fn = run_fn
        self.stage = STAGE_TEST_RESULTS
        self.results_dir = ctx.artifacts.stage_dir(STAGE_TEST_RESULTS, test_type)

    def _detect(self, attempt: int) -> RunnerCommand:
        try:
            return self.detect_fn(self.ctx.workspace, self.test_type, self.results_dir, attempt)
        except NoRunnerFound as e:
            raise NoTestRunnerDetected(self.stage, self.ctx.workspace, str(e)) from None

    def run(self) -> LoopSuccess:
        """Execute the loop.

        Raises:
            NoTestRunnerDetected: no runner marker in the workspace
            HardFailure: every attempt failed
            ContractViolation: the fix agent skipped or deleted tests
            GatewayError: committing a fix failed
        """
        self._detect(1)

        # Each loop execution starts with an empty results directory
        if self.results_dir.exists():
            shutil.rmtree(self.results_dir)
        self.results_dir.mkdir(parents=True)

        state = self.state
        self.ctx.log(f"Running {self.test_type} tests (max {state.max_attempts} attempt(s))")

        while True:
            command = self._detect(state.attempt)
            run = self.run_fn(
                command, self.ctx.workspace,
                timeout=self.ctx.config.test_timeout,
                env=self.ctx.config.subprocess_env(),
            )
            self.ctx.log_command(command.cmd, run.exit_code, run.duration)
            output_path = self.results_dir / f"output-{state.attempt}.txt"
            output_path.write_text(run.output)

            state.test_runs += 1
            state.last_passed = run.passed
            state.last_output = output_path
            self.ctx.transcript.record_test_run(self.stage, state.attempt, run.passed, output_path)
            self.ctx.log(
                f"{self.test_type} attempt {state.attempt}/{state.max_attempts}: "
                f"{'passed' if run.passed else 'failed'} (exit {run.exit_code})"
            )

            if run.passed:
                self._write_summary("success", command)
                return LoopSuccess(state.attempt, output_path, state.fix_invocations)

            if state.is_last_attempt:
                self._write_summary("hard_failure", command)
                raise HardFailure(self.stage, state.attempt, output_path)

            self._fix(run, output_path)
            state.advance()

    def _fix_instruction(self, run: SuiteRun, output_path: Path) -> str:
        state = self.state
        policy = load_policy(FIX_POLICY, self.ctx.config.policies_dir, self.policy_file)
        failures = format_parsed_output(parse_test_output(run.output))
        return build_instruction(
            policy,
            {
                "Test Type": f"{self.test_type} tests",
                "Attempt": f"{state.attempt} of {state.max_attempts}",
                "Test Output": output_path,
                "Workspace Root": self.ctx.workspace,
                "Context Directories": self.context_dirs,
                "Output Directory": f"{self.results_dir}/",
                "Fix Summary File": self.results_dir / f"fix-summary-{state.attempt}.md",
            },
            sections=[build_section(failures, "FAILURE SUMMARY:")],
            closing="Begin analysis and fix now.",
        )

    def _fix(self, run: SuiteRun, output_path: Path) -> None:
        """Exactly one fix invocation between a failing attempt and the next."""
        state = self.state
        attempt = state.attempt
        state.fix_invocations += 1

        instruction = self._fix_instruction(run, output_path)
        self.ctx.transcript.record_agent_call(self.stage, instruction, attempt=attempt)
        result = self.agent.invoke(
            FIX_AGENT_STAGE,
            self.ctx.workspace,
            instruction,
            output_dir=self.results_dir,
            log_file=self.results_dir / f"fix-output-{attempt}.txt",
        )
        self.ctx.transcript.record_agent_response(
            self.stage, result.stdout, result.files_written,
            attempt=attempt, exit_code=result.exit_code,
        )

        summary = self.results_dir / f"fix-summary-{attempt}.md"
        if summary.exists():
            state.last_fix_summary = summary

        # A crashed agent may still have edited the tree before exiting
        violations = find_contract_violations(self.ctx.workspace)
        if violations:
            self.ctx.log(f"Fix contract violation: {violations}")
            self.ctx.transcript.record(
                self.stage, Actor.SYSTEM, "out",
                "Fix contract violation", violations=violations, attempt=attempt,
                exit_code=result.exit_code,
            )
            raise ContractViolation(self.stage, attempt, violations, self.results_dir / f"fix-output-{attempt}.txt")

        if not result.success:
            state.fix_failures.append(attempt)
            self.ctx.log(
                f"Fix agent failed on attempt {attempt} (exit {result.exit_code}); "
                "attempt consumed, nothing committed"
            )
            return

        message = f"fix: auto-fix {self.test_type} test failures (attempt {attempt})"
        try:
            committed = self.vcs.commit_all(message, author=self.ctx.config.bot_identity)
        except VCSError as e:
            raise GatewayError(self.stage, "git", str(e)) from e

        if committed and self.branch:
            try:
                self.vcs.push(self.branch, set_upstream=False)
            except VCSError as e:
                logger.warning(f"Failed to push fix for attempt {attempt}: {e}")
                self.ctx.log(f"WARNING: push failed after fix {attempt}: {e}")

    def _write_summary(self, outcome: str, command: RunnerCommand) -> None:
        data = {
            "test_type": self.test_type,
            "outcome": outcome,
            "attempts": self.state.attempt,
            "max_attempts": self.state.max_attempts,
            "fix_invocations": self.state.fix_invocations,
            "last_output": str(self.state.last_output),
            "command": command.cmd,
        }
        path = self.results_dir / "summary.json"
        check_schema(data, "test-summary")
        path.write_text(json.dumps(data, indent=2))
