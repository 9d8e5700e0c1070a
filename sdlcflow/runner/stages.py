"""
Stage execution framework for sdlcflow.

Defines the stage result enum, the error taxonomy every stage raises, and
run_stage() which times a stage and records its outcome on the RunContext.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from sdlcflow.lib.constants import EXIT_FAILURE, EXIT_UNEXPECTED

if TYPE_CHECKING:
    from sdlcflow.runner.context import RunContext


class StageResult(Enum):
    PASSED = "passed"
    PENDING_APPROVAL = "pending_approval"  # --generate-only stopped before the gate


@dataclass
class StageError(Exception):
    """A stage failed."""
    stage: str
    message: str
    exit_code: int = EXIT_FAILURE
    details: Optional[dict] = None  # Structured details (artifact, path, attempt, ...)

    def __str__(self):
        return f"[{self.stage}] {self.message}"

    @property
    def category(self) -> str:
        return type(self).__name__

    @property
    def diagnostic_path(self) -> str | None:
        """File a human should look at to follow up, if any."""
        return (self.details or {}).get("path")


class MissingArtifact(StageError):
    """A declared output (or required input) artifact does not exist."""

    def __init__(self, stage: str, artifact: str, path, message: str | None = None):
        super().__init__(
            stage,
            message or f"Required artifact '{artifact}' not found at {path}",
            EXIT_FAILURE,
            {"artifact": artifact, "path": str(path)},
        )


class GatewayError(StageError):
    """A tracker, version-control or agent call failed."""

    def __init__(self, stage: str, gateway: str, message: str, path=None):
        details = {"gateway": gateway}
        if path is not None:
            details["path"] = str(path)
        super().__init__(stage, f"{gateway}: {message}", EXIT_FAILURE, details)


class TypeMismatch(StageError):
    """A work item's type or parent linkage is not what the stage expects."""

    def __init__(self, stage: str, key: str, expected: str, actual: str | None,
                 message: str | None = None):
        super().__init__(
            stage,
            message or f"Issue '{key}' is of type '{actual}', expected '{expected}'",
            EXIT_FAILURE,
            {"key": key, "expected": expected, "actual": actual},
        )


class NoTestRunnerDetected(StageError):
    """The workspace has no recognizable test runner marker."""

    def __init__(self, stage: str, workspace, message: str):
        super().__init__(stage, message, EXIT_FAILURE, {"workspace": str(workspace)})


class HardFailure(StageError):
    """The test retry loop used every attempt without a passing run."""

    def __init__(self, stage: str, attempts: int, last_output):
        super().__init__(
            stage,
            f"Tests still failing after {attempts} attempt(s)",
            EXIT_FAILURE,
            {"attempts": attempts, "path": str(last_output)},
        )

    @property
    def attempts(self) -> int:
        return self.details["attempts"]


class ContractViolation(StageError):
    """The fix agent skipped, disabled or deleted tests."""

    def __init__(self, stage: str, attempt: int, violations: list[str], path=None):
        details = {"attempt": attempt, "violations": violations}
        if path is not None:
            details["path"] = str(path)
        super().__init__(
            stage,
            f"Fix contract violation on attempt {attempt}: {'; '.join(violations)}",
            EXIT_FAILURE,
            details,
        )


class Rejected(StageError):
    """A human rejected the artifacts at an approval gate."""

    def __init__(self, stage: str, gate: str, feedback: str = "", path=None):
        details = {"gate": gate, "feedback": feedback}
        if path is not None:
            details["path"] = str(path)
        super().__init__(
            stage,
            f"Rejected at gate '{gate}'" + (f": {feedback}" if feedback else ""),
            EXIT_FAILURE,
            details,
        )


@dataclass
class StagePendingApproval(Exception):
    """Generation finished; the run stops at the gate (--generate-only)."""
    stage: str
    gate: str
    artifacts: list


def run_stage(ctx: "RunContext", stage_name: str, stage_fn: Callable[["RunContext"], None]) -> StageResult:
    """
    Run a single stage with timing and error handling.

    Returns StageResult and updates ctx.stages. StageError (including
    Rejected) is recorded and re-raised; any other exception is wrapped in a
    StageError with exit code 9.
    """
    ctx.log(f"Starting stage: {stage_name}")
    ctx.transcript.record_stage_start(stage_name)
    start = time.time()

    try:
        stage_fn(ctx)
        duration = time.time() - start
        ctx.record_stage(stage_name, "passed", duration)
        ctx.transcript.record_stage_end(stage_name, "passed")
        ctx.log(f"Stage {stage_name} passed ({duration:.2f}s)")
        return StageResult.PASSED

    except StagePendingApproval as e:
        duration = time.time() - start
        ctx.record_stage(stage_name, "pending_approval", duration, f"waiting at gate {e.gate}")
        ctx.transcript.record_stage_end(stage_name, "pending_approval", e.gate)
        ctx.log(f"Stage {stage_name} generated artifacts; approval pending at {e.gate}")
        return StageResult.PENDING_APPROVAL

    except Rejected as e:
        duration = time.time() - start
        ctx.record_stage(stage_name, "rejected", duration, e.message)
        ctx.transcript.record_stage_end(stage_name, "rejected", e.message)
        ctx.log(f"Stage {stage_name} rejected: {e.message}")
        raise

    except StageError as e:
        duration = time.time() - start
        ctx.record_stage(stage_name, "failed", duration, f"{e.category}: {e.message}")
        ctx.transcript.record_stage_end(stage_name, "failed", e.message)
        ctx.log(f"Stage {stage_name} failed: {e.category}: {e.message}")
        raise

    except Exception as e:
        duration = time.time() - start
        ctx.record_stage(stage_name, "failed", duration, str(e))
        ctx.transcript.record_stage_end(stage_name, "failed", str(e))
        ctx.log(f"Stage {stage_name} error: {e}")
        raise StageError(stage_name, str(e), EXIT_UNEXPECTED) from e
