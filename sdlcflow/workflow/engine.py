"""
Stage pipeline: sequencing, state machines and the run result.

Stages run strictly one after another in a single thread of control. Each
stage gets a StageFSM chained to its predecessor, so a stage cannot start
until the one before it has completed. The first failure, rejection or
pending gate ends the run; nothing already published is rolled back.

Usage:
    pipeline = Pipeline(ctx, services, options)
    outcome = pipeline.run_full(brd_path=..., story_key=...)
    sys.exit(outcome.exit_code)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from sdlcflow.lib.constants import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    STAGE_EPIC_STORIES,
    STAGE_IMPLEMENTATION,
    STAGE_INTEGRATION_TESTS,
    STAGE_TEST_RESULTS,
    STAGE_UNIT_TESTS,
    TEST_TYPES,
)
from sdlcflow.notifications import notify_complete, notify_failed
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl import (
    epic_stories,
    implementation,
    integration_tests,
    test_execution,
    unit_tests,
)
from sdlcflow.runner.impl.common import Services, StageOptions
from sdlcflow.runner.stages import Rejected, StageError, StageResult, run_stage
from sdlcflow.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)

# (ctx, stage_name, stage_fn) -> StageResult; swapped for a Prefect task under flows.py
StageRunner = Callable[[RunContext, str, Callable[[RunContext], Any]], StageResult]


@dataclass
class RunOutcome:
    """Terminal status of a run, as written to result.json."""
    status: str  # passed | failed | rejected | pending_approval
    stage: Optional[str] = None  # Stage the run stopped at (failed, rejected or pending)
    error: Optional[StageError] = None
    result_path: Optional[Path] = None

    @property
    def exit_code(self) -> int:
        if self.status in ("passed", "pending_approval"):
            return EXIT_SUCCESS
        if self.error is not None:
            return self.error.exit_code
        return EXIT_FAILURE


class Pipeline:
    """Runs a sequence of stages against one RunContext."""

    def __init__(
        self,
        ctx: RunContext,
        services: Services,
        options: Optional[StageOptions] = None,
        stage_runner: StageRunner = run_stage,
        notify: bool = True,
    ):
        self.ctx = ctx
        self.services = services
        self.options = options or StageOptions()
        self.stage_runner = stage_runner
        self.notify = notify
        self.fsms: dict[str, StageFSM] = {}
        self._last_fsm: Optional[StageFSM] = None

    def _on_transition(self, stage: str, from_state: str, to_state: str, trigger: str) -> None:
        self.ctx.log(f"[FSM] {stage}: {from_state} -> {to_state} ({trigger})")

    def stage_fsm(self, name: str) -> StageFSM:
        """Create the FSM for the next stage, chained to the previous one."""
        fsm = StageFSM(name, predecessor=self._last_fsm, on_transition=self._on_transition)
        self.fsms[name] = fsm
        self._last_fsm = fsm
        return fsm

    def execute(self, steps: list[tuple[str, Callable[[StageFSM], Any]]]) -> RunOutcome:
        """Run (name, fn(fsm)) steps in order and write result.json."""
        for name, fn in steps:
            fsm = self.stage_fsm(name)
            try:
                result = self.stage_runner(self.ctx, name, lambda ctx, fn=fn, fsm=fsm: fn(fsm))
            except Rejected as e:
                return self._finish("rejected", name, e)
            except StageError as e:
                return self._finish("failed", name, e)

            if result == StageResult.PENDING_APPROVAL:
                return self._finish("pending_approval", name)

        return self._finish("passed")

    def _finish(self, status: str, stage: Optional[str] = None,
                error: Optional[StageError] = None) -> RunOutcome:
        result_path = self.ctx.write_result(
            status,
            failed_stage=stage if error is not None else None,
            error_category=error.category if error is not None else None,
            diagnostic_path=error.diagnostic_path if error is not None else None,
        )
        self.ctx.log(f"Run {self.ctx.run_id} finished: {status}")
        if self.notify:
            if status == "passed":
                notify_complete(self.ctx.run_id)
            elif error is not None:
                notify_failed(self.ctx.run_id, stage, error.category)
        return RunOutcome(status, stage, error, result_path)

    # Single-stage entry points

    def run_epic_stories(self, brd_path: Optional[Path] = None) -> RunOutcome:
        return self.execute([
            (STAGE_EPIC_STORIES,
             lambda fsm: epic_stories.run(self.ctx, self.services, fsm, self.options, brd_path)),
        ])

    def run_implementation(self, story_key: str, epic_key: Optional[str] = None) -> RunOutcome:
        return self.execute([
            (STAGE_IMPLEMENTATION,
             lambda fsm: implementation.run(self.ctx, self.services, fsm, self.options,
                                            story_key, epic_key)),
        ])

    def run_unit_tests(self, story_key: str, branch: Optional[str] = None) -> RunOutcome:
        return self.execute([
            (STAGE_UNIT_TESTS,
             lambda fsm: unit_tests.run(self.ctx, self.services, fsm, self.options, story_key, branch)),
        ])

    def run_integration_tests(self, feature_context: str, branch: Optional[str] = None) -> RunOutcome:
        return self.execute([
            (STAGE_INTEGRATION_TESTS,
             lambda fsm: integration_tests.run(self.ctx, self.services, fsm, self.options,
                                               feature_context, branch)),
        ])

    def run_tests(self, test_type: str, max_retries: Optional[int] = None) -> RunOutcome:
        return self.execute([
            (f"{STAGE_TEST_RESULTS}/{test_type}",
             lambda fsm: test_execution.run(self.ctx, self.services, fsm, test_type, max_retries,
                                            options=self.options)),
        ])

    # Full pipeline

    def _story_key(self, explicit: Optional[str]) -> str:
        if explicit:
            return explicit
        keys = self.ctx.outputs.get("story_keys") or []
        if not keys:
            raise StageError(STAGE_IMPLEMENTATION, "No story key given and stage 1 created no stories")
        return keys[0]

    def run_full(
        self,
        brd_path: Optional[Path] = None,
        story_key: Optional[str] = None,
        feature_context: Optional[str] = None,
        max_retries: Optional[int] = None,
        test_types: tuple[str, ...] = TEST_TYPES,
    ) -> RunOutcome:
        """Stages 1 -> 5 with gates A-D; stage 5 runs each test type in turn.

        --generate-only and --publish-only (and a policy file) apply to stage 1
        only: the run resumes or pauses there, and every later stage generates,
        waits at its gate and publishes as usual.
        """
        ctx = self.ctx
        first = self.options
        opts = first.for_following_stages()
        svc = self.services

        def implement(fsm):
            # A story picked from stage 1 must belong to the epic stage 1 created
            epic_key = None if story_key else ctx.outputs.get("epic_key")
            return implementation.run(ctx, svc, fsm, opts, self._story_key(story_key), epic_key)

        def unit(fsm):
            return unit_tests.run(ctx, svc, fsm, opts, ctx.outputs["story_key"],
                                  ctx.outputs.get("story_branch"))

        def integration(fsm):
            feature = feature_context or ctx.outputs.get("story_title") or ctx.outputs["story_key"]
            return integration_tests.run(ctx, svc, fsm, opts, feature, ctx.outputs.get("story_branch"))

        steps = [
            (STAGE_EPIC_STORIES, lambda fsm: epic_stories.run(ctx, svc, fsm, first, brd_path)),
            (STAGE_IMPLEMENTATION, implement),
            (STAGE_UNIT_TESTS, unit),
            (STAGE_INTEGRATION_TESTS, integration),
        ]
        for test_type in test_types:
            steps.append((
                f"{STAGE_TEST_RESULTS}/{test_type}",
                lambda fsm, t=test_type: test_execution.run(
                    ctx, svc, fsm, t, max_retries, ctx.outputs.get("story_branch"), opts),
            ))
        return self.execute(steps)
