"""Prefect task wrappers for pipeline stages.

Each stage runs as one Prefect task for observability. Tasks never retry:
gateway calls are not idempotent (issues, commits, PRs) and a failed stage
is reported, not repeated.
"""

from typing import TYPE_CHECKING, Any, Callable

from prefect import task

from sdlcflow.runner.stages import StageResult, run_stage

if TYPE_CHECKING:
    from sdlcflow.runner.context import RunContext


@task(
    retries=0,
    name="stage",
    description="Run one pipeline stage (generate, gate, publish)",
)
def task_run_stage(
    ctx: "RunContext",
    stage_name: str,
    stage_fn: Callable[["RunContext"], Any],
) -> StageResult:
    return run_stage(ctx, stage_name, stage_fn)


def prefect_stage_runner(
    ctx: "RunContext",
    stage_name: str,
    stage_fn: Callable[["RunContext"], Any],
) -> StageResult:
    """Drop-in for run_stage that shows each stage as a named Prefect task."""
    return task_run_stage.with_options(name=stage_name.replace("/", "-"))(ctx, stage_name, stage_fn)
