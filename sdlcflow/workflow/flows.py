"""Prefect flow for the full pipeline.

The flow runs the same Pipeline as the CLI, with stages as Prefect tasks.
Approval gates pause the flow run until a GateDecisionInput is supplied
through the Prefect UI or API.
"""

import logging
from pathlib import Path
from typing import Optional

from prefect import flow, get_run_logger, pause_flow_run
from pydantic import BaseModel

from sdlcflow.lib.config import load_config
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl.common import StageOptions, build_services
from sdlcflow.workflow.engine import Pipeline
from sdlcflow.workflow.gates import CallbackDecisionProvider
from sdlcflow.workflow.tasks import prefect_stage_runner

logger = logging.getLogger(__name__)

# How long a paused gate waits for a reviewer
GATE_PAUSE_TIMEOUT = 86400 * 7


class GateDecisionInput(BaseModel):
    """Input schema for an approval gate."""
    action: str  # "approve" or "reject"
    feedback: str = ""


def _create_pause_callback(prefect_logger, timeout: int = GATE_PAUSE_TIMEOUT):
    """Gate callback that pauses the flow run and waits for GateDecisionInput."""

    def callback(gate: str, artifact_refs: list[str]) -> tuple[str, str]:
        prefect_logger.info(f"Pausing for gate {gate}: {', '.join(artifact_refs)}")
        decision: GateDecisionInput = pause_flow_run(
            wait_for_input=GateDecisionInput,
            timeout=timeout,
        )
        prefect_logger.info(f"Resumed at gate {gate} with action: {decision.action}")
        return decision.action, decision.feedback

    return callback


@flow(
    name="sdlc-pipeline",
    retries=0,
)
def pipeline_flow(
    workspace_root: str,
    env_file: Optional[str] = None,
    brd_path: Optional[str] = None,
    story_key: Optional[str] = None,
    feature_context: Optional[str] = None,
    max_retries: Optional[int] = None,
    generate_only: bool = False,
    publish_only: bool = False,
) -> dict:
    """Run stages 1-5 for a workspace.

    Returns:
        {"run_id", "status", "stage", "result_path"}
    """
    log = get_run_logger()
    config = load_config(Path(workspace_root), Path(env_file) if env_file else None)
    if max_retries is not None:
        config = config.with_overrides(max_retries=max_retries)

    ctx = RunContext.create(config, label="pipeline")
    log.info(f"Run {ctx.run_id} in {ctx.run_dir}")

    provider = CallbackDecisionProvider(_create_pause_callback(log), source="prefect")
    services = build_services(ctx, provider)
    options = StageOptions(generate_only=generate_only, publish_only=publish_only)

    pipeline = Pipeline(ctx, services, options, stage_runner=prefect_stage_runner)
    outcome = pipeline.run_full(
        brd_path=Path(brd_path) if brd_path else None,
        story_key=story_key,
        feature_context=feature_context,
    )

    log.info(f"Run {ctx.run_id}: {outcome.status}")
    return {
        "run_id": ctx.run_id,
        "status": outcome.status,
        "stage": outcome.stage,
        "result_path": str(outcome.result_path) if outcome.result_path else None,
    }
