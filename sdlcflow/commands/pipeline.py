"""
sdlc pipeline - run stages 1 through 5 with all four approval gates.
"""

import logging
from pathlib import Path

from sdlcflow.commands.common import load_command_config, report, setup_run
from sdlcflow.lib.constants import GATE_FOR_STAGE, STAGE_EPIC_STORIES
from sdlcflow.workflow.engine import Pipeline

logger = logging.getLogger(__name__)


def cmd_pipeline(args) -> int:
    if args.story:
        args.story = args.story.strip().upper()

    if args.prefect or load_command_config(args).use_prefect:
        return _run_with_prefect(args)

    # Mode flags only cover stage 1, so only its gate may be pre-decided
    ctx, services, options = setup_run(args, "pipeline", resume_gate=GATE_FOR_STAGE[STAGE_EPIC_STORIES])
    pipeline = Pipeline(ctx, services, options)
    outcome = pipeline.run_full(
        brd_path=Path(args.brd_path) if args.brd_path else None,
        story_key=args.story,
        feature_context=args.feature_context,
        max_retries=args.max_retries,
    )
    return report(outcome)


def _run_with_prefect(args) -> int:
    # Imported lazily: starting Prefect is slow and only needed here
    from sdlcflow.workflow.flows import pipeline_flow

    result = pipeline_flow(
        workspace_root=str(Path(args.workspace_root or ".").resolve()),
        env_file=args.env_file,
        brd_path=args.brd_path,
        story_key=args.story,
        feature_context=args.feature_context,
        max_retries=args.max_retries,
        generate_only=args.generate_only,
        publish_only=args.publish_only,
    )
    print(f"Run {result['run_id']}: {result['status']}")
    if result.get("result_path"):
        print(f"Result: {result['result_path']}")
    return 0 if result["status"] in ("passed", "pending_approval") else 1
