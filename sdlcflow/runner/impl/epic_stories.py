"""
Stage 1: Epic and user stories.

Generation: the agent reads the BRD and writes epic.md and stories.md.
Publish: the epic and each story are created in the tracker, stories
parented to the epic, and the created keys are written to jira.json.
"""

import logging
from pathlib import Path
from typing import Optional

from sdlcflow.lib.constants import GATE_EPIC_STORIES, STAGE_EPIC_STORIES
from sdlcflow.lib.jira import TrackerError
from sdlcflow.lib.prompts import build_instruction, load_policy
from sdlcflow.lib.storiesparse import parse_epic, parse_stories
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl.common import (
    Services,
    StageOptions,
    context_dirs,
    invoke_agent,
    require_document,
    run_gated,
    tracker_call,
)
from sdlcflow.runner.stages import StageError
from sdlcflow.stages.transcript import Actor
from sdlcflow.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)

STAGE = STAGE_EPIC_STORIES
POLICY = "epic-stories-generation"
OUTPUTS = ["epic.md", "stories.md"]
SUMMARY_FILE = "jira.json"


def build_epic_instruction(
    ctx: RunContext,
    options: StageOptions,
    brd: Path,
    existing_brd: Optional[Path],
    existing_arch: Optional[Path],
) -> str:
    policy = load_policy(POLICY, ctx.config.policies_dir, options.policy_file)
    return build_instruction(
        policy,
        {
            "New Feature BRD Document Path": brd,
            "Existing Application BRD Path": existing_brd,
            "Existing Application Architecture Path": existing_arch,
            "Workspace Root": ctx.workspace,
            "Context Directories": context_dirs(ctx, options),
            "Output Directory": f"{ctx.artifacts.stage_dir(STAGE)}/",
        },
        required_files=[
            ("epic.md", "Epic details with title, description, acceptance criteria"),
            ("stories.md", "All user stories with titles, descriptions, acceptance criteria"),
        ],
    )


def publish_to_tracker(ctx: RunContext, tracker) -> dict:
    """Create the epic and its stories; return the jira.json summary.

    A story that fails to create is logged and listed under "failed"; only a
    failure to create the epic itself fails the stage.
    """
    who = tracker_call(STAGE, tracker.test_connection)
    project = tracker_call(STAGE, tracker.get_project)
    ctx.log(f"Tracker connection ok ({who}), project {project}")

    try:
        epic = parse_epic(ctx.artifacts.require(STAGE, "epic.md"))
    except ValueError as e:
        raise StageError(STAGE, f"epic.md: {e}",
                         details={"path": str(ctx.artifacts.path(STAGE, "epic.md"))}) from None
    stories = parse_stories(ctx.artifacts.require(STAGE, "stories.md"))
    if not stories:
        logger.warning("stories.md contains no stories")

    epic_key = tracker_call(STAGE, tracker.create_epic, epic.title, epic.description)
    ctx.log(f"Created epic {epic_key}: {epic.title}")
    ctx.transcript.record(STAGE, Actor.TRACKER, "out", f"Created epic {epic_key}", key=epic_key)

    created = []
    failed = []
    for story in stories:
        try:
            key = tracker.create_story(
                story.summary, story.description, parent_key=epic_key, priority=story.priority,
            )
        except TrackerError as e:
            logger.warning(f"Failed to create {story.id}: {e}")
            ctx.log(f"WARNING: failed to create {story.id}: {e}")
            failed.append(story.id)
            continue
        created.append({"id": story.id, "key": key, "title": story.title})
        ctx.log(f"Created story {key}: {story.summary}")

    ctx.transcript.record(
        STAGE, Actor.TRACKER, "out",
        f"Created {len(created)} stor{'y' if len(created) == 1 else 'ies'} under {epic_key}",
        keys=[s["key"] for s in created], failed=failed,
    )

    summary = {
        "epic_key": epic_key,
        "epic_url": tracker.browse_url(epic_key),
        "stories": created,
        "failed": failed,
    }
    ctx.artifacts.write_json(STAGE, SUMMARY_FILE, summary, schema="tracker-summary")
    return summary


def run(
    ctx: RunContext,
    services: Services,
    fsm: StageFSM,
    options: StageOptions,
    brd_path: Optional[Path] = None,
) -> Optional[dict]:
    """Run stage 1. Returns the jira.json summary once published."""
    config = ctx.config
    brd = require_document(STAGE, "BRD", brd_path or config.brd_path, required=not options.publish_only)
    existing_brd = require_document(STAGE, "existing application BRD", config.existing_app_brd)
    existing_arch = require_document(STAGE, "existing application architecture", config.existing_app_arch)

    def generate():
        out_dir = ctx.artifacts.reset_namespace(STAGE)
        instruction = build_epic_instruction(ctx, options, brd, existing_brd, existing_arch)
        invoke_agent(ctx, services.agent, STAGE, "epic_stories", instruction, out_dir / "agent-output.txt")

    def publish():
        summary = publish_to_tracker(ctx, services.tracker)
        ctx.outputs["epic_key"] = summary["epic_key"]
        ctx.outputs["story_keys"] = [s["key"] for s in summary["stories"]]

    run_gated(ctx, fsm, services.gate, STAGE, GATE_EPIC_STORIES, OUTPUTS, options, generate, publish)
    return ctx.artifacts.read_json(STAGE, SUMMARY_FILE) if ctx.artifacts.exists(STAGE, SUMMARY_FILE) else None
