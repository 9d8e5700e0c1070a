"""
Stage 3: Unit tests for one story.

Plan first (unit-test-plan.md, reviewed at the unit-test-plan gate), then
generate test code from the approved plan and commit it to the story branch.
"""

import logging
from typing import Optional

from sdlcflow.lib.constants import GATE_UNIT_TEST_PLAN, STAGE_UNIT_TESTS, story_branch
from sdlcflow.lib.prompts import build_instruction, build_section, load_policy
from sdlcflow.lib.types import WorkItem
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl.common import (
    Services,
    StageOptions,
    context_dirs,
    invoke_agent,
    resolve_story_lineage,
    run_gated,
)
from sdlcflow.runner.impl.implementation import work_item_block
from sdlcflow.runner.stages import GatewayError
from sdlcflow.vcs import VCSError
from sdlcflow.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)

STAGE = STAGE_UNIT_TESTS
POLICY = "unit-tests"
PLAN_FILE = "unit-test-plan.md"


def _instruction(
    ctx: RunContext,
    options: StageOptions,
    story: WorkItem,
    epic: WorkItem,
    branch: str,
    phase: str,
) -> str:
    config = ctx.config
    policy = load_policy(POLICY, config.policies_dir, options.policy_file)
    out_dir = ctx.artifacts.stage_dir(STAGE)
    fields = {
        "Story Branch": f"{branch} (contains completed implementation)",
        "Existing Application BRD": config.existing_app_brd,
        "Existing Application Architecture": config.existing_app_arch,
        "Workspace Root": ctx.workspace,
        "Context Directories": context_dirs(ctx, options),
    }
    sections = [
        build_section(work_item_block(epic, "Epic ID"), "EPIC:"),
        build_section(work_item_block(story, "Story ID", with_priority=True), "USER STORY:"),
    ]

    if phase == "plan":
        fields["Output Directory"] = f"{out_dir}/"
        return build_instruction(
            policy, fields, sections=sections,
            required_files=[(PLAN_FILE, "Which tests are needed and why, cases and expected outcomes, "
                                        "existing test patterns to follow")],
            closing="Begin unit test plan generation now.",
        )

    fields["Approved Unit Test Plan"] = out_dir / PLAN_FILE
    sections.append(build_section(
        f"Generate unit test code based on the approved test plan at {out_dir / PLAN_FILE}.\n"
        "Place test files in the appropriate test directories following codebase conventions.\n"
        "Do not alter the approved test plan.",
        "TASK:",
    ))
    return build_instruction(policy, fields, sections=sections,
                             closing="Begin unit test code generation now.")


def run(
    ctx: RunContext,
    services: Services,
    fsm: StageFSM,
    options: StageOptions,
    story_key: str,
    branch: Optional[str] = None,
) -> bool:
    """Run stage 3. Returns True if test code was committed."""
    vcs = services.vcs
    work: dict = {"committed": False}

    def prepare():
        story, epic = resolve_story_lineage(ctx, services.tracker, STAGE, story_key)
        work.update(story=story, epic=epic, branch=branch or story_branch(story.key))
        try:
            vcs.checkout(work["branch"])
        except VCSError as e:
            raise GatewayError(STAGE, "git", str(e)) from e
        vcs.pull(work["branch"])

    def generate():
        out_dir = ctx.artifacts.reset_namespace(STAGE)
        instruction = _instruction(ctx, options, work["story"], work["epic"], work["branch"], "plan")
        invoke_agent(ctx, services.agent, STAGE, "unit_test_plan", instruction, out_dir / "agent-output.txt")

    def publish():
        story = work["story"]
        out_dir = ctx.artifacts.ensure_dir(STAGE)
        instruction = _instruction(ctx, options, story, work["epic"], work["branch"], "code")
        invoke_agent(ctx, services.agent, STAGE, "unit_test_code", instruction,
                     out_dir / "code-generation-output.txt")
        try:
            committed = vcs.commit_all(f"test({story.key}): Add unit tests")
            if committed:
                vcs.push(work["branch"])
            else:
                ctx.log("No unit test changes to commit")
        except VCSError as e:
            raise GatewayError(STAGE, "git", str(e)) from e
        work["committed"] = committed

    run_gated(ctx, fsm, services.gate, STAGE, GATE_UNIT_TEST_PLAN, [PLAN_FILE], options, generate, publish,
              prepare=prepare)
    return work["committed"]
