"""
Stage 2: Implementation of one user story.

The story's lineage (Story -> parent Epic) is verified before anything is
written. Work happens on branch story/<KEY>; after approval the changes are
committed, pushed and proposed as a pull request using pr.json.
"""

import logging
from typing import Optional

from sdlcflow.lib.constants import GATE_IMPLEMENTATION, STAGE_IMPLEMENTATION, story_branch
from sdlcflow.lib.prompts import build_instruction, build_section, load_policy
from sdlcflow.lib.types import PullRequest, WorkItem
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl.common import (
    Services,
    StageOptions,
    context_dirs,
    invoke_agent,
    resolve_story_lineage,
    run_gated,
)
from sdlcflow.runner.stages import GatewayError
from sdlcflow.vcs import VCSError
from sdlcflow.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)

STAGE = STAGE_IMPLEMENTATION
POLICY = "implementation"
OUTPUTS = ["changes-summary.md", "pr.json"]


def work_item_block(item: WorkItem, id_label: str, with_priority: bool = False) -> str:
    lines = [f"{id_label}: {item.key}", f"Title: {item.title}"]
    if with_priority and item.priority:
        lines.append(f"Priority: {item.priority}")
    lines.append("Description:")
    lines.append(item.description or "(none)")
    return "\n".join(lines)


def build_implementation_instruction(
    ctx: RunContext,
    options: StageOptions,
    story: WorkItem,
    epic: WorkItem,
    base: str,
    branch: str,
) -> str:
    config = ctx.config
    policy = load_policy(POLICY, config.policies_dir, options.policy_file)
    documents = "\n".join(
        f"- {label}: {path}"
        for label, path in (
            ("New Feature BRD Path", config.brd_path),
            ("Existing Application BRD Path", config.existing_app_brd),
            ("Existing Application Architecture Path", config.existing_app_arch),
        )
        if path
    )
    return build_instruction(
        policy,
        {
            "Workspace Root": ctx.workspace,
            "Context Directories": context_dirs(ctx, options),
            "Output Directory": f"{ctx.artifacts.stage_dir(STAGE)}/",
            "Base Branch": base,
            "Story Branch": branch,
        },
        sections=[
            build_section(work_item_block(epic, "Epic ID"), "EPIC:"),
            build_section(work_item_block(story, "Story ID", with_priority=True), "USER STORY:"),
            build_section(documents, "DOCUMENTS:"),
        ],
        required_files=[
            ("changes-summary.md", "Summary of every file changed and why"),
            ("pr.json", f'{{"title", "body", "base": "{base}", "head": "{branch}"}} for the pull request'),
        ],
        closing="Begin implementation now.",
    )


def publish_changes(ctx: RunContext, vcs, story: WorkItem, branch: str) -> PullRequest:
    """Commit, push and open (or reuse) the PR described by pr.json."""
    pr = ctx.artifacts.read_json(STAGE, "pr.json", schema="pr")
    try:
        current = vcs.current_branch()
        if current != branch:
            logger.warning(f"Expected to be on {branch}, found {current}; checking out {branch}")
            ctx.log(f"WARNING: on {current}, re-checking out {branch}")
            vcs.checkout(branch)

        committed = vcs.commit_all(pr["title"], body=pr["body"])
        if not committed:
            ctx.log(f"No changes to commit for {story.key}")
        vcs.push(branch)
        if pr["head"] != branch:
            logger.warning(f"pr.json head '{pr['head']}' ignored, using {branch}")
        created = vcs.create_pr(pr["title"], pr["body"], base=pr["base"], head=branch)
    except VCSError as e:
        raise GatewayError(STAGE, "git", str(e)) from e

    ctx.artifacts.write(STAGE, "pr-url.txt", created.url + "\n")
    if created.number is not None:
        ctx.artifacts.write(STAGE, "pr-number.txt", f"{created.number}\n")
    ctx.log(f"Pull request for {story.key}: {created.url}")
    return created


def run(
    ctx: RunContext,
    services: Services,
    fsm: StageFSM,
    options: StageOptions,
    story_key: str,
    epic_key: Optional[str] = None,
) -> Optional[PullRequest]:
    """Run stage 2 for one story. Returns the PR once published."""
    work: dict = {}

    def prepare():
        story, epic = resolve_story_lineage(ctx, services.tracker, STAGE, story_key, epic_key)
        branch = story_branch(story.key)
        try:
            base = ctx.config.base_branch or services.vcs.detect_default_branch()
            services.vcs.ensure_branch(branch, base)
        except VCSError as e:
            raise GatewayError(STAGE, "git", str(e)) from e
        ctx.log(f"Working on {branch} (base {base})")
        ctx.outputs["story_key"] = story.key
        ctx.outputs["story_branch"] = branch
        ctx.outputs["story_title"] = story.title
        work.update(story=story, epic=epic, base=base, branch=branch)

    def generate():
        out_dir = ctx.artifacts.reset_namespace(STAGE)
        instruction = build_implementation_instruction(
            ctx, options, work["story"], work["epic"], work["base"], work["branch"]
        )
        invoke_agent(ctx, services.agent, STAGE, "implementation", instruction, out_dir / "agent-output.txt")
        ctx.artifacts.require_all(STAGE, OUTPUTS)
        ctx.artifacts.read_json(STAGE, "pr.json", schema="pr")

    def publish():
        work["pr"] = publish_changes(ctx, services.vcs, work["story"], work["branch"])
        ctx.outputs["pr"] = work["pr"]

    run_gated(ctx, fsm, services.gate, STAGE, GATE_IMPLEMENTATION, OUTPUTS, options, generate, publish,
              prepare=prepare)
    return work.get("pr")
