"""
Shared plumbing for stage implementations.

Each gated stage has the same shape:

    prepare (lineage, branch)  ->  generate (reset, agent, output contract)
        ->  gate  ->  publish (tracker / git / PR side effects)

run_gated() drives that shape and the stage's state machine; the stage
modules supply the prepare/generate/publish pieces.
"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Optional

from sdlcflow.agents.coding_agent import CodingAgent
from sdlcflow.lib.agents_config import load_agents_config
from sdlcflow.lib.jira import JiraClient, TrackerError
from sdlcflow.lib.types import IssueType, WorkItem
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.stages import (
    GatewayError,
    MissingArtifact,
    Rejected,
    StageError,
    StagePendingApproval,
    TypeMismatch,
)
from sdlcflow.stages.transcript import Actor
from sdlcflow.vcs import VersionControl
from sdlcflow.workflow.fsm import StageFSM
from sdlcflow.workflow.gates import ApprovalGate

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Gateways a stage may call. Stages only touch what they need."""
    agent: Any
    vcs: Any
    gate: ApprovalGate
    tracker: Any = None


@dataclass
class StageOptions:
    """Mode flags and overrides common to every stage command."""
    generate_only: bool = False
    publish_only: bool = False
    policy_file: Optional[Path] = None
    context_dirs: Optional[tuple[str, ...]] = None

    def __post_init__(self):
        if self.generate_only and self.publish_only:
            raise ValueError("--generate-only and --publish-only are mutually exclusive")

    def for_following_stages(self) -> "StageOptions":
        """Options for the stages after the first one of a multi-stage run.

        Mode flags and the policy file name one stage; context dirs apply to all.
        """
        return replace(self, generate_only=False, publish_only=False, policy_file=None)


def build_services(ctx: RunContext, provider, need_tracker: bool = True, notify: bool = True) -> Services:
    """Wire the real gateways for a run from its configuration.

    Raises:
        ConfigError: need_tracker is set and tracker credentials are incomplete
    """
    config = ctx.config
    env = config.subprocess_env()
    agent = CodingAgent(
        load_agents_config(config.workspace_root),
        timeout=config.agent_timeout,
        env=env,
        on_command=ctx.log_command,
    )
    return Services(
        agent=agent,
        vcs=VersionControl(config.workspace_root, env=env),
        gate=ApprovalGate(ctx, provider, notify=notify),
        tracker=JiraClient.from_config(config) if need_tracker else None,
    )


def context_dirs(ctx: RunContext, options: StageOptions) -> tuple[str, ...]:
    return options.context_dirs or ctx.config.context_dirs


def require_document(stage: str, label: str, path: str | Path | None, required: bool = False) -> Path | None:
    """Check an input document. Missing optional documents are allowed; given ones must exist."""
    if not path:
        if required:
            raise MissingArtifact(stage, label, "(not provided)", message=f"{label} path is required")
        return None
    resolved = Path(path)
    if not resolved.is_file():
        raise MissingArtifact(stage, label, resolved)
    return resolved


def invoke_agent(
    ctx: RunContext,
    agent,
    stage: str,
    agent_stage: str,
    instruction: str,
    log_file: Path,
):
    """Invoke the agent, record the exchange, and raise GatewayError on failure."""
    output_dir = log_file.parent
    ctx.transcript.record_agent_call(stage, instruction, agent_stage=agent_stage)
    ctx.log(f"{stage}: invoking agent ({agent_stage})")
    result = agent.invoke(
        agent_stage,
        ctx.workspace,
        instruction,
        output_dir=output_dir,
        log_file=log_file,
    )
    ctx.transcript.record_agent_response(
        stage, result.stdout, result.files_written, exit_code=result.exit_code,
    )
    ctx.transcript.save()
    if not result.success:
        raise GatewayError(
            stage, "agent",
            f"exited with {result.exit_code}: {result.stderr.strip()[:300]}",
            path=log_file,
        )
    return result


def tracker_call(stage: str, fn: Callable, *args, **kwargs):
    """Run a tracker call, converting TrackerError to GatewayError."""
    try:
        return fn(*args, **kwargs)
    except TrackerError as e:
        raise GatewayError(stage, "jira", str(e)) from e


def resolve_story_lineage(
    ctx: RunContext,
    tracker,
    stage: str,
    story_key: str,
    epic_key: Optional[str] = None,
) -> tuple[WorkItem, WorkItem]:
    """Fetch a Story and its parent Epic, verifying both types.

    Raises:
        TypeMismatch: story is not a Story, has no parent, the parent is not
            an Epic, or an explicit epic_key disagrees with the parent
        GatewayError: tracker call failed
    """
    story = tracker_call(stage, tracker.get_issue, story_key)
    if not tracker_call(stage, tracker.verify_type, story_key, IssueType.STORY):
        raise TypeMismatch(stage, story_key, IssueType.STORY.value, story.kind)

    if not story.parent:
        raise TypeMismatch(
            stage, story_key, IssueType.EPIC.value, None,
            message=f"Story '{story_key}' does not have a parent Epic",
        )

    if epic_key and epic_key != story.parent:
        raise TypeMismatch(
            stage, story_key, epic_key, story.parent,
            message=f"Story '{story_key}' belongs to '{story.parent}', not '{epic_key}'",
        )

    epic = tracker_call(stage, tracker.get_issue, story.parent)
    if not tracker_call(stage, tracker.verify_type, epic.key, IssueType.EPIC):
        raise TypeMismatch(stage, epic.key, IssueType.EPIC.value, epic.kind)

    ctx.log(f"{stage}: {story.key} -> epic {epic.key} verified")
    ctx.transcript.record(
        stage, Actor.TRACKER, "out",
        f"Story {story.key} ({story.title}) under Epic {epic.key} ({epic.title})",
    )
    return story, epic


def run_gated(
    ctx: RunContext,
    fsm: StageFSM,
    gate: ApprovalGate,
    stage: str,
    gate_name: str,
    outputs: list[str],
    options: StageOptions,
    generate: Callable[[], None],
    publish: Callable[[], None],
    review_refs: Optional[Callable[[], list]] = None,
    prepare: Optional[Callable[[], None]] = None,
) -> None:
    """Drive generate -> gate -> publish for one stage.

    prepare runs once the stage is running, in every mode, so a lookup that
    fails there leaves the stage failed rather than pending.
    --generate-only stops at the gate (StagePendingApproval). --publish-only
    skips generation but requires the output contract to already exist.
    """
    if fsm.state == "pending" and not fsm.start():
        raise StageError(stage, f"Cannot start {stage}: previous stage has not completed")

    try:
        if prepare:
            prepare()
        if options.publish_only:
            ctx.log(f"{stage}: publish-only, reusing existing artifacts")
            ctx.artifacts.require_all(stage, outputs)
        else:
            generate()
            ctx.artifacts.require_all(stage, outputs)

        refs = review_refs() if review_refs else [ctx.artifacts.path(stage, name) for name in outputs]
        fsm.await_approval()

        if options.generate_only:
            gate.record_pending(stage, gate_name, refs)
            raise StagePendingApproval(stage, gate_name, [str(r) for r in refs])

        try:
            gate.require_approval(stage, gate_name, refs)
        except Rejected:
            fsm.reject()
            raise
        fsm.approve()
        fsm.publish()

        publish()
        fsm.complete()

    except (StagePendingApproval, Rejected):
        raise
    except Exception:
        if fsm.can("fail"):
            fsm.fail()
        raise


def run_ungated(ctx: RunContext, fsm: StageFSM, stage: str, body: Callable[[], Any]) -> Any:
    """Drive pending -> running -> completed|failed for a stage without a gate."""
    if fsm.state == "pending" and not fsm.start():
        raise StageError(stage, f"Cannot start {stage}: previous stage has not completed")
    try:
        result = body()
    except Exception:
        if fsm.can("fail"):
            fsm.fail()
        raise
    fsm.complete()
    return result

