"""
Helpers shared by the command modules: configuration, run setup, decision
provider selection and outcome reporting.
"""

import logging
from pathlib import Path

from sdlcflow.lib.config import ConfigError, PipelineConfig, load_config, parse_context_dirs
from sdlcflow.lib.constants import EXIT_CONFIG_ERROR
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl.common import Services, StageOptions, build_services
from sdlcflow.workflow.engine import RunOutcome
from sdlcflow.workflow.gates import (
    ConsoleDecisionProvider,
    RecordedDecisionProvider,
    ResumeDecisionProvider,
    StaticDecisionProvider,
)

logger = logging.getLogger(__name__)


class UsageError(Exception):
    """Invalid flag combination; reported with exit code 2."""
    exit_code = EXIT_CONFIG_ERROR


def load_command_config(args) -> PipelineConfig:
    """Build the PipelineConfig from env file, environment and CLI flags."""
    workspace = Path(args.workspace_root or ".")
    if not workspace.is_dir():
        raise ConfigError(f"Workspace root does not exist: {workspace}")
    env_file = Path(args.env_file) if getattr(args, "env_file", None) else None
    config = load_config(workspace, env_file)

    overrides = {}
    if getattr(args, "context_dirs", None):
        overrides["context_dirs"] = parse_context_dirs(args.context_dirs)
    if getattr(args, "max_retries", None) is not None:
        if args.max_retries < 0:
            raise ConfigError("--max-retries must be a non-negative integer")
        overrides["max_retries"] = args.max_retries
    for flag, key in (("brd_path", "brd_path"),
                      ("existing_app_brd", "existing_app_brd"),
                      ("existing_app_arch", "existing_app_arch"),
                      ("base_branch", "base_branch")):
        value = getattr(args, flag, None)
        if value:
            overrides[key] = value
    return config.with_overrides(**overrides)


def stage_options(args) -> StageOptions:
    generate_only = getattr(args, "generate_only", False)
    publish_only = getattr(args, "publish_only", False)
    if generate_only and publish_only:
        raise UsageError("--generate-only and --publish-only are mutually exclusive")
    if getattr(args, "interactive", False) and (generate_only or publish_only):
        raise UsageError("-i/--interactive cannot be combined with --generate-only or --publish-only")
    policy_file = Path(args.policy_file) if getattr(args, "policy_file", None) else None
    if policy_file is not None and not policy_file.is_file():
        raise ConfigError(f"Policy file not found: {policy_file}")
    return StageOptions(
        generate_only=generate_only,
        publish_only=publish_only,
        policy_file=policy_file,
        context_dirs=parse_context_dirs(args.context_dirs) if getattr(args, "context_dirs", None) else None,
    )


def decision_provider(args, ctx: RunContext, resume_gate: str | None = None):
    """Pick who answers approval gates for this invocation.

    --yes approves automatically. --publish-only consumes a decision written
    by `sdlc approve/reject`, approving when there is none. Otherwise the
    reviewer is asked on the console.

    With resume_gate set (multi-stage runs), only that gate is answered the
    --publish-only way; the gates after it are asked on the console.
    """
    if getattr(args, "yes", False):
        return StaticDecisionProvider("approve", source="auto")
    if getattr(args, "publish_only", False):
        recorded = RecordedDecisionProvider(ctx.artifacts, StaticDecisionProvider("approve", source="publish-only"))
        if resume_gate is None:
            return recorded
        return ResumeDecisionProvider(resume_gate, recorded, ConsoleDecisionProvider())
    return ConsoleDecisionProvider()


def setup_run(
    args, label: str, need_tracker: bool = True, resume_gate: str | None = None,
) -> tuple[RunContext, Services, StageOptions]:
    """Load config, create the run directory and wire the gateways."""
    options = stage_options(args)
    config = load_command_config(args)
    ctx = RunContext.create(config, label=label, verbose=getattr(args, "verbose", False))
    services = build_services(ctx, decision_provider(args, ctx, resume_gate), need_tracker=need_tracker)
    logger.debug(f"Run {ctx.run_id} in {ctx.run_dir}")
    return ctx, services, options


def report(outcome: RunOutcome) -> int:
    """Print the outcome of a run and return its exit code."""
    if outcome.status == "passed":
        print("Run complete.")
    elif outcome.status == "pending_approval":
        print(f"Artifacts generated; approval pending at {outcome.stage}")
        print("Review them, then run `sdlc approve <gate>` (or `sdlc reject <gate>`) "
              "and re-run with --publish-only.")
    elif outcome.error is not None:
        print(f"ERROR [{outcome.error.category}] {outcome.error}")
        if outcome.error.diagnostic_path:
            print(f"See: {outcome.error.diagnostic_path}")
    if outcome.result_path:
        print(f"Result: {outcome.result_path}")
    return outcome.exit_code
