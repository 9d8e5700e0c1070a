"""
sdlc <stage> - run a single pipeline stage.

    sdlc epic-stories --brd-path docs/feature.md
    sdlc implement PROJ-12 [--epic PROJ-10]
    sdlc unit-tests PROJ-12 [--branch story/PROJ-12]
    sdlc integration-tests "checkout flow"
    sdlc run-tests unit [--max-retries 3]
"""

import logging
from pathlib import Path

from sdlcflow.lib.constants import ISSUE_KEY_PATTERN
from sdlcflow.commands.common import UsageError, report, setup_run
from sdlcflow.workflow.engine import Pipeline

logger = logging.getLogger(__name__)


def _check_key(key: str) -> str:
    key = key.strip().upper()
    if not ISSUE_KEY_PATTERN.match(key):
        raise UsageError(f"Invalid issue key: {key} (expected e.g. PROJ-123)")
    return key


def cmd_epic_stories(args) -> int:
    ctx, services, options = setup_run(args, "epic-stories")
    pipeline = Pipeline(ctx, services, options)
    brd = Path(args.brd_path) if args.brd_path else None
    return report(pipeline.run_epic_stories(brd))


def cmd_implement(args) -> int:
    story = _check_key(args.story)
    epic = _check_key(args.epic) if args.epic else None
    ctx, services, options = setup_run(args, "implementation")
    return report(Pipeline(ctx, services, options).run_implementation(story, epic))


def cmd_unit_tests(args) -> int:
    story = _check_key(args.story)
    ctx, services, options = setup_run(args, "unit-tests")
    return report(Pipeline(ctx, services, options).run_unit_tests(story, args.branch))


def cmd_integration_tests(args) -> int:
    ctx, services, options = setup_run(args, "integration-tests", need_tracker=False)
    return report(Pipeline(ctx, services, options).run_integration_tests(args.feature_context, args.branch))


def cmd_run_tests(args) -> int:
    ctx, services, options = setup_run(args, f"test-{args.test_type}", need_tracker=False)
    return report(Pipeline(ctx, services, options).run_tests(args.test_type, args.max_retries))
