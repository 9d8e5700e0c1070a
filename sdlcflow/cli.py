#!/usr/bin/env python3
"""sdlcflow CLI entrypoint."""

import argparse
import logging
import sys

from sdlcflow import __version__
from sdlcflow.commands import approve as cmd_approve_module
from sdlcflow.commands import check as cmd_check_module
from sdlcflow.commands import pipeline as cmd_pipeline_module
from sdlcflow.commands import stages as cmd_stages_module
from sdlcflow.commands.common import UsageError
from sdlcflow.lib.config import ConfigError
from sdlcflow.lib.constants import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    GATE_FOR_STAGE,
    TEST_TYPES,
)
from sdlcflow.lib.jira import TrackerError
from sdlcflow.lib.prompts import PolicyError

logger = logging.getLogger("sdlcflow")


def _add_workspace_args(p: argparse.ArgumentParser) -> None:
    p.add_argument('--workspace-root', '-w', help='Repository to work in (default: current directory)')
    p.add_argument('--env-file', help='Configuration file (default: <workspace>/sdlc.env)')
    p.add_argument('--verbose', '-v', action='store_true', help='Echo the run log to the terminal')


def _add_stage_args(p: argparse.ArgumentParser, gated: bool = True) -> None:
    _add_workspace_args(p)
    p.add_argument('--context-dirs', help='Comma-separated directories the agent should read (default: src,docs)')
    p.add_argument('--policy-file', help='Policy document to use instead of the default')
    if not gated:
        return
    mode = p.add_mutually_exclusive_group()
    mode.add_argument('--generate-only', action='store_true',
                      help='Generate artifacts and stop at the approval gate')
    mode.add_argument('--publish-only', action='store_true',
                      help='Publish previously generated artifacts without regenerating them')
    p.add_argument('--interactive', '-i', action='store_true',
                   help='Ask for approval on the console (default)')
    p.add_argument('--yes', '-y', action='store_true', help='Approve every gate automatically')


def _add_document_args(p: argparse.ArgumentParser) -> None:
    p.add_argument('--existing-app-brd', help='Existing application BRD')
    p.add_argument('--existing-app-arch', help='Existing application architecture document')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='sdlc', description='Human-gated agentic SDLC pipeline')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # sdlc epic-stories
    p_epic = subparsers.add_parser('epic-stories', help='Stage 1: generate epic and stories from a BRD')
    p_epic.add_argument('--brd-path', '-b', help='New feature BRD (default: BRD_PATH)')
    _add_document_args(p_epic)
    _add_stage_args(p_epic)
    p_epic.set_defaults(func=cmd_stages_module.cmd_epic_stories)

    # sdlc implement
    p_impl = subparsers.add_parser('implement', help='Stage 2: implement a story and open a PR')
    p_impl.add_argument('story', help='Story key (e.g. PROJ-12)')
    p_impl.add_argument('--epic', help='Expected parent epic key')
    p_impl.add_argument('--base-branch', help='Branch to create the story branch from (default: remote default)')
    _add_document_args(p_impl)
    _add_stage_args(p_impl)
    p_impl.set_defaults(func=cmd_stages_module.cmd_implement)

    # sdlc unit-tests
    p_unit = subparsers.add_parser('unit-tests', help='Stage 3: plan and write unit tests for a story')
    p_unit.add_argument('story', help='Story key')
    p_unit.add_argument('--branch', help='Branch to commit to (default: story/<KEY>)')
    _add_document_args(p_unit)
    _add_stage_args(p_unit)
    p_unit.set_defaults(func=cmd_stages_module.cmd_unit_tests)

    # sdlc integration-tests
    p_integ = subparsers.add_parser('integration-tests', help='Stage 4: plan and write integration tests')
    p_integ.add_argument('feature_context', help='Feature under test (free text)')
    p_integ.add_argument('--branch', help='Commit to this branch instead of opening a new PR')
    _add_document_args(p_integ)
    _add_stage_args(p_integ)
    p_integ.set_defaults(func=cmd_stages_module.cmd_integration_tests)

    # sdlc run-tests
    p_tests = subparsers.add_parser('run-tests', help='Stage 5: run tests with bounded auto-fix')
    p_tests.add_argument('test_type', choices=TEST_TYPES)
    p_tests.add_argument('--max-retries', type=int, help='Fix attempts after the first run (default: MAX_RETRIES)')
    _add_stage_args(p_tests, gated=False)
    p_tests.set_defaults(func=cmd_stages_module.cmd_run_tests)

    # sdlc pipeline
    p_pipe = subparsers.add_parser('pipeline', help='Run stages 1-5 with all approval gates')
    p_pipe.add_argument('--brd-path', '-b', help='New feature BRD (default: BRD_PATH)')
    p_pipe.add_argument('--story', help='Story to implement (default: first story created)')
    p_pipe.add_argument('--feature-context', help='Feature description for integration tests')
    p_pipe.add_argument('--max-retries', type=int, help='Fix attempts after the first test run')
    p_pipe.add_argument('--base-branch', help='Branch to create the story branch from')
    p_pipe.add_argument('--prefect', action='store_true', help='Run as a Prefect flow')
    _add_document_args(p_pipe)
    _add_stage_args(p_pipe)
    p_pipe.set_defaults(func=cmd_pipeline_module.cmd_pipeline)

    # sdlc approve / reject
    gates = sorted(GATE_FOR_STAGE.values())
    p_approve = subparsers.add_parser('approve', help='Approve artifacts waiting at a gate')
    p_approve.add_argument('gate', choices=gates)
    p_approve.add_argument('--workspace-root', '-w', help='Repository (default: current directory)')
    p_approve.set_defaults(func=cmd_approve_module.cmd_approve)

    p_reject = subparsers.add_parser('reject', help='Reject artifacts waiting at a gate')
    p_reject.add_argument('gate', choices=gates)
    p_reject.add_argument('--feedback', '-f', help='Why the artifacts were rejected')
    p_reject.add_argument('--workspace-root', '-w', help='Repository (default: current directory)')
    p_reject.set_defaults(func=cmd_approve_module.cmd_reject)

    # sdlc check
    p_check = subparsers.add_parser('check', help='Verify tracker, agent, git and gh setup')
    _add_workspace_args(p_check)
    p_check.set_defaults(func=cmd_check_module.cmd_check)

    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(getattr(args, 'verbose', False))

    try:
        return args.func(args)
    except (ConfigError, UsageError, PolicyError) as e:
        print(f"ERROR [{type(e).__name__}] {e}")
        return EXIT_CONFIG_ERROR
    except TrackerError as e:
        print(f"ERROR [TrackerError] {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted")
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
