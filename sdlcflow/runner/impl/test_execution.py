"""Stage 5: run a test suite with bounded auto-fix (see workflow.test_loop)."""

from typing import Optional

from sdlcflow.lib.constants import STAGE_TEST_RESULTS
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.impl.common import Services, StageOptions, run_ungated
from sdlcflow.workflow.fsm import StageFSM
from sdlcflow.workflow.test_loop import LoopSuccess, RetryLoop

STAGE = STAGE_TEST_RESULTS


def run(
    ctx: RunContext,
    services: Services,
    fsm: StageFSM,
    test_type: str,
    max_retries: Optional[int] = None,
    branch: Optional[str] = None,
    options: Optional[StageOptions] = None,
) -> LoopSuccess:
    """Run one test type to success; raises HardFailure when attempts run out."""
    branch = branch or services.vcs.current_branch()
    options = options or StageOptions()

    def body() -> LoopSuccess:
        loop = RetryLoop(ctx, services.agent, services.vcs, test_type,
                         branch=branch, max_retries=max_retries,
                         policy_file=options.policy_file, context_dirs=options.context_dirs)
        result = loop.run()
        ctx.outputs.setdefault("test_results", {})[test_type] = {
            "attempt": result.attempt,
            "fix_invocations": result.fix_invocations,
        }
        ctx.log(f"{test_type} tests passed on attempt {result.attempt}")
        return result

    return run_ungated(ctx, fsm, STAGE, body)
