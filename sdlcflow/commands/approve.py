"""
sdlc approve/reject - record a gate decision for a later --publish-only run.
"""

from pathlib import Path

from sdlcflow.lib.constants import ARTIFACTS_DIR, EXIT_CONFIG_ERROR, EXIT_SUCCESS, STAGE_FOR_GATE
from sdlcflow.runner.artifacts import ArtifactStore
from sdlcflow.workflow.gates import write_decision_file


def _write(args, outcome: str, feedback: str = "") -> int:
    gate = args.gate
    if gate not in STAGE_FOR_GATE:
        print(f"ERROR: Unknown gate '{gate}'. Valid gates: {', '.join(STAGE_FOR_GATE)}")
        return EXIT_CONFIG_ERROR

    workspace = Path(args.workspace_root or ".").resolve()
    artifacts = ArtifactStore(workspace / ARTIFACTS_DIR)
    stage = STAGE_FOR_GATE[gate]
    if not artifacts.list(stage):
        print(f"ERROR: No {stage} artifacts to review in {artifacts.stage_dir(stage)}")
        return EXIT_CONFIG_ERROR

    path = write_decision_file(artifacts, gate, outcome, feedback)
    print(f"{'Approved' if outcome == 'approve' else 'Rejected'} gate '{gate}' ({path})")
    print(f"Run the {stage} command with --publish-only to continue")
    return EXIT_SUCCESS


def cmd_approve(args) -> int:
    """Approve the artifacts waiting at a gate."""
    return _write(args, "approve")


def cmd_reject(args) -> int:
    """Reject the artifacts waiting at a gate, optionally with feedback."""
    return _write(args, "reject", getattr(args, "feedback", None) or "")
