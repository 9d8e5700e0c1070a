"""
Approval gates.

A gate suspends the pipeline at a named point, shows the reviewer the
artifacts generated so far, and blocks until a decision arrives. The decision
comes from a provider:

- ConsoleDecisionProvider: interactive y/n prompt (blocking input())
- StaticDecisionProvider: fixed outcome (--yes)
- RecordedDecisionProvider: a decision written earlier by `sdlc approve` /
  `sdlc reject`, consumed by a --publish-only run
- CallbackDecisionProvider: programmatic (Prefect pause, tests)
- ResumeDecisionProvider: a recorded decision for the gate a multi-stage
  --publish-only run resumes at, another provider for the gates after it

Every decision is written once to runs/<run_id>/gates/<gate>.json and to the
transcript. Gates never touch artifacts.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from sdlcflow.lib.constants import GATE_QUESTIONS, STAGE_FOR_GATE
from sdlcflow.lib.types import ApprovalDecision
from sdlcflow.notifications import notify_awaiting_approval
from sdlcflow.runner.artifacts import ArtifactStore, check_schema
from sdlcflow.runner.context import RunContext
from sdlcflow.runner.stages import Rejected, StageError

logger = logging.getLogger(__name__)

DECISION_FILE = ".decision.json"

VALID_OUTCOMES = ("approve", "reject")


class ConsoleDecisionProvider:
    """Ask on the terminal; re-ask until the answer is yes or no."""

    def __init__(self, input_fn: Callable[[str], str] = input, output_fn: Callable[[str], None] = print):
        self.input_fn = input_fn
        self.output_fn = output_fn

    def decide(self, gate: str, question: str, artifact_refs: list[str]) -> ApprovalDecision:
        self.output_fn("")
        self.output_fn("==========================================")
        self.output_fn(f"Review required: {gate}")
        self.output_fn("==========================================")
        for ref in artifact_refs:
            self.output_fn(f"  {ref}")
        self.output_fn("")

        while True:
            answer = self.input_fn(f"{question} (y/n): ").strip().lower()
            if answer in ("y", "yes"):
                return ApprovalDecision(gate=gate, outcome="approve", source="console")
            if answer in ("n", "no"):
                feedback = self.input_fn("Reason (optional): ").strip()
                return ApprovalDecision(gate=gate, outcome="reject", feedback=feedback, source="console")
            self.output_fn("Invalid input. Please enter 'y' or 'n'.")


class StaticDecisionProvider:
    """Always returns the same outcome."""

    def __init__(self, outcome: str = "approve", source: str = "auto"):
        if outcome not in VALID_OUTCOMES:
            raise ValueError(f"Invalid outcome: {outcome}")
        self.outcome = outcome
        self.source = source

    def decide(self, gate: str, question: str, artifact_refs: list[str]) -> ApprovalDecision:
        return ApprovalDecision(gate=gate, outcome=self.outcome, source=self.source)


class CallbackDecisionProvider:
    """Delegate to a callable(gate, artifact_refs) -> (outcome, feedback)."""

    def __init__(self, callback: Callable[[str, list[str]], tuple[str, str]], source: str = "callback"):
        self.callback = callback
        self.source = source

    def decide(self, gate: str, question: str, artifact_refs: list[str]) -> ApprovalDecision:
        outcome, feedback = self.callback(gate, artifact_refs)
        return ApprovalDecision(gate=gate, outcome=outcome, feedback=feedback or "", source=self.source)


def write_decision_file(artifacts: ArtifactStore, gate: str, outcome: str, feedback: str = "") -> Path:
    """Persist an out-of-band decision for a later --publish-only run."""
    if gate not in STAGE_FOR_GATE:
        raise ValueError(f"Unknown gate: {gate}")
    data = {
        "gate": gate,
        "outcome": outcome,
        "timestamp": datetime.now().isoformat(),
        "feedback": feedback,
        "source": "cli",
    }
    path = artifacts.ensure_dir(STAGE_FOR_GATE[gate]) / DECISION_FILE
    check_schema(data, "gate-decision")
    path.write_text(json.dumps(data, indent=2))
    return path


class RecordedDecisionProvider:
    """Use the decision file in the gate's stage directory; otherwise defer to fallback.

    The decision file is consumed (deleted) once read so it applies to one
    publish only.
    """

    def __init__(self, artifacts: ArtifactStore, fallback):
        self.artifacts = artifacts
        self.fallback = fallback

    def decide(self, gate: str, question: str, artifact_refs: list[str]) -> ApprovalDecision:
        path = self.artifacts.stage_dir(STAGE_FOR_GATE[gate]) / DECISION_FILE
        if not path.exists():
            return self.fallback.decide(gate, question, artifact_refs)

        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise StageError(gate, f"Unreadable decision file {path}: {e}",
                             details={"path": str(path)}) from None
        path.unlink()

        if data.get("gate") != gate:
            logger.warning(f"Decision file is for gate '{data.get('gate')}', expected '{gate}'; ignoring")
            return self.fallback.decide(gate, question, artifact_refs)

        return ApprovalDecision(
            gate=gate,
            outcome=data.get("outcome", ""),
            timestamp=data.get("timestamp", datetime.now().isoformat()),
            feedback=data.get("feedback", ""),
            source="recorded",
        )


class ResumeDecisionProvider:
    """Answer the gate a run resumes at with one provider, every other gate with another."""

    def __init__(self, gate: str, resume, fallback):
        self.gate = gate
        self.resume = resume
        self.fallback = fallback

    def decide(self, gate: str, question: str, artifact_refs: list[str]) -> ApprovalDecision:
        provider = self.resume if gate == self.gate else self.fallback
        return provider.decide(gate, question, artifact_refs)


class ApprovalGate:
    """Blocks a stage until its artifacts are approved or rejected."""

    def __init__(self, ctx: RunContext, provider, notify: bool = True):
        self.ctx = ctx
        self.provider = provider
        self.notify = notify

    def _record(self, stage: str, gate: str, data: dict) -> Path:
        path = self.ctx.gates_dir / f"{gate}.json"
        check_schema(data, "gate-decision")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
        return path

    def await_decision(self, stage: str, gate: str, artifact_refs: list) -> ApprovalDecision:
        """Block until a decision for `gate` arrives; record and return it."""
        refs = [str(r) for r in artifact_refs]
        question = GATE_QUESTIONS.get(gate, f"Approve {gate}?")

        self.ctx.log(f"Gate {gate}: awaiting decision ({len(refs)} artifact(s))")
        if self.notify:
            notify_awaiting_approval(gate, self.ctx.run_id)

        decision = self.provider.decide(gate, question, refs)
        if decision.outcome not in VALID_OUTCOMES:
            raise StageError(stage, f"Invalid decision '{decision.outcome}' at gate {gate}")

        data = decision.to_dict()
        data["artifacts"] = refs
        path = self._record(stage, gate, data)

        self.ctx.transcript.record_human_input(
            stage, decision.outcome, decision.feedback, gate=gate, source=decision.source,
        )
        self.ctx.transcript.save()
        self.ctx.log(f"Gate {gate}: {decision.outcome} ({decision.source})")
        logger.info(f"Gate {gate}: {decision.outcome} recorded at {path}")
        return decision

    def require_approval(self, stage: str, gate: str, artifact_refs: list) -> ApprovalDecision:
        """await_decision(), raising Rejected unless the outcome is approve."""
        decision = self.await_decision(stage, gate, artifact_refs)
        if not decision.approved:
            raise Rejected(stage, gate, decision.feedback, self.ctx.gates_dir / f"{gate}.json")
        return decision

    def record_pending(self, stage: str, gate: str, artifact_refs: list) -> Path:
        """Record that generation finished and the gate is waiting (--generate-only)."""
        refs = [str(r) for r in artifact_refs]
        path = self._record(stage, gate, {
            "gate": gate,
            "outcome": "pending",
            "timestamp": datetime.now().isoformat(),
            "artifacts": refs,
        })
        if self.notify:
            notify_awaiting_approval(gate, self.ctx.run_id)
        self.ctx.log(f"Gate {gate}: pending approval")
        return path
