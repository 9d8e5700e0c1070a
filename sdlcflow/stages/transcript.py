"""Transcript for run observability.

Captures every instruction sent to the coding agent, every agent output,
every test run and every human gate decision during a pipeline run.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path


class Actor(Enum):
    """Who is sending/receiving in an exchange."""
    SYSTEM = "system"      # Orchestrator itself
    AGENT = "agent"        # External coding agent
    HUMAN = "human"        # Reviewer at an approval gate
    TRACKER = "tracker"    # Issue tracker
    TESTS = "tests"        # Test runner


@dataclass
class TranscriptEntry:
    """Single entry in the transcript."""
    timestamp: str
    stage: str
    actor: str           # Actor enum value
    direction: str       # "in" (instruction/input) or "out" (response/output)
    content: str
    files: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class Transcript:
    """
    Captures all exchanges during a run for observability.

    Usage:
        transcript = Transcript(run_dir)
        transcript.record_agent_call("implementation", instruction)
        transcript.record_agent_response("implementation", stdout, files)
        transcript.save()
    """

    def __init__(self, run_dir: Path):
        self.run_dir = run_dir
        self.entries: list[TranscriptEntry] = []
        self._file_path = run_dir / "transcript.json"

    @property
    def path(self) -> Path:
        return self._file_path

    def record(
        self,
        stage: str,
        actor: Actor,
        direction: str,
        content: str,
        files: list[str] | None = None,
        **metadata,
    ) -> None:
        """Record an exchange in the transcript."""
        self.entries.append(TranscriptEntry(
            timestamp=datetime.now().isoformat(),
            stage=stage,
            actor=actor.value,
            direction=direction,
            content=content,
            files=files or [],
            metadata=metadata,
        ))

    def record_stage_start(self, stage: str) -> None:
        self.record(stage, Actor.SYSTEM, "in", f"Starting stage: {stage}")

    def record_stage_end(self, stage: str, status: str, message: str = "") -> None:
        self.record(
            stage, Actor.SYSTEM, "out",
            f"Stage {stage} {status}" + (f": {message}" if message else ""),
            status=status,
        )

    def record_agent_call(self, stage: str, instruction: str, **metadata) -> None:
        """Record an instruction being sent to the agent."""
        self.record(stage, Actor.AGENT, "in", instruction, **metadata)

    def record_agent_response(
        self,
        stage: str,
        response: str,
        files: list[str] | None = None,
        **metadata,
    ) -> None:
        """Record what the agent printed and which files it touched."""
        self.record(stage, Actor.AGENT, "out", response, files, **metadata)

    def record_human_input(self, stage: str, action: str, feedback: str = "", **metadata) -> None:
        """Record a gate decision."""
        content = f"{action}: {feedback}" if feedback else action
        self.record(stage, Actor.HUMAN, "in", content, action=action, **metadata)

    def record_test_run(self, stage: str, attempt: int, passed: bool, output_file: Path) -> None:
        self.record(
            stage, Actor.TESTS, "out",
            f"Attempt {attempt}: {'passed' if passed else 'failed'}",
            [str(output_file)],
            attempt=attempt, passed=passed,
        )

    def save(self) -> None:
        """Save transcript to JSON file."""
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": 1,
            "entries": [e.to_dict() for e in self.entries],
        }
        self._file_path.write_text(json.dumps(data, indent=2))

    def load(self) -> bool:
        """Load existing transcript if present. Returns True if loaded."""
        if not self._file_path.exists():
            return False
        try:
            data = json.loads(self._file_path.read_text())
            self.entries = [TranscriptEntry(**e) for e in data.get("entries", [])]
            return True
        except (json.JSONDecodeError, TypeError):
            return False

    def __len__(self) -> int:
        return len(self.entries)
