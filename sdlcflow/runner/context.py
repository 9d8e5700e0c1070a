"""
Run context and directory management for sdlcflow.

A run is one CLI invocation: a single stage command or the whole pipeline.
Its audit trail lives in <workspace>/sdlc-artifacts/runs/<run_id>/.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from sdlcflow.lib.config import PipelineConfig
from sdlcflow.lib.constants import RUNS_DIR
from sdlcflow.runner.artifacts import ArtifactStore, check_schema
from sdlcflow.stages.transcript import Transcript


@dataclass
class RunContext:
    """Context for a single run."""
    run_id: str
    run_dir: Path
    config: PipelineConfig
    artifacts: ArtifactStore
    transcript: Transcript
    verbose: bool = False
    start_time: datetime = field(default_factory=datetime.now)
    stages: dict = field(default_factory=dict)
    # Values handed from one stage to the next (story key, PR, created issues)
    outputs: dict = field(default_factory=dict)

    @classmethod
    def create(cls, config: PipelineConfig, label: str = "pipeline",
               verbose: bool = False) -> 'RunContext':
        """Create a new run context with fresh run directory."""
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        run_id = f"{timestamp}_{label}_{uuid.uuid4().hex[:6]}"

        run_dir = config.artifacts_root / RUNS_DIR / run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        (run_dir / "gates").mkdir(exist_ok=True)

        return cls(
            run_id=run_id,
            run_dir=run_dir,
            config=config,
            artifacts=ArtifactStore(config.artifacts_root),
            transcript=Transcript(run_dir),
            verbose=verbose,
        )

    @property
    def workspace(self) -> Path:
        return self.config.workspace_root

    @property
    def gates_dir(self) -> Path:
        return self.run_dir / "gates"

    def log(self, message: str):
        """Append to run log."""
        timestamp = datetime.now().isoformat()
        with open(self.run_dir / "run.log", "a") as f:
            f.write(f"[{timestamp}] {message}\n")
        if self.verbose:
            print(message)

    def log_command(self, cmd: list[str], exit_code: int, duration: float):
        """Log a command execution to commands.log."""
        timestamp = datetime.now().isoformat()
        with open(self.run_dir / "commands.log", "a") as f:
            f.write(f"[{timestamp}] exit={exit_code} duration={duration:.2f}s\n")
            f.write(f"  $ {' '.join(cmd)}\n\n")

    def record_stage(self, stage: str, status: str, duration: float, notes: str = ""):
        """Record stage result."""
        self.stages[stage] = {
            "status": status,
            "duration_seconds": duration,
            "notes": notes,
        }

    def write_result(
        self,
        status: str,
        failed_stage: Optional[str] = None,
        error_category: Optional[str] = None,
        diagnostic_path: Optional[str] = None,
    ) -> Path:
        """Write result.json (validated) and flush the transcript."""
        end_time = datetime.now()
        result = {
            "version": 1,
            "run_id": self.run_id,
            "workspace": str(self.workspace),
            "status": status,
            "timestamps": {
                "started": self.start_time.isoformat(),
                "ended": end_time.isoformat(),
                "duration_seconds": (end_time - self.start_time).total_seconds(),
            },
            "stages": self.stages,
        }
        if failed_stage:
            result["failed_stage"] = failed_stage
        if error_category:
            result["error_category"] = error_category
        if diagnostic_path:
            result["diagnostic_path"] = diagnostic_path

        result_path = self.run_dir / "result.json"
        check_schema(result, "result")
        result_path.write_text(json.dumps(result, indent=2))
        self.transcript.save()
        return result_path
