"""Transcript/observability infrastructure for sdlcflow.

Note: Stage execution types (StageError, StageResult, the error taxonomy) are
in sdlcflow.runner.stages. This module records agent/human exchanges during
runs.
"""

from sdlcflow.stages.transcript import (
    Transcript,
    TranscriptEntry,
    Actor,
)

__all__ = [
    "Transcript",
    "TranscriptEntry",
    "Actor",
]
