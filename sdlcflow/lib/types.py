"""Shared data types for sdlcflow."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class IssueType(Enum):
    """Tracker issue kinds the pipeline understands."""
    EPIC = "Epic"
    STORY = "Story"


@dataclass(frozen=True)
class WorkItem:
    """An Epic or Story held by the issue tracker."""
    kind: str  # IssueType value as reported by the tracker ("Epic", "Story", "Bug", ...)
    key: str
    title: str
    description: str = ""
    priority: str | None = None
    parent: str | None = None  # Parent issue key
    url: str = ""

    @property
    def is_epic(self) -> bool:
        return self.kind == IssueType.EPIC.value

    @property
    def is_story(self) -> bool:
        return self.kind == IssueType.STORY.value


@dataclass(frozen=True)
class PullRequest:
    """A pull request on the code host."""
    number: int | None
    url: str
    head: str
    base: str


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of one traversal of an approval gate."""
    gate: str
    outcome: str  # "approve" or "reject"
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    feedback: str = ""
    source: str = "console"

    @property
    def approved(self) -> bool:
        return self.outcome == "approve"

    def to_dict(self) -> dict:
        return {
            "gate": self.gate,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
            "feedback": self.feedback,
            "source": self.source,
        }
