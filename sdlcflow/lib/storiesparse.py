"""
Parsers for the epic/stories stage output.

epic.md: the first "# " heading is the epic title; the "## Summary" section
(or, without one, the first 10 lines) is the description.

stories.md: one block per "### STORY-<n>" heading, with a "**Title**:" line,
an optional "**Priority**:" line, and everything else (except blank lines and
"---" separators) forming the description.
"""

import logging
import re
from dataclasses import dataclass

from sdlcflow.lib.constants import DEFAULT_STORY_PRIORITY, MAX_EPIC_DESCRIPTION_LEN

logger = logging.getLogger(__name__)

EPIC_TITLE_RE = re.compile(r'^#\s+(.+?)\s*$')
SECTION_RE = re.compile(r'^##\s+(.+?)\s*$')
STORY_HEADING_RE = re.compile(r'^###\s+(STORY-[A-Za-z0-9_-]+)\s*:?\s*(.*?)\s*$')
TITLE_RE = re.compile(r'^\*\*Title\*\*:\s*(.+?)\s*$')
PRIORITY_RE = re.compile(r'^\*\*Priority\*\*:\s*(\w+)')
SEPARATOR_RE = re.compile(r'^-{3,}\s*$')

VALID_PRIORITIES = {"Highest", "High", "Medium", "Low", "Lowest"}


@dataclass
class EpicDraft:
    title: str
    description: str


@dataclass
class StoryDraft:
    id: str  # Local identifier from stories.md, e.g. STORY-3
    title: str
    description: str
    priority: str = DEFAULT_STORY_PRIORITY
    line_number: int = 0

    @property
    def summary(self) -> str:
        """Tracker summary: '<STORY-ID>: <title>'."""
        return f"{self.id}: {self.title}"


def parse_epic(text: str) -> EpicDraft:
    """Parse epic.md content.

    Raises:
        ValueError: if there is no '# ' title heading
    """
    lines = text.splitlines()
    title = None
    for line in lines:
        match = EPIC_TITLE_RE.match(line)
        if match:
            title = match.group(1)
            break
    if not title:
        raise ValueError("epic.md has no '# <title>' heading")

    summary_lines: list[str] = []
    in_summary = False
    for line in lines:
        section = SECTION_RE.match(line)
        if section:
            if in_summary:
                break
            in_summary = section.group(1).lower() == "summary"
            continue
        if in_summary and line.strip():
            summary_lines.append(line.strip())

    if not summary_lines:
        summary_lines = [line.strip() for line in lines[:10] if line.strip()]

    description = " ".join(summary_lines)[:MAX_EPIC_DESCRIPTION_LEN]
    return EpicDraft(title=title, description=description)


def parse_stories(text: str) -> list[StoryDraft]:
    """Parse stories.md content. Blocks without a title are skipped with a warning."""
    stories: list[StoryDraft] = []
    current: dict | None = None

    def flush():
        if current is None:
            return
        if not current["title"]:
            logger.warning(f"Skipping {current['id']} (line {current['line']}): no **Title** line")
            return
        stories.append(StoryDraft(
            id=current["id"],
            title=current["title"],
            description="\n".join(current["desc"]),
            priority=current["priority"],
            line_number=current["line"],
        ))

    for lineno, line in enumerate(text.splitlines(), 1):
        heading = STORY_HEADING_RE.match(line)
        if heading:
            flush()
            current = {
                "id": heading.group(1),
                "title": heading.group(2),
                "priority": DEFAULT_STORY_PRIORITY,
                "desc": [],
                "line": lineno,
            }
            continue
        if current is None:
            continue

        title = TITLE_RE.match(line)
        if title:
            current["title"] = title.group(1)
            continue

        priority = PRIORITY_RE.match(line)
        if priority:
            value = priority.group(1).capitalize()
            if value in VALID_PRIORITIES:
                current["priority"] = value
            else:
                logger.warning(f"{current['id']}: unknown priority '{priority.group(1)}', using default")
            continue

        if SEPARATOR_RE.match(line) or not line.strip():
            continue
        current["desc"].append(line.rstrip())

    flush()
    return stories
