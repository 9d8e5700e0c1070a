"""
JIRA issue tracker client (REST API v3).

Creates Epics and Stories, fetches issues, and verifies issue types for the
story -> epic lineage checks. All failures surface as TrackerError; httpx
exceptions never escape this module.
"""

import logging
from base64 import b64encode
from typing import Any

import httpx

from sdlcflow.lib.constants import DEFAULT_STORY_PRIORITY, MAX_SUMMARY_LEN
from sdlcflow.lib.types import IssueType, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class TrackerError(Exception):
    """A tracker call failed (network, auth, not found, rejected payload)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class IssueNotFound(TrackerError):
    """The requested issue does not exist or is not visible."""
    pass


def text_to_adf(text: str) -> dict:
    """Convert plain text / light markdown to Atlassian Document Format.

    Blank lines separate paragraphs; single newlines become hard breaks.
    """
    paragraphs = []
    for block in text.strip().split("\n\n"):
        lines = [line.rstrip() for line in block.strip().splitlines() if line.strip()]
        if not lines:
            continue
        content: list[dict] = []
        for i, line in enumerate(lines):
            if i:
                content.append({"type": "hardBreak"})
            content.append({"type": "text", "text": line})
        paragraphs.append({"type": "paragraph", "content": content})

    if not paragraphs:
        paragraphs = [{"type": "paragraph", "content": []}]
    return {"type": "doc", "version": 1, "content": paragraphs}


def adf_to_text(node: Any) -> str:
    """Convert Atlassian Document Format to plain text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if not isinstance(node, dict):
        return ""

    node_type = node.get("type", "")
    if node_type == "text":
        return node.get("text", "")
    if node_type == "hardBreak":
        return "\n"

    children = "".join(adf_to_text(child) for child in node.get("content", []))
    if node_type in ("paragraph", "heading", "listItem", "codeBlock", "blockquote"):
        return children.rstrip("\n") + "\n"
    if node_type == "doc":
        return children.strip()
    return children


def _clean_summary(title: str) -> str:
    summary = " ".join(title.replace("`", "").split())
    return summary[:MAX_SUMMARY_LEN]


class JiraClient:
    """Client for the JIRA REST API.

    Usage:
        client = JiraClient(base_url, email, token, project_key)
        epic_key = client.create_epic("Checkout revamp", "As a shopper ...")
        story = client.get_issue("PROJ-12")
    """

    def __init__(
        self,
        base_url: str,
        email: str,
        api_token: str,
        project_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Args:
            base_url: JIRA instance URL (e.g., https://company.atlassian.net)
            email: Account email
            api_token: API token
            project_key: Project new issues are created in
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not all([base_url, email, api_token]):
            raise ValueError("JIRA base URL, email and API token are required")

        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/rest/api/3"
        self.project_key = project_key
        self.timeout = timeout
        self._transport = transport

        credentials = f"{email}:{api_token}"
        auth_bytes = b64encode(credentials.encode()).decode()
        self._headers = {
            "Authorization": f"Basic {auth_bytes}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_config(cls, config) -> "JiraClient":
        """Build a client from a PipelineConfig."""
        config.require_jira()
        return cls(
            base_url=config.jira_base_url,
            email=config.jira_email,
            api_token=config.jira_token,
            project_key=config.jira_project_key,
        )

    def browse_url(self, key: str) -> str:
        return f"{self.base_url}/browse/{key}"

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        url = f"{self.api_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(method, url, headers=self._headers, json=payload)
        except httpx.RequestError as e:
            raise TrackerError(f"Failed to connect to JIRA: {e}") from e

        if response.status_code == 404:
            raise IssueNotFound(f"Not found: {path}", status_code=404)
        if response.status_code in (401, 403):
            raise TrackerError(
                "JIRA authentication failed. Check JIRA_EMAIL and JIRA_TOKEN.",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise TrackerError(
                f"JIRA API error: {response.status_code} - {_error_text(response)}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TrackerError(f"Invalid JSON from JIRA for {path}") from e

    # Connectivity

    def test_connection(self) -> str:
        """Return the authenticated user's display name."""
        data = self._request("GET", "/myself")
        name = data.get("displayName")
        if not name:
            raise TrackerError("JIRA connection failed: no user in response")
        return name

    def get_project(self, project_key: str | None = None) -> str:
        """Return the project's name; raises if it cannot be accessed."""
        key = project_key or self.project_key
        try:
            data = self._request("GET", f"/project/{key}")
        except IssueNotFound:
            raise TrackerError(f"Project not found: {key}", status_code=404) from None
        return data.get("name", key)

    # Issue creation

    def _create_issue(self, fields: dict) -> str:
        data = self._request("POST", "/issue", {"fields": fields})
        key = data.get("key")
        if not key:
            raise TrackerError(f"Issue creation returned no key: {data}")
        return key

    def create_epic(self, title: str, description: str) -> str:
        """Create an Epic and return its key."""
        key = self._create_issue({
            "project": {"key": self.project_key},
            "summary": _clean_summary(title),
            "description": text_to_adf(description),
            "issuetype": {"name": IssueType.EPIC.value},
        })
        logger.info(f"Created epic {key}")
        return key

    def create_story(
        self,
        title: str,
        description: str,
        parent_key: str | None = None,
        priority: str = DEFAULT_STORY_PRIORITY,
    ) -> str:
        """Create a Story (optionally under an Epic) and return its key."""
        fields = {
            "project": {"key": self.project_key},
            "summary": _clean_summary(title),
            "description": text_to_adf(description),
            "issuetype": {"name": IssueType.STORY.value},
            "priority": {"name": priority or DEFAULT_STORY_PRIORITY},
        }
        if parent_key:
            fields["parent"] = {"key": parent_key}
        key = self._create_issue(fields)
        logger.info(f"Created story {key}" + (f" under {parent_key}" if parent_key else ""))
        return key

    # Lookup

    def get_issue(self, key: str) -> WorkItem:
        """Fetch an issue and normalise it to a WorkItem."""
        data = self._request("GET", f"/issue/{key}")
        fields = data.get("fields", {})
        parent = fields.get("parent") or {}
        priority = fields.get("priority") or {}
        return WorkItem(
            kind=(fields.get("issuetype") or {}).get("name", ""),
            key=data.get("key", key),
            title=fields.get("summary", ""),
            description=adf_to_text(fields.get("description")),
            priority=priority.get("name"),
            parent=parent.get("key"),
            url=self.browse_url(data.get("key", key)),
        )

    def verify_type(self, key: str, expected: IssueType) -> bool:
        """Check that an issue exists and is of the expected type."""
        item = self.get_issue(key)
        if not item.kind:
            raise TrackerError(f"Could not determine issue type for '{key}'")
        if item.kind != expected.value:
            logger.warning(f"Issue '{key}' is of type '{item.kind}', expected '{expected.value}'")
            return False
        logger.debug(f"Verified: {key} is a {expected.value}")
        return True


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    messages = list(data.get("errorMessages") or [])
    messages += [f"{k}: {v}" for k, v in (data.get("errors") or {}).items()]
    return "; ".join(messages) or response.text[:500]
