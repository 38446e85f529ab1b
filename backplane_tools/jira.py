"""Access to JIRA issues, with lookups restricted to the OHSS project."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

JIRA_OHSS_PROJECT_KEY = "OHSS"
CUSTOM_FIELD_CLUSTER_ID = "customfield_12316349"


@dataclass
class JiraIssue:
    """A JIRA issue as returned by the REST API; fields stays None when the API sent none."""

    id: str = ""
    key: str = ""
    self_link: str = ""
    fields: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JiraIssue:
        return cls(
            id=data.get("id", ""),
            key=data.get("key", ""),
            self_link=data.get("self", ""),
            fields=data.get("fields"),
        )

    @property
    def project_key(self) -> str:
        project = (self.fields or {}).get("project") or {}
        return project.get("key", "")

    @property
    def summary(self) -> str:
        return (self.fields or {}).get("summary", "")


@dataclass
class OHSSIssue:
    """An OHSS ticket reduced to what the tools need."""

    id: str = ""
    key: str = ""
    title: str = ""
    project_key: str = ""
    web_url: str = ""
    cluster_id: str = ""


class IssueService(Protocol):
    def create(self, issue: JiraIssue) -> JiraIssue: ...
    def get(self, issue_id: str, options: dict[str, Any] | None = None) -> JiraIssue | None: ...
    def update(self, issue: JiraIssue) -> JiraIssue: ...
    def get_transitions(self, issue_id: str) -> list[Any]: ...
    def do_transition(self, ticket_id: str, transition_id: str) -> Any: ...


def format_issue(issue: JiraIssue) -> OHSSIssue:
    """Reduce a JIRA issue to an OHSS issue with a browsable URL."""
    result = OHSSIssue(id=issue.id, key=issue.key)
    if issue.fields is not None:
        if CUSTOM_FIELD_CLUSTER_ID in issue.fields:
            result.cluster_id = str(issue.fields[CUSTOM_FIELD_CLUSTER_ID])
        result.project_key = issue.project_key
        result.title = issue.summary
    if issue.self_link:
        end = issue.self_link.find(".com")
        base = issue.self_link[: end + len(".com")] if end >= 0 else issue.self_link
        result.web_url = f"{base}/browse/{issue.key}"
    return result


class OHSSService:
    """Looks up issues that belong to the OHSS project."""

    def __init__(self, issue_service: IssueService) -> None:
        self.issue_service = issue_service

    def get_issue(self, issue_id: str) -> OHSSIssue:
        """Return the OHSS issue with the given ID; raise if it is missing or in another project."""
        if not issue_id:
            raise ValueError("empty issue Id")
        issue = self.issue_service.get(issue_id, None)
        if issue is None:
            raise LookupError(f"no matching issue for issueID:{issue_id}")
        if issue.fields is not None and issue.project_key != JIRA_OHSS_PROJECT_KEY:
            raise ValueError(f"issue {issue_id} is not belongs to OHSS project")
        return format_issue(issue)


class IssueServiceDecorator:
    """Forwards every call to the issue service obtained from the getter at call time."""

    def __init__(self, getter: Callable[[], IssueService]) -> None:
        self.getter = getter

    def create(self, issue: JiraIssue) -> JiraIssue:
        return self.getter().create(issue)

    def get(self, issue_id: str, options: dict[str, Any] | None = None) -> JiraIssue | None:
        return self.getter().get(issue_id, options)

    def update(self, issue: JiraIssue) -> JiraIssue:
        return self.getter().update(issue)

    def get_transitions(self, issue_id: str) -> list[Any]:
        return self.getter().get_transitions(issue_id)

    def do_transition(self, ticket_id: str, transition_id: str) -> Any:
        return self.getter().do_transition(ticket_id, transition_id)