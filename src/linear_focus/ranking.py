"""Issue records and the filter/sort that picks what needs attention next."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

EXCLUDED_STATE_TYPES = frozenset({"completed", "canceled"})

STATUS_WEIGHTS: dict[str, int] = {
    "In Review": 1,
    "In Progress": 2,
    "Todo": 3,
    "Backlog": 4,
}
UNKNOWN_STATUS_WEIGHT = 5
NO_PRIORITY_WEIGHT = 5

DEFAULT_WINDOW = timedelta(hours=2)
DEFAULT_LIMIT = 2


@dataclass(frozen=True)
class User:
    """A Linear user (the viewer, an assignee or a comment author)."""

    id: str
    name: str
    email: str | None = None
    display_name: str | None = None

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> "User":
        return cls(
            id=node["id"],
            name=node.get("name") or "",
            email=node.get("email"),
            display_name=node.get("displayName"),
        )


@dataclass(frozen=True)
class Comment:
    author_id: str | None
    created_at: datetime


@dataclass
class Issue:
    """Single issue as fetched from Linear, plus per-run derived fields."""

    id: str
    identifier: str
    title: str
    url: str
    description: str | None = None
    priority: int | None = None
    status: str | None = None
    status_type: str | None = None
    assignee: User | None = None
    team: str | None = None
    labels: list[str] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    is_assigned_to_me: bool = False
    last_comment_time: datetime | None = None

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> "Issue":
        state = node.get("state") or {}
        team = node.get("team") or {}
        assignee = node.get("assignee")
        labels = (node.get("labels") or {}).get("nodes", [])
        comments: list[Comment] = []
        for comment in (node.get("comments") or {}).get("nodes", []):
            user = comment.get("user") or {}
            comments.append(
                Comment(
                    author_id=user.get("id"),
                    created_at=parse_timestamp(comment["createdAt"]),
                )
            )
        return cls(
            id=node["id"],
            identifier=node["identifier"],
            title=node["title"],
            url=node.get("url") or "",
            description=node.get("description"),
            priority=node.get("priority"),
            status=state.get("name"),
            status_type=state.get("type"),
            assignee=User.from_node(assignee) if assignee else None,
            team=team.get("name"),
            labels=[label["name"] for label in labels],
            comments=comments,
        )

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable shape used by ``--format json``."""
        return {
            "id": self.id,
            "identifier": self.identifier,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "assignee": self.assignee.name if self.assignee else None,
            "isAssignedToMe": self.is_assigned_to_me,
            "team": self.team,
            "labels": list(self.labels),
            "url": self.url,
            "lastCommentTime": (
                self.last_comment_time.isoformat() if self.last_comment_time else None
            ),
        }


def parse_timestamp(value: str) -> datetime:
    """Parse a Linear ISO-8601 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def status_weight(status: str | None) -> int:
    return STATUS_WEIGHTS.get(status or "", UNKNOWN_STATUS_WEIGHT)


def priority_weight(priority: int | None) -> int:
    # Linear priorities: 1 urgent .. 4 low, 0 means none.
    if not priority:
        return NO_PRIORITY_WEIGHT
    return priority


def last_comment_time(issue: Issue) -> datetime | None:
    if not issue.comments:
        return None
    return max(comment.created_at for comment in issue.comments)


def has_recent_comment(issue: Issue, viewer_id: str, since: datetime) -> bool:
    return any(
        comment.author_id == viewer_id and comment.created_at > since
        for comment in issue.comments
    )


def _sort_key(issue: Issue) -> tuple[int, int, int]:
    return (
        0 if issue.is_assigned_to_me else 1,
        status_weight(issue.status),
        priority_weight(issue.priority),
    )


def rank_issues(
    issues: Iterable[Issue],
    viewer_id: str,
    *,
    now: datetime | None = None,
    window: timedelta = DEFAULT_WINDOW,
    include_unassigned: bool = False,
    include_recent: bool = False,
    limit: int = DEFAULT_LIMIT,
) -> list[Issue]:
    """Return at most ``limit`` issues the viewer should look at next.

    Issues in a completed or canceled state, issues the viewer commented on
    within ``window``, and issues assigned to someone else are dropped. The
    rest are ordered by assignment to the viewer, then workflow status, then
    priority. The sort is stable, so ties keep their input order.

    Derived fields are computed on copies; the input records are not touched.
    """
    if limit <= 0:
        return []

    current = now or datetime.now(timezone.utc)
    since = current - window

    eligible: list[Issue] = []
    for issue in issues:
        if (issue.status_type or "").lower() in EXCLUDED_STATE_TYPES:
            continue

        if not include_recent and has_recent_comment(issue, viewer_id, since):
            continue

        assigned_to_me = issue.assignee is not None and issue.assignee.id == viewer_id
        if issue.assignee is not None and not assigned_to_me:
            continue
        if issue.assignee is None and not include_unassigned:
            continue

        eligible.append(
            replace(
                issue,
                is_assigned_to_me=assigned_to_me,
                last_comment_time=last_comment_time(issue),
            )
        )

    eligible.sort(key=_sort_key)
    return eligible[:limit]
