"""Resolution and label bookkeeping for marking a ticket done.

Marking a ticket done hands it to a reviewer: the issue is reassigned, moved
to the team's review state and tagged with the environment it ships to. All
lookups are resolved here, without I/O, before any mutation is sent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Sequence, TypeVar

from linear_focus.ranking import User

T = TypeVar("T")

KNOWN_ENVIRONMENTS = ("staging", "production")
REVIEW_STATE_MARKER = "review"


class TransitionError(RuntimeError):
    """Raised when an entity needed for the transition cannot be resolved."""


class Match(ABC, Generic[T]):
    """Outcome of a lookup: ``Found``, ``Ambiguous`` or ``NotFound``."""

    @abstractmethod
    def unwrap(self, what: str) -> T:
        """Return the matched value or raise :class:`TransitionError`."""


@dataclass(frozen=True)
class Found(Match[T]):
    value: T

    def unwrap(self, what: str) -> T:
        return self.value


@dataclass(frozen=True)
class Ambiguous(Match[T]):
    candidates: tuple[str, ...]

    def unwrap(self, what: str) -> T:
        options = ", ".join(self.candidates)
        raise TransitionError(f"{what} is ambiguous. Candidates: {options}.")


@dataclass(frozen=True)
class NotFound(Match[T]):
    def unwrap(self, what: str) -> T:
        raise TransitionError(f"{what} not found.")


def _select(candidates: Sequence[T], describe: Callable[[T], str]) -> Match[T]:
    if not candidates:
        return NotFound()
    if len(candidates) > 1:
        return Ambiguous(tuple(describe(item) for item in candidates))
    return Found(candidates[0])


def _describe_user(user: User) -> str:
    if user.email:
        return f"{user.name} <{user.email}>"
    return user.name


def match_user(users: Sequence[User], query: str) -> Match[User]:
    """Match a user whose name, display name or email contains ``query``."""
    needle = query.strip().lower()
    if not needle:
        return NotFound()
    matches = [
        user
        for user in users
        if any(
            needle in value.lower()
            for value in (user.name, user.display_name, user.email)
            if value
        )
    ]
    return _select(matches, _describe_user)


def match_review_state(states: Sequence[dict[str, Any]]) -> Match[dict[str, Any]]:
    matches = [
        state
        for state in states
        if REVIEW_STATE_MARKER in (state.get("name") or "").lower()
    ]
    return _select(matches, lambda state: state["name"])


def match_label(labels: Sequence[dict[str, Any]], name: str) -> Match[dict[str, Any]]:
    wanted = name.strip().lower()
    matches: list[dict[str, Any]] = []
    seen: set[str] = set()
    for label in labels:
        if (label.get("name") or "").lower() != wanted or label["id"] in seen:
            continue
        seen.add(label["id"])
        matches.append(label)
    return _select(matches, _describe_label)


def _describe_label(label: dict[str, Any]) -> str:
    parent = label.get("parent")
    if parent:
        return f"{parent['name']}/{label['name']}"
    return label["name"]


def compute_label_ids(
    current: Sequence[dict[str, Any]],
    env_label: dict[str, Any],
    environments: Sequence[str] = KNOWN_ENVIRONMENTS,
) -> tuple[list[str], list[str]]:
    """Return ``(label_ids, removed_names)`` after applying ``env_label``.

    Labels sharing the environment label's parent group are replaced. If the
    environment label has no group, labels named after a known environment
    are replaced instead. Other labels keep their order.
    """
    parent = env_label.get("parent")
    parent_id = parent["id"] if parent else None
    known = {env.lower() for env in environments}

    label_ids: list[str] = []
    removed: list[str] = []
    for label in current:
        if label["id"] == env_label["id"]:
            continue
        if parent_id is not None:
            label_parent = label.get("parent")
            conflicting = bool(label_parent) and label_parent["id"] == parent_id
        else:
            conflicting = (label.get("name") or "").lower() in known
        if conflicting:
            removed.append(label["name"])
            continue
        if label["id"] not in label_ids:
            label_ids.append(label["id"])

    label_ids.append(env_label["id"])
    return label_ids, removed


@dataclass
class TransitionPlan:
    """Everything needed for the single ``issueUpdate`` call."""

    issue_id: str
    identifier: str
    url: str
    reviewer: User
    state: dict[str, Any]
    env_label: dict[str, Any]
    label_ids: list[str]
    removed_labels: list[str] = field(default_factory=list)

    def update_input(self) -> dict[str, Any]:
        return {
            "assigneeId": self.reviewer.id,
            "stateId": self.state["id"],
            "labelIds": self.label_ids,
        }


def plan_transition(
    issue: dict[str, Any],
    users: Sequence[User],
    workspace_labels: Sequence[dict[str, Any]],
    reviewer: str,
    environment: str,
) -> TransitionPlan:
    """Resolve reviewer, review state and environment label for ``issue``.

    Raises :class:`TransitionError` naming the first entity that could not be
    resolved unambiguously.
    """
    team = issue.get("team") or {}
    team_key = team.get("key") or "?"

    user = match_user(users, reviewer).unwrap(f"Reviewer matching '{reviewer}'")

    states = (team.get("states") or {}).get("nodes", [])
    state = match_review_state(states).unwrap(
        f"Review workflow state for team {team_key}"
    )

    team_labels = (team.get("labels") or {}).get("nodes", [])
    env_match = match_label(team_labels, environment)
    if isinstance(env_match, NotFound):
        env_match = match_label(workspace_labels, environment)
    env_label = env_match.unwrap(f"Environment label '{environment}'")

    current = (issue.get("labels") or {}).get("nodes", [])
    label_ids, removed = compute_label_ids(current, env_label)

    return TransitionPlan(
        issue_id=issue["id"],
        identifier=issue.get("identifier") or issue["id"],
        url=issue.get("url") or "",
        reviewer=user,
        state=state,
        env_label=env_label,
        label_ids=label_ids,
        removed_labels=removed,
    )
