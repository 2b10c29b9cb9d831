"""Core operations for linear-focus: focus list, teams and the done transition."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from linear_focus import config as config_module
from linear_focus.client import LinearClient
from linear_focus.config import CliConfig
from linear_focus.ranking import DEFAULT_LIMIT, DEFAULT_WINDOW, Issue, User, rank_issues
from linear_focus.transition import TransitionError, TransitionPlan, plan_transition

logger = logging.getLogger(__name__)

TOKEN_ENV = "LINEAR_API_KEY"
FOCUS_BATCH_SIZE = 50


class MissingCredentialError(RuntimeError):
    """Raised when no Linear API key is available."""


def require_token() -> str:
    token = os.environ.get(TOKEN_ENV, "").strip()
    if not token:
        raise MissingCredentialError(
            f"{TOKEN_ENV} environment variable is not set. "
            "Create a personal API key at https://linear.app/settings/api."
        )
    return token


@dataclass
class FocusResult:
    viewer: User
    team_key: str | None
    issues: list[Issue]


def run_focus(
    settings: CliConfig,
    team: str | None = None,
    limit: int = DEFAULT_LIMIT,
    window: timedelta = DEFAULT_WINDOW,
    include_unassigned: bool = False,
    include_recent: bool = False,
) -> FocusResult:
    """Fetch open issues and rank the ones the viewer should look at next."""
    token = require_token()
    team_key = team or settings.default_team

    with LinearClient(token=token) as client:
        viewer, issues = client.fetch_focus_batch(team_key, first=FOCUS_BATCH_SIZE)

    logger.debug("Fetched %d issue(s) for viewer %s", len(issues), viewer.name)
    focused = rank_issues(
        issues,
        viewer.id,
        window=window,
        include_unassigned=include_unassigned,
        include_recent=include_recent,
        limit=limit,
    )
    return FocusResult(viewer=viewer, team_key=team_key, issues=focused)


def run_teams(settings: CliConfig) -> list[dict[str, Any]]:
    """List workspace teams, flagging the configured default."""
    token = require_token()
    with LinearClient(token=token) as client:
        teams = client.fetch_teams()
    return [
        {
            "key": team["key"],
            "name": team["name"],
            "id": team["id"],
            "isDefault": team["key"] == settings.default_team,
        }
        for team in teams
    ]


def run_set_default_team(team_key: str) -> dict[str, Any]:
    """Verify ``team_key`` exists and save it as the default team."""
    token = require_token()
    with LinearClient(token=token) as client:
        teams = client.fetch_teams()

    team = next((item for item in teams if item["key"] == team_key), None)
    if team is None:
        options = ", ".join(f"{item['key']} ({item['name']})" for item in teams)
        raise RuntimeError(
            f"Team with key '{team_key}' not found. Available teams: {options or 'none'}."
        )

    path = config_module.save_default_team(team_key)
    logger.debug("Saved default team %s to %s", team_key, path)
    return team


def run_done(
    settings: CliConfig,
    identifier: str,
    environment: str | None = None,
    reviewer: str | None = None,
    dry_run: bool = False,
) -> tuple[TransitionPlan, dict[str, Any] | None]:
    """Hand ``identifier`` over for review in the target environment.

    Returns the resolved plan and the updated issue (``None`` on dry runs).
    """
    target = environment or settings.deploy_target
    if not target:
        raise TransitionError(
            "No environment given. Pass --env or set deployTarget in .linear.toml."
        )
    reviewer_query = reviewer or settings.reviewer
    if not reviewer_query:
        raise TransitionError(
            "No reviewer given. Pass --reviewer or set reviewer in the config file."
        )

    token = require_token()
    with LinearClient(token=token) as client:
        issue = client.fetch_issue_for_transition(identifier)
        if not issue:
            raise TransitionError(f"Issue '{identifier}' not found.")

        users = client.fetch_users()
        workspace_labels = client.fetch_workspace_labels()
        plan = plan_transition(issue, users, workspace_labels, reviewer_query, target)

        if dry_run:
            return plan, None

        updated = client.update_issue(plan.issue_id, plan.update_input())
    return plan, updated
