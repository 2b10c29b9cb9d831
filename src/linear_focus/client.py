"""Thin client for the Linear GraphQL API."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from linear_focus.ranking import Issue, User

logger = logging.getLogger(__name__)

OPERATION_NAME_RE = re.compile(r"^\s*(?:query|mutation)\s+(\w+)")

EXCLUDED_STATE_NAMES = ["Ready to Deploy", "Done"]

# Linear reports unknown ids as a GraphQL error rather than a null node.
ENTITY_NOT_FOUND = "entity not found"


class LinearApiError(RuntimeError):
    """Raised when the Linear API returns an error."""


class LinearClient:
    """Thin wrapper around the Linear GraphQL API."""

    endpoint = "https://api.linear.app/graphql"

    def __init__(self, token: str, timeout: float = 20):
        self._client = httpx.Client(
            base_url=self.endpoint,
            headers={
                "Authorization": token,
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    def __enter__(self) -> "LinearClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def fetch_focus_batch(
        self, team_key: str | None = None, first: int = 50
    ) -> tuple[User, list[Issue]]:
        """Fetch the viewer and a batch of open issues in a single request."""
        issue_filter: dict[str, Any] = {
            "state": {
                "type": {"nin": ["completed", "canceled"]},
                "name": {"nin": EXCLUDED_STATE_NAMES},
            }
        }
        if team_key:
            issue_filter["team"] = {"key": {"eq": team_key}}

        payload = self._request(
            FOCUS_BATCH_QUERY,
            {"issueFilter": issue_filter, "first": first},
        )
        viewer_node = payload.get("viewer")
        if not viewer_node:
            raise LinearApiError("Linear API did not return the authenticated user.")
        nodes = payload.get("issues", {}).get("nodes", [])
        return User.from_node(viewer_node), [Issue.from_node(node) for node in nodes]

    def fetch_teams(self) -> list[dict[str, Any]]:
        return self._paginate(TEAMS_QUERY, "teams")

    def fetch_issue_for_transition(self, identifier: str) -> dict[str, Any] | None:
        """Fetch an issue with its labels and its team's states and labels."""
        try:
            payload = self._request(
                ISSUE_FOR_TRANSITION_QUERY,
                {"identifier": identifier},
            )
        except LinearApiError as exc:
            if ENTITY_NOT_FOUND in str(exc).lower():
                logger.debug("Issue %s not found: %s", identifier, exc)
                return None
            raise
        return payload.get("issue")

    def fetch_users(self) -> list[User]:
        return [User.from_node(node) for node in self._paginate(USERS_QUERY, "users")]

    def fetch_workspace_labels(self) -> list[dict[str, Any]]:
        return self._paginate(WORKSPACE_LABELS_QUERY, "issueLabels")

    def update_issue(
        self, issue_id: str, update_input: dict[str, Any]
    ) -> dict[str, Any]:
        payload = self._request(
            UPDATE_ISSUE_MUTATION,
            {"id": issue_id, "input": update_input},
        )
        result = payload.get("issueUpdate") or {}
        if not result.get("success"):
            raise LinearApiError(f"Linear API rejected the update of issue {issue_id}.")
        issue = result.get("issue")
        if not issue:  # pragma: no cover - defensive
            raise LinearApiError("Linear API did not return issue data after update.")
        return issue

    def _paginate(
        self, query: str, root: str, page_size: int = 100
    ) -> list[dict[str, Any]]:
        nodes: list[dict[str, Any]] = []
        after_cursor: str | None = None
        while True:
            payload = self._request(query, {"first": page_size, "after": after_cursor})
            connection = payload.get(root, {})
            nodes.extend(connection.get("nodes", []))

            page_info = connection.get("pageInfo", {})
            after_cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not after_cursor:
                return nodes

    def _request(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        match = OPERATION_NAME_RE.match(query)
        logger.debug(
            "API request: %s %s",
            match.group(1) if match else "anonymous",
            json.dumps(variables, sort_keys=True),
        )
        response = self._client.post("", json={"query": query, "variables": variables})
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as exc:
            raise LinearApiError(
                f"Linear API returned a non-JSON response (HTTP {response.status_code})."
            ) from exc
        if "errors" in payload and payload["errors"]:
            message = payload["errors"][0].get("message", "Unknown Linear API error.")
            raise LinearApiError(message)
        return payload.get("data", {})


FOCUS_BATCH_QUERY = """
query FocusBatch($issueFilter: IssueFilter, $first: Int!) {
  viewer {
    id
    name
    email
  }
  issues(first: $first, filter: $issueFilter) {
    nodes {
      id
      identifier
      title
      description
      priority
      url
      createdAt
      updatedAt
      assignee {
        id
        name
      }
      state {
        name
        type
      }
      team {
        key
        name
      }
      labels {
        nodes {
          name
        }
      }
      comments(first: 10) {
        nodes {
          id
          createdAt
          user {
            id
            name
          }
        }
      }
    }
  }
}
""".strip()


TEAMS_QUERY = """
query Teams($first: Int!, $after: String) {
  teams(first: $first, after: $after) {
    nodes {
      id
      key
      name
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""".strip()


ISSUE_FOR_TRANSITION_QUERY = """
query IssueForTransition($identifier: String!) {
  issue(id: $identifier) {
    id
    identifier
    title
    url
    labels {
      nodes {
        id
        name
        parent {
          id
          name
        }
      }
    }
    team {
      id
      key
      name
      states(first: 50) {
        nodes {
          id
          name
          type
        }
      }
      labels(first: 250) {
        nodes {
          id
          name
          parent {
            id
            name
          }
        }
      }
    }
  }
}
""".strip()


USERS_QUERY = """
query Users($first: Int!, $after: String) {
  users(first: $first, after: $after) {
    nodes {
      id
      name
      displayName
      email
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""".strip()


WORKSPACE_LABELS_QUERY = """
query WorkspaceLabels($first: Int!, $after: String) {
  issueLabels(first: $first, after: $after) {
    nodes {
      id
      name
      parent {
        id
        name
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
""".strip()


UPDATE_ISSUE_MUTATION = """
mutation IssueUpdate($id: String!, $input: IssueUpdateInput!) {
  issueUpdate(id: $id, input: $input) {
    success
    issue {
      id
      identifier
      url
      state {
        name
      }
      assignee {
        name
      }
      labels {
        nodes {
          name
        }
      }
    }
  }
}
""".strip()
