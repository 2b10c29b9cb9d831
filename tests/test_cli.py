"""Tests for CLI functionality."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator
from unittest.mock import Mock, patch

import httpx
import pytest

from linear_focus.cli import (
    _format_priority,
    _format_relative_time,
    _render_focus,
    _strip_ansi,
    build_parser,
    main,
)
from linear_focus.client import LinearApiError
from linear_focus.config import CliConfig
from linear_focus.operations import FocusResult, MissingCredentialError
from linear_focus.ranking import DEFAULT_WINDOW, Issue, User
from linear_focus.transition import TransitionError, TransitionPlan

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
VIEWER = User(id="viewer", name="Viewer")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("LINEAR_CLI_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("LINEAR_API_KEY", "test-token")
    monkeypatch.chdir(tmp_path)
    yield
    package_logger = logging.getLogger("linear_focus")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


def _issue(identifier: str, **kwargs) -> Issue:
    kwargs.setdefault("title", f"Issue {identifier}")
    kwargs.setdefault("url", f"https://linear.app/issue/{identifier}")
    return Issue(id=f"id-{identifier}", identifier=identifier, **kwargs)


class TestCliParser:
    """Test CLI argument parsing."""

    def test_parser_defaults(self) -> None:
        args = build_parser().parse_args([])
        assert args.command is None
        assert args.format == "table"
        assert args.limit == 2
        assert args.team is None
        assert args.include_recent is False
        assert args.backlog is False
        assert args.window_hours == timedelta(hours=2)
        assert args.window_hours is DEFAULT_WINDOW
        assert args.verbose is False

    def test_parser_focus_flags(self) -> None:
        args = build_parser().parse_args(
            ["-f", "json", "-l", "5", "-t", "ENG", "--include-recent", "--backlog",
             "--window-hours", "4", "-v"]
        )
        assert args.format == "json"
        assert args.limit == 5
        assert args.team == "ENG"
        assert args.include_recent is True
        assert args.backlog is True
        assert args.window_hours == timedelta(hours=4)
        assert args.verbose is True

    def test_parser_rejects_bad_window(self) -> None:
        with pytest.raises(SystemExit) as excinfo:
            build_parser().parse_args(["--window-hours", "0"])
        assert excinfo.value.code == 2

    def test_parser_teams_subcommand(self) -> None:
        args = build_parser().parse_args(["teams", "--set-default", "ENG", "-f", "json"])
        assert args.command == "teams"
        assert args.set_default == "ENG"
        assert args.format == "json"

    def test_parser_global_verbose_survives_subcommand(self) -> None:
        args = build_parser().parse_args(["-v", "teams"])
        assert args.verbose is True
        assert args.format == "table"

    def test_parser_done_subcommand(self) -> None:
        args = build_parser().parse_args(
            ["done", "ENG-42", "--env", "production", "-r", "alice", "--dry-run"]
        )
        assert args.command == "done"
        assert args.identifier == "ENG-42"
        assert args.env == "production"
        assert args.reviewer == "alice"
        assert args.dry_run is True


class TestFormatting:
    """Test terminal formatting helpers."""

    def test_priority_names(self) -> None:
        assert [_format_priority(p) for p in (None, 0, 1, 2, 3, 4, 9)] == [
            "None", "None", "Urgent", "High", "Medium", "Low", "Unknown",
        ]

    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(seconds=20), "Just now"),
            (timedelta(minutes=1), "1 min ago"),
            (timedelta(minutes=45), "45 mins ago"),
            (timedelta(hours=3), "3 hours ago"),
            (timedelta(days=2), "2 days ago"),
            (timedelta(days=30), "2024-04-01"),
        ],
    )
    def test_relative_time(self, delta: timedelta, expected: str) -> None:
        assert _strip_ansi(_format_relative_time(NOW - delta, NOW)) == expected

    def test_relative_time_missing(self) -> None:
        assert _strip_ansi(_format_relative_time(None)) == "N/A"

    def test_render_focus_empty(self) -> None:
        assert "All caught up" in _strip_ansi(_render_focus([]))

    def test_render_focus_details(self) -> None:
        issue = _issue(
            "ENG-1",
            priority=1,
            status="In Review",
            team="Engineering",
            labels=["Bug", "Backend"],
            description="x" * 150,
            is_assigned_to_me=True,
            last_comment_time=NOW - timedelta(hours=5),
        )
        unassigned = _issue("ENG-2", status=None)

        out = _strip_ansi(_render_focus([issue, unassigned], now=NOW))

        assert "1. [ENG-1] Issue ENG-1 [YOURS]" in out
        assert "Priority: Urgent" in out
        assert "Status: In Review" in out
        assert "Last activity: 5 hours ago" in out
        assert "Labels: Bug, Backend" in out
        assert "URL: https://linear.app/issue/ENG-1" in out
        assert f"Description: {'x' * 100}..." in out
        assert "2. [ENG-2] Issue ENG-2 [UNASSIGNED]" in out
        assert "Status: Unknown" in out


class TestCliMain:
    """Test main CLI entry point."""

    @patch("linear_focus.cli.run_focus")
    def test_main_default_command_table(
        self, mock_run_focus: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_run_focus.return_value = FocusResult(
            viewer=VIEWER,
            team_key="ENG",
            issues=[_issue("ENG-7", priority=2, is_assigned_to_me=True)],
        )

        result = main(["--team", "ENG", "--limit", "3", "--backlog"])

        assert result == 0
        kwargs = mock_run_focus.call_args[1]
        assert kwargs["team"] == "ENG"
        assert kwargs["limit"] == 3
        assert kwargs["include_unassigned"] is True
        assert kwargs["include_recent"] is False
        out = _strip_ansi(capsys.readouterr().out)
        assert "Checking priority issues for team: ENG..." in out
        assert "[ENG-7]" in out

    @patch("linear_focus.cli.run_focus")
    def test_main_default_command_json(
        self, mock_run_focus: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_run_focus.return_value = FocusResult(
            viewer=VIEWER, team_key=None, issues=[_issue("ENG-7", priority=2)]
        )

        result = main(["--format", "json"])

        assert result == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload[0]["identifier"] == "ENG-7"
        assert payload[0]["priority"] == 2

    @patch("linear_focus.cli.run_focus")
    def test_main_uses_config_default_team(
        self, mock_run_focus: Mock, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        (tmp_path / "config.json").write_text('{"defaultTeam": "OPS"}', encoding="utf-8")
        mock_run_focus.return_value = FocusResult(viewer=VIEWER, team_key="OPS", issues=[])

        assert main([]) == 0

        settings = mock_run_focus.call_args[0][0]
        assert isinstance(settings, CliConfig)
        assert settings.default_team == "OPS"
        assert "team: OPS" in capsys.readouterr().out

    def test_main_missing_token(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.delenv("LINEAR_API_KEY")

        with patch("linear_focus.operations.LinearClient") as client_cls:
            result = main([])

        assert result == 1
        client_cls.assert_not_called()
        assert "LINEAR_API_KEY" in capsys.readouterr().err

    @patch("linear_focus.cli.run_focus")
    def test_main_unauthorized_prints_hint(
        self, mock_run_focus: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        request = httpx.Request("POST", "https://api.linear.app/graphql")
        response = httpx.Response(401, request=request)
        mock_run_focus.side_effect = httpx.HTTPStatusError(
            "401 Unauthorized", request=request, response=response
        )

        result = main([])

        assert result == 1
        err = _strip_ansi(capsys.readouterr().err)
        assert "Linear API request failed" in err
        assert "API key might be invalid" in err

    @patch("linear_focus.cli.run_focus")
    def test_main_api_error_without_hint(
        self, mock_run_focus: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_run_focus.side_effect = LinearApiError("Rate limited")

        assert main([]) == 1
        err = capsys.readouterr().err
        assert "Rate limited" in err
        assert "API key might be invalid" not in err

    @patch("linear_focus.cli.run_teams")
    def test_main_teams_table(
        self, mock_run_teams: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_run_teams.return_value = [
            {"key": "ENG", "name": "Engineering", "id": "t1", "isDefault": False},
        ]

        assert main(["teams"]) == 0
        out = _strip_ansi(capsys.readouterr().out)
        assert "[ENG] Engineering" in out
        assert "No default team set" in out

    @patch("linear_focus.cli.run_teams")
    def test_main_teams_json(
        self, mock_run_teams: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        teams = [{"key": "ENG", "name": "Engineering", "id": "t1", "isDefault": True}]
        mock_run_teams.return_value = teams

        assert main(["teams", "--format", "json"]) == 0
        assert json.loads(capsys.readouterr().out) == teams

    @patch("linear_focus.cli.run_set_default_team")
    def test_main_teams_set_default(
        self, mock_set_default: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_set_default.return_value = {"id": "t1", "key": "ENG", "name": "Engineering"}

        assert main(["teams", "--set-default", "ENG"]) == 0
        mock_set_default.assert_called_once_with("ENG")
        assert "Default team set to: Engineering [ENG]" in capsys.readouterr().out

    @patch("linear_focus.cli.run_set_default_team")
    def test_main_teams_set_default_unknown(
        self, mock_set_default: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_set_default.side_effect = RuntimeError("Team with key 'NOPE' not found.")

        assert main(["teams", "-s", "NOPE"]) == 1
        assert "Team with key 'NOPE' not found." in capsys.readouterr().err

    @patch("linear_focus.cli.run_done")
    def test_main_done_success(
        self, mock_run_done: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        plan = TransitionPlan(
            issue_id="issue-1",
            identifier="ENG-42",
            url="https://linear.app/issue/ENG-42",
            reviewer=User(id="user-1", name="Alice Smith"),
            state={"id": "state-review", "name": "In Review"},
            env_label={"id": "label-production", "name": "production"},
            label_ids=["label-production"],
            removed_labels=["staging"],
        )
        mock_run_done.return_value = (plan, {"id": "issue-1"})

        assert main(["done", "ENG-42", "--env", "production"]) == 0

        assert mock_run_done.call_args[1]["environment"] == "production"
        out = _strip_ansi(capsys.readouterr().out)
        assert "ENG-42 is ready for review" in out
        assert "Reviewer: Alice Smith" in out
        assert "Replaced labels: staging" in out

    @patch("linear_focus.cli.run_done")
    def test_main_done_failure(
        self, mock_run_done: Mock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mock_run_done.side_effect = TransitionError("Environment label 'qa' not found.")

        assert main(["done", "ENG-42", "--env", "qa"]) == 1
        assert "Environment label 'qa' not found." in capsys.readouterr().err

    @patch("linear_focus.cli.run_focus")
    def test_main_verbose_enables_debug_logging(self, mock_run_focus: Mock) -> None:
        mock_run_focus.return_value = FocusResult(viewer=VIEWER, team_key=None, issues=[])

        main(["-v"])

        assert logging.getLogger("linear_focus").level == logging.DEBUG

    def test_main_credential_error_type(self) -> None:
        assert issubclass(MissingCredentialError, RuntimeError)
