"""Command line entrypoints for linear-focus."""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from colorama import Fore, Style, init
from dotenv import find_dotenv, load_dotenv

from linear_focus.client import LinearApiError
from linear_focus.config import CliConfig, load_config
from linear_focus.operations import (
    FocusResult,
    MissingCredentialError,
    run_done,
    run_focus,
    run_set_default_team,
    run_teams,
)
from linear_focus.ranking import DEFAULT_LIMIT, DEFAULT_WINDOW, Issue
from linear_focus.transition import TransitionPlan

# Initialize colorama
init(autoreset=True)

ANSI_ESCAPE_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")

PRIORITY_NAMES = {1: "Urgent", 2: "High", 3: "Medium", 4: "Low"}
DESCRIPTION_PREVIEW = 100


def _strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


def _format_priority(priority: int | None) -> str:
    if not priority:
        return "None"
    return PRIORITY_NAMES.get(priority, "Unknown")


def _status_color(status: str) -> str:
    """Map a workflow state name to a representative color."""
    mapping: dict[str, str] = {
        "todo": str(Fore.WHITE),
        "backlog": str(Fore.WHITE),
        "in progress": str(Fore.YELLOW),
        "in review": str(Fore.CYAN),
        "done": str(Fore.GREEN),
        "canceled": str(Fore.RED),
    }
    return mapping.get(status.lower(), str(Fore.WHITE))


def _format_status(status: str | None) -> str:
    if not status:
        return f"{Style.DIM}Unknown{Style.RESET_ALL}"
    return f"{_status_color(status)}{status}{Style.RESET_ALL}"


def _format_relative_time(moment: datetime | None, now: datetime | None = None) -> str:
    if moment is None:
        return f"{Style.DIM}N/A{Style.RESET_ALL}"

    current = now or datetime.now(timezone.utc)
    minutes = int((current - moment).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return f"{Fore.GREEN}Just now{Style.RESET_ALL}"
    if minutes < 60:
        return f"{Fore.GREEN}{minutes} min{'s' if minutes > 1 else ''} ago{Style.RESET_ALL}"
    if hours < 24:
        return f"{Fore.CYAN}{hours} hour{'s' if hours > 1 else ''} ago{Style.RESET_ALL}"
    if days < 7:
        return f"{Fore.BLUE}{days} day{'s' if days > 1 else ''} ago{Style.RESET_ALL}"
    return f"{Style.DIM}{moment.date().isoformat()}{Style.RESET_ALL}"


def _assignment_tag(issue: Issue) -> str:
    if issue.is_assigned_to_me:
        return f" {Fore.GREEN}[YOURS]{Style.RESET_ALL}"
    if issue.assignee is None:
        return f" {Fore.YELLOW}[UNASSIGNED]{Style.RESET_ALL}"
    return f" {Style.DIM}[{issue.assignee.name}]{Style.RESET_ALL}"


def _render_focus(issues: list[Issue], now: datetime | None = None) -> str:
    if not issues:
        return (
            f"{Fore.GREEN}\nAll caught up! No high-priority issues need your "
            f"attention right now.{Style.RESET_ALL}"
        )

    label = f"{Style.DIM}{{}}:{Style.RESET_ALL}"
    lines = [f"\n{Style.BRIGHT}{Fore.CYAN}Focus on these issues:{Style.RESET_ALL}\n"]
    for index, issue in enumerate(issues, start=1):
        lines.append(
            f"{Style.BRIGHT}{index}. [{issue.identifier}] {issue.title}{Style.RESET_ALL}"
            f"{_assignment_tag(issue)}"
        )
        lines.append(f"   {label.format('Priority')} {_format_priority(issue.priority)}")
        lines.append(f"   {label.format('Status')} {_format_status(issue.status)}")
        if issue.last_comment_time:
            lines.append(
                f"   {label.format('Last activity')} "
                f"{_format_relative_time(issue.last_comment_time, now)}"
            )
        if issue.team:
            lines.append(f"   {label.format('Team')} {issue.team}")
        if issue.labels:
            lines.append(
                f"   {label.format('Labels')} "
                f"{Fore.MAGENTA}{', '.join(issue.labels)}{Style.RESET_ALL}"
            )
        lines.append(f"   {label.format('URL')} {Fore.BLUE}{issue.url}{Style.RESET_ALL}")
        if issue.description:
            preview = issue.description.replace("\n", " ")[:DESCRIPTION_PREVIEW]
            ellipsis = "..." if len(issue.description) > DESCRIPTION_PREVIEW else ""
            lines.append(
                f"   {label.format('Description')} "
                f"{Style.DIM}{preview}{ellipsis}{Style.RESET_ALL}"
            )
        lines.append("")
    return "\n".join(lines)


def _render_teams(teams: list[dict[str, Any]], default_team: str | None) -> str:
    lines = [f"\n{Fore.CYAN}Available teams:{Style.RESET_ALL}\n"]
    for team in teams:
        marker = f" {Fore.GREEN}[DEFAULT]{Style.RESET_ALL}" if team["isDefault"] else ""
        lines.append(f"  {Style.BRIGHT}[{team['key']}]{Style.RESET_ALL} {team['name']}{marker}")
        lines.append(f"    {Style.DIM}ID: {team['id']}{Style.RESET_ALL}")
    if default_team:
        lines.append(f"\n{Style.DIM}Current default team: {default_team}{Style.RESET_ALL}")
    else:
        lines.append(
            f"\n{Style.DIM}No default team set. Use --set-default to set one.{Style.RESET_ALL}"
        )
    return "\n".join(lines)


def _render_plan(plan: TransitionPlan, applied: bool) -> str:
    heading = (
        f"{Fore.GREEN}✓ {plan.identifier} is ready for review{Style.RESET_ALL}"
        if applied
        else f"{Fore.YELLOW}DRY RUN would update {plan.identifier}{Style.RESET_ALL}"
    )
    lines = [
        heading,
        f"  {Fore.CYAN}Reviewer:{Style.RESET_ALL} {plan.reviewer.name}",
        f"  {Fore.CYAN}State:{Style.RESET_ALL} {plan.state['name']}",
        f"  {Fore.CYAN}Environment:{Style.RESET_ALL} {plan.env_label['name']}",
    ]
    if plan.removed_labels:
        lines.append(
            f"  {Fore.CYAN}Replaced labels:{Style.RESET_ALL} {', '.join(plan.removed_labels)}"
        )
    if plan.url:
        lines.append(f"  {Fore.CYAN}URL:{Style.RESET_ALL} {Fore.BLUE}{plan.url}{Style.RESET_ALL}")
    return "\n".join(lines)


def _plan_payload(plan: TransitionPlan, updated: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "identifier": plan.identifier,
        "url": plan.url,
        "reviewer": plan.reviewer.name,
        "state": plan.state["name"],
        "environment": plan.env_label["name"],
        "labelIds": plan.label_ids,
        "removedLabels": plan.removed_labels,
        "applied": updated is not None,
    }


def _positive_hours(value: str) -> timedelta:
    try:
        hours = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number of hours: {value!r}") from exc
    if hours <= 0:
        raise argparse.ArgumentTypeError("window must be greater than zero hours")
    return timedelta(hours=hours)


def _add_common_options(parser: argparse.ArgumentParser, subcommand: bool) -> None:
    # Subcommands only set these when given, so `linear -v teams` keeps -v.
    parser.add_argument(
        "--format",
        "-f",
        choices=["table", "json"],
        default=argparse.SUPPRESS if subcommand else "table",
        help="Output format: table or json.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=argparse.SUPPRESS if subcommand else False,
        help="Show detailed API request logging.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linear",
        description=(
            "Show your highest priority Linear issues that you haven't commented on "
            "recently. Requires LINEAR_API_KEY (environment or .env file)."
        ),
    )
    _add_common_options(parser, subcommand=False)
    parser.add_argument(
        "--limit",
        "-l",
        type=int,
        default=DEFAULT_LIMIT,
        help=f"Maximum number of priority issues to show (default: {DEFAULT_LIMIT}).",
    )
    parser.add_argument(
        "--team",
        "-t",
        type=str,
        help="Filter by team key (e.g., ENG). Defaults to the configured team.",
    )
    parser.add_argument(
        "--include-recent",
        action="store_true",
        help="Include issues you commented on within the recency window.",
    )
    parser.add_argument(
        "--backlog",
        "-b",
        action="store_true",
        help="Also include unassigned issues alongside your own.",
    )
    parser.add_argument(
        "--window-hours",
        type=_positive_hours,
        default=DEFAULT_WINDOW,
        help=(
            "Hide issues you commented on within this many hours "
            f"(default: {DEFAULT_WINDOW.total_seconds() / 3600:g})."
        ),
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    teams_parser = subparsers.add_parser(
        "teams",
        help="List all teams or set the default team.",
    )
    teams_parser.add_argument(
        "--set-default",
        "-s",
        metavar="KEY",
        help="Set the default team by key (e.g., ENG).",
    )
    _add_common_options(teams_parser, subcommand=True)

    done_parser = subparsers.add_parser(
        "done",
        help="Hand a ticket to the reviewer: review state, reviewer, environment label.",
    )
    done_parser.add_argument(
        "identifier",
        type=str,
        help="Issue identifier (e.g., ENG-123).",
    )
    done_parser.add_argument(
        "--env",
        "-e",
        type=str,
        help="Environment label to apply (defaults to deployTarget from config).",
    )
    done_parser.add_argument(
        "--reviewer",
        "-r",
        type=str,
        help="Reviewer name or email fragment (defaults to reviewer from config).",
    )
    done_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve everything but do not update the issue.",
    )
    _add_common_options(done_parser, subcommand=True)

    return parser


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("linear_focus")
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(f"{Style.DIM}%(message)s{Style.RESET_ALL}"))
    package_logger.addHandler(handler)


def _print_error(message: str) -> None:
    print(f"{Fore.RED}Error: {message}{Style.RESET_ALL}", file=sys.stderr)


def _is_auth_failure(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 401
    text = str(exc).lower()
    return "401" in text or "unauthorized" in text or "authentication" in text


def _dispatch(args: argparse.Namespace, settings: CliConfig) -> int:
    if args.command == "teams":
        if args.set_default:
            team = run_set_default_team(args.set_default)
            print(
                f"{Fore.GREEN}✓ Default team set to: {team['name']} "
                f"[{team['key']}]{Style.RESET_ALL}"
            )
            return 0
        teams = run_teams(settings)
        if args.format == "json":
            print(json.dumps(teams, indent=2))
        else:
            print(_render_teams(teams, settings.default_team))
        return 0

    if args.command == "done":
        plan, updated = run_done(
            settings,
            args.identifier,
            environment=args.env,
            reviewer=args.reviewer,
            dry_run=args.dry_run,
        )
        if args.format == "json":
            print(json.dumps(_plan_payload(plan, updated), indent=2))
        else:
            print(_render_plan(plan, applied=updated is not None))
        return 0

    if args.format == "table":
        team_key = args.team or settings.default_team
        suffix = f" for team: {team_key}" if team_key else ""
        print(f"{Fore.CYAN}Checking priority issues{suffix}...{Style.RESET_ALL}")

    result: FocusResult = run_focus(
        settings,
        team=args.team,
        limit=args.limit,
        window=args.window_hours,
        include_unassigned=args.backlog,
        include_recent=args.include_recent,
    )
    if args.format == "json":
        print(json.dumps([issue.to_dict() for issue in result.issues], indent=2))
    else:
        print(_render_focus(result.issues))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(find_dotenv(usecwd=True))
    _configure_logging(args.verbose)
    settings = load_config()

    try:
        return _dispatch(args, settings)
    except MissingCredentialError as exc:
        _print_error(str(exc))
        return 1
    except (httpx.HTTPError, LinearApiError) as exc:
        _print_error(f"Linear API request failed: {exc}")
        if _is_auth_failure(exc):
            print(
                f"\n{Fore.YELLOW}It looks like your API key might be invalid."
                f"{Style.RESET_ALL}\nPlease check LINEAR_API_KEY in your environment "
                "or .env file.",
                file=sys.stderr,
            )
        return 1
    except RuntimeError as exc:
        _print_error(str(exc))
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
