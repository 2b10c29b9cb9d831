"""Configuration helpers for linear-focus."""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LOCAL_CONFIG_NAMES = (".linear.toml", ".linear.json")

# Accepted spellings for each setting, camelCase first.
KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "default_team": ("defaultTeam", "default_team"),
    "deploy_target": ("deployTarget", "deploy_target"),
    "reviewer": ("reviewer",),
}


@dataclass(frozen=True)
class CliConfig:
    """Effective settings for one invocation: global file overlaid by local."""

    default_team: str | None = None
    deploy_target: str | None = None
    reviewer: str | None = None
    local_path: Path | None = None


def get_global_config_path() -> Path:
    """Per-user settings file (default team, reviewer)."""
    override = os.environ.get("LINEAR_CLI_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".linear-cli-config.json"


def find_local_config(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` to the filesystem root looking for a project file."""
    directory = (start or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        for name in LOCAL_CONFIG_NAMES:
            candidate = candidate_dir / name
            if candidate.is_file():
                return candidate
    return None


def _parse_config_file(path: Path) -> Any:
    if path.suffix == ".toml":
        with path.open("rb") as handle:
            return tomllib.load(handle)
    return json.loads(path.read_text(encoding="utf-8"))


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a JSON or TOML settings file; unreadable files count as empty."""
    try:
        data = _parse_config_file(path)
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("Could not load config file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: root must be an object.", path)
        return {}
    return data


def _normalize(raw: dict[str, Any]) -> dict[str, str]:
    settings: dict[str, str] = {}
    for field_name, aliases in KEY_ALIASES.items():
        for alias in aliases:
            value = raw.get(alias)
            if isinstance(value, str) and value.strip():
                settings[field_name] = value.strip()
                break
    return settings


def load_config(cwd: Path | None = None) -> CliConfig:
    """Merge the global file with the nearest project-local file."""
    settings = _normalize(read_config_file(get_global_config_path()))
    local_path = find_local_config(cwd)
    if local_path is not None:
        logger.debug("Using project config %s", local_path)
        settings.update(_normalize(read_config_file(local_path)))
    return CliConfig(local_path=local_path, **settings)


def save_default_team(team_key: str) -> Path:
    """Persist ``team_key`` in the global file, keeping any other keys.

    A file that exists but cannot be parsed is left untouched.
    """
    path = get_global_config_path()
    try:
        raw = _parse_config_file(path)
    except FileNotFoundError:
        raw = {}
    except (OSError, ValueError) as exc:
        raise RuntimeError(
            f"Refusing to overwrite config file {path}: could not parse it ({exc})."
        ) from exc
    if not isinstance(raw, dict):
        raise RuntimeError(
            f"Refusing to overwrite config file {path}: root must be an object."
        )
    raw.pop("default_team", None)
    raw["defaultTeam"] = team_key
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(raw, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Could not save config to {path}: {exc}") from exc
    return path
