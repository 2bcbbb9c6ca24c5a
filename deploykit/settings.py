"""SettingsManager — layered runtime settings for a deploykit project."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)


class _Setting(NamedTuple):
    default: str
    help: str
    secret: bool = False


_SETTINGS: dict[str, _Setting] = {
    "DEPLOYKIT_ENV": _Setting("development", "profile: development, production or testing"),
    "DEPLOYKIT_CONFIG": _Setting("", "deploykit.yaml location; discovered in the project root when empty"),
    "DEPLOYKIT_STATE_DIR": _Setting("", "state directory; .deploykit when empty"),
    "DEPLOYKIT_LOG_LEVEL": _Setting("INFO", "root log level"),
    "DEPLOYKIT_LOCK_TIMEOUT": _Setting("", "seconds before an environment lock counts as stale"),
    "DEPLOYKIT_AUDIT_DB": _Setting("audit.db", "audit database, relative to the state directory"),
    "SLACK_WEBHOOK": _Setting("", "Slack incoming webhook", secret=True),
    "TEAMS_WEBHOOK": _Setting("", "Microsoft Teams incoming webhook", secret=True),
    "DISCORD_WEBHOOK": _Setting("", "Discord webhook", secret=True),
}

# Values each profile changes from the defaults
_PROFILE_OVERRIDES: dict[str, dict[str, str]] = {
    "development": {"DEPLOYKIT_LOG_LEVEL": "DEBUG"},
    "production": {"DEPLOYKIT_LOG_LEVEL": "WARNING"},
    "testing": {"DEPLOYKIT_LOG_LEVEL": "DEBUG", "DEPLOYKIT_AUDIT_DB": ":memory:"},
}


class SettingsManager:
    """Resolve deploykit settings for a project directory.

    Later layers win: built-in defaults, the selected profile,
    ``.deploykit/settings.json``, ``.env``, then the process environment.
    """

    def generate_env_template(self, project_path: str | Path) -> Path:
        """Write ``.env.example`` listing every setting and return its path."""
        path = Path(project_path) / ".env.example"
        sections = (
            ("Runtime", [k for k, s in _SETTINGS.items() if not s.secret]),
            ("Secrets (keep out of version control)", [k for k, s in _SETTINGS.items() if s.secret]),
        )
        out: list[str] = []
        for title, keys in sections:
            out.append(f"## {title}")
            for key in keys:
                out += [f"# {_SETTINGS[key].help}", f"{key}={_SETTINGS[key].default}"]
            out.append("")
        path.write_text("\n".join(out), encoding="utf-8")
        return path

    def load_settings(self, project_path: str | Path) -> dict[str, str]:
        root = Path(project_path)
        dotenv = self._read_dotenv(root / ".env")
        profile = (
            os.environ.get("DEPLOYKIT_ENV")
            or dotenv.get("DEPLOYKIT_ENV")
            or _SETTINGS["DEPLOYKIT_ENV"].default
        )

        settings = {key: s.default for key, s in _SETTINGS.items()}
        settings["DEPLOYKIT_ENV"] = profile
        if profile not in _PROFILE_OVERRIDES:
            logger.warning("Unknown settings profile '%s'; using defaults", profile)
        settings.update(_PROFILE_OVERRIDES.get(profile, {}))
        settings.update(self._read_json(root / ".deploykit" / "settings.json"))
        settings.update(dotenv)
        settings.update({k: os.environ[k] for k in _SETTINGS if k in os.environ})
        return settings

    @staticmethod
    def _read_json(path: Path) -> dict[str, str]:
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable %s", path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a JSON object", path)
            return {}
        return {k: str(v) for k, v in data.items()}

    @staticmethod
    def _read_dotenv(path: Path) -> dict[str, str]:
        if not path.is_file():
            return {}
        values: dict[str, str] = {}
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError:
            logger.warning("Ignoring unreadable %s", path, exc_info=True)
            return values
        for raw in lines:
            line = raw.strip()
            if line.startswith("export "):
                line = line[len("export "):]
            key, sep, value = line.partition("=")
            if not sep or line.startswith("#"):
                continue
            values[key.strip()] = value.strip().strip("'\"")
        return values
