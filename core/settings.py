"""Runtime configuration for the forum SSO bridge.

Values come from an optional JSON settings file (``FORUM_SETTINGS_FILE``, the
camelCase layout used by older deployments) and are overridden by environment
variables. A ``.env`` file in the working directory is loaded first when present.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from core.logging import get_logger

logger = get_logger(__name__)

GROUP_STRATEGIES = ("short", "long")

DEFAULT_GROUP_PREFIX = "crowd_"
DEFAULT_GROUP_MAX_LENGTH = 20
DEFAULT_GROUP_TRUNCATE_LENGTH = 8
DEFAULT_GROUP_CACHE_FILE = Path("var") / "group_names.json"
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0

# env var -> legacy settings file key
_ENV_KEYS: Dict[str, str] = {
    "FORUM_SSO_SECRET": "ssoSecret",
    "FORUM_SSO_URL": "ssoUrl",
    "FORUM_SSO_CALLBACK_URL": "ssoCallbackUrl",
    "CROWD_URL": "crowdUrl",
    "CROWD_USERNAME": "crowdUsername",
    "CROWD_PASSWORD": "crowdPassword",
    "CROWD_LOGIN_URL": "crowdLoginUrl",
    "DISCOURSE_URL": "discourseUrl",
    "DISCOURSE_API_USERNAME": "discourseUsername",
    "DISCOURSE_API_KEY": "discourseKey",
    "FORUM_GROUP_PREFIX": "groupPrefix",
    "FORUM_GROUP_STRATEGY": "groupStrategy",
    "FORUM_GROUP_MAX_LENGTH": "groupMaxLength",
    "FORUM_GROUP_TRUNCATE_LENGTH": "groupTruncateLength",
    "FORUM_GROUP_CACHE_FILE": "groupCacheFile",
    "FORUM_AUTH_LOG": "authLog",
    "FORUM_HTTP_TIMEOUT_SECONDS": "httpTimeout",
    "DISCOURSE_VERIFY_TLS": "discourseVerifyTls",
}

REQUIRED_KEYS = (
    "FORUM_SSO_SECRET",
    "FORUM_SSO_URL",
    "FORUM_SSO_CALLBACK_URL",
    "CROWD_URL",
    "CROWD_USERNAME",
    "CROWD_PASSWORD",
    "CROWD_LOGIN_URL",
    "DISCOURSE_URL",
    "DISCOURSE_API_USERNAME",
    "DISCOURSE_API_KEY",
)


@dataclass(frozen=True)
class GroupNameSettings:
    """How identity-provider group names are mapped onto forum group names."""

    prefix: str = DEFAULT_GROUP_PREFIX
    strategy: str = "long"
    max_length: int = DEFAULT_GROUP_MAX_LENGTH
    truncate_length: int = DEFAULT_GROUP_TRUNCATE_LENGTH
    cache_file: Path = DEFAULT_GROUP_CACHE_FILE


@dataclass(frozen=True)
class ForumAuthSettings:
    sso_secret: str
    sso_url: str
    sso_callback_url: str
    crowd_url: str
    crowd_username: str
    crowd_password: str
    crowd_login_url: str
    discourse_url: str
    discourse_username: str
    discourse_key: str
    groups: GroupNameSettings = GroupNameSettings()
    auth_log: Optional[str] = None
    http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    discourse_verify_tls: bool = True


def load_dotenv_if_available(path: Path | None = None) -> None:
    """Load environment variables from a .env file when the file exists."""

    env_path = path or Path(".env")
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)
        logger.debug("Loaded environment variables from %s", env_path)


def read_settings_file(path: Path) -> Dict[str, Any]:
    """Return the legacy JSON settings document at ``path``."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise RuntimeError(f"Settings file {path} does not exist.") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise RuntimeError(f"Settings file {path} could not be read: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError(f"Settings file {path} must contain a JSON object.")
    return payload


class _SettingsReader:
    """Resolve a key from the environment first, then the settings file."""

    def __init__(self, file_values: Mapping[str, Any], environ: Mapping[str, str]) -> None:
        self._file_values = file_values
        self._environ = environ

    def raw(self, key: str) -> Any:
        value = self._environ.get(key)
        if value is not None and value != "":
            return value
        return self._file_values.get(_ENV_KEYS[key])

    def text(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.raw(key)
        if value is None:
            return default
        return str(value).strip()

    def secret(self, key: str) -> str:
        """Return a credential exactly as configured; surrounding whitespace is kept."""
        value = self.raw(key)
        return "" if value is None else str(value)

    def integer(self, key: str, default: int, *, minimum: int = 0) -> int:
        value = self.raw(key)
        if value is None:
            return default
        try:
            parsed = int(value)
            if parsed < minimum:
                raise ValueError
            return parsed
        except (TypeError, ValueError):
            logger.warning("Invalid %s value '%s'. Falling back to %d.", key, value, default)
            return default

    def number(self, key: str, default: float) -> float:
        value = self.raw(key)
        if value is None:
            return default
        try:
            parsed = float(value)
            if parsed <= 0:
                raise ValueError
            return parsed
        except (TypeError, ValueError):
            logger.warning("Invalid %s value '%s'. Falling back to %.2f.", key, value, default)
            return default

    def flag(self, key: str, default: bool) -> bool:
        value = self.raw(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        normalized = str(value).strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
        logger.warning("Invalid boolean setting %s='%s'. Using default=%s.", key, value, default)
        return default


def _group_settings(reader: _SettingsReader) -> GroupNameSettings:
    strategy = (reader.text("FORUM_GROUP_STRATEGY", "long") or "long").lower()
    if strategy not in GROUP_STRATEGIES:
        raise RuntimeError(f"Unknown group naming strategy '{strategy}'; expected one of {GROUP_STRATEGIES}.")

    return GroupNameSettings(
        prefix=reader.text("FORUM_GROUP_PREFIX", DEFAULT_GROUP_PREFIX) or "",
        strategy=strategy,
        max_length=reader.integer("FORUM_GROUP_MAX_LENGTH", DEFAULT_GROUP_MAX_LENGTH, minimum=1),
        truncate_length=reader.integer("FORUM_GROUP_TRUNCATE_LENGTH", DEFAULT_GROUP_TRUNCATE_LENGTH, minimum=1),
        cache_file=Path(reader.text("FORUM_GROUP_CACHE_FILE") or DEFAULT_GROUP_CACHE_FILE).expanduser(),
    )


def build_group_settings(
    file_values: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GroupNameSettings:
    """Resolve only the group naming options; no credentials are required."""
    return _group_settings(_SettingsReader(file_values or {}, os.environ if environ is None else environ))


def _settings_file_values() -> Dict[str, Any]:
    settings_file = os.getenv("FORUM_SETTINGS_FILE")
    if not settings_file:
        return {}
    logger.debug("Loading forum settings from %s", settings_file)
    return read_settings_file(Path(settings_file).expanduser())


def load_group_settings() -> GroupNameSettings:
    load_dotenv_if_available()
    return build_group_settings(_settings_file_values())


def build_settings(
    file_values: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ForumAuthSettings:
    """Assemble settings from a settings-file mapping and an environment mapping."""

    reader = _SettingsReader(file_values or {}, os.environ if environ is None else environ)

    missing = [key for key in REQUIRED_KEYS if not reader.text(key)]
    if missing:
        raise RuntimeError(
            f"Missing required settings: {', '.join(sorted(missing))}. "
            "Populate your .env, the settings file or the process environment."
        )

    return ForumAuthSettings(
        sso_secret=reader.secret("FORUM_SSO_SECRET"),
        sso_url=reader.text("FORUM_SSO_URL") or "",
        sso_callback_url=reader.text("FORUM_SSO_CALLBACK_URL") or "",
        crowd_url=reader.text("CROWD_URL") or "",
        crowd_username=reader.text("CROWD_USERNAME") or "",
        crowd_password=reader.secret("CROWD_PASSWORD"),
        crowd_login_url=reader.text("CROWD_LOGIN_URL") or "",
        discourse_url=reader.text("DISCOURSE_URL") or "",
        discourse_username=reader.text("DISCOURSE_API_USERNAME") or "",
        discourse_key=reader.secret("DISCOURSE_API_KEY"),
        groups=_group_settings(reader),
        auth_log=reader.text("FORUM_AUTH_LOG") or None,
        http_timeout=reader.number("FORUM_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS),
        discourse_verify_tls=reader.flag("DISCOURSE_VERIFY_TLS", True),
    )


@lru_cache(maxsize=1)
def load_settings() -> ForumAuthSettings:
    """Load settings once per process from ``.env``, the settings file and the environment."""

    load_dotenv_if_available()
    return build_settings(_settings_file_values())


__all__ = [
    "ForumAuthSettings",
    "GROUP_STRATEGIES",
    "GroupNameSettings",
    "build_group_settings",
    "build_settings",
    "load_dotenv_if_available",
    "load_group_settings",
    "load_settings",
    "read_settings_file",
]
