"""Configuration loading utilities for Discord Join Notify."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .models import ConfigurationError, Person
from .roster import Roster

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = Path("config.yaml")
EXAMPLE_CONFIG_NAME = "example.config.yaml"
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0

_PLACEHOLDER_TOKENS = {"<discord token>", "<telegram token>"}

EXAMPLE_CONFIG: Dict[str, Any] = {
    "discord_bot_token": "<discord token>",
    "telegram_bot_token": "<telegram token>",
    "shutdown_grace_seconds": DEFAULT_SHUTDOWN_GRACE_SECONDS,
    "users": [
        {
            "name": "User1",
            "discord_primary_id": 1234567890,
            "discord_secondary_ids": [2345678901, 3456789012],
            "telegram_chat_id": 123456,
        },
        {
            "name": "User2",
            "discord_primary_id": 567891234,
            "discord_secondary_ids": [],
            "telegram_chat_id": None,
        },
    ],
}


def _require(data: Dict[str, Any], key: str, where: str) -> Any:
    if key not in data:
        raise ConfigurationError(f"{where} is missing '{key}'")
    return data[key]


def _account_id(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(
            f"{where} must be a positive Discord user id, got {value!r}"
        )
    return value


def _token(value: Any, key: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"'{key}' must be a non-empty string")
    if value.strip() in _PLACEHOLDER_TOKENS:
        raise ConfigurationError(f"'{key}' still holds the example placeholder")
    return value.strip()


def _person_from_dict(data: Any, index: int) -> Person:
    where = f"users[{index}]"
    if not isinstance(data, dict):
        raise ConfigurationError(f"{where} must be a mapping")
    name = _require(data, "name", where)
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"{where}.name must be a non-empty string")
    primary = _account_id(
        _require(data, "discord_primary_id", where), f"{where}.discord_primary_id"
    )
    secondary_raw = data.get("discord_secondary_ids") or []
    if not isinstance(secondary_raw, list):
        raise ConfigurationError(f"{where}.discord_secondary_ids must be a list")
    secondary: List[int] = []
    for position, value in enumerate(secondary_raw):
        account_id = _account_id(value, f"{where}.discord_secondary_ids[{position}]")
        if account_id != primary and account_id not in secondary:
            secondary.append(account_id)
    chat_id = data.get("telegram_chat_id")
    if chat_id is not None and (isinstance(chat_id, bool) or not isinstance(chat_id, int)):
        raise ConfigurationError(
            f"{where}.telegram_chat_id must be an integer chat id or null"
        )
    return Person(
        name=name.strip(),
        primary_account_id=primary,
        secondary_account_ids=tuple(secondary),
        destination_address=chat_id,
    )


@dataclass(frozen=True)
class Settings:
    """Typed view over the configuration YAML file."""

    discord_bot_token: str
    telegram_bot_token: str
    users: Tuple[Person, ...]
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS

    @staticmethod
    def from_dict(data: Any) -> "Settings":
        if not isinstance(data, dict):
            raise ConfigurationError("configuration must be a mapping at the top level")
        users_raw = _require(data, "users", "configuration")
        if not isinstance(users_raw, list):
            raise ConfigurationError("'users' must be a list")
        grace_raw = data.get("shutdown_grace_seconds", DEFAULT_SHUTDOWN_GRACE_SECONDS)
        try:
            if isinstance(grace_raw, bool):
                raise TypeError(grace_raw)
            grace = float(grace_raw)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"'shutdown_grace_seconds' must be a number, got {grace_raw!r}"
            ) from None
        if grace < 0:
            raise ConfigurationError("'shutdown_grace_seconds' must not be negative")
        settings = Settings(
            discord_bot_token=_token(
                _require(data, "discord_bot_token", "configuration"),
                "discord_bot_token",
            ),
            telegram_bot_token=_token(
                _require(data, "telegram_bot_token", "configuration"),
                "telegram_bot_token",
            ),
            users=tuple(
                _person_from_dict(entry, index) for index, entry in enumerate(users_raw)
            ),
            shutdown_grace_seconds=grace,
        )
        # Validates that no account is shared between users.
        settings.build_roster()
        return settings

    def build_roster(self) -> Roster:
        return Roster(self.users)


def write_example_config(path: Path) -> bool:
    """Write an example configuration unless one already exists."""

    if path.exists():
        return False
    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(EXAMPLE_CONFIG, fh, sort_keys=False)
    logger.info("Created %s", path)
    return True


class SettingsLoader:
    """Loads and caches settings from a YAML configuration file."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_CONFIG_PATH
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def example_path(self) -> Path:
        return self._path.with_name(EXAMPLE_CONFIG_NAME)

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except FileNotFoundError:
            write_example_config(self.example_path)
            raise ConfigurationError(
                f"{self._path} not found, take a look at {self.example_path}"
            ) from None
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"{self._path} is not valid YAML: {exc}") from exc
        except OSError as exc:
            raise ConfigurationError(f"Cannot read {self._path}: {exc}") from exc
        if isinstance(data, dict):
            data = _apply_env_overrides(data)
        self._cache = Settings.from_dict(data)
        return self._cache


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(data)
    for key, env_key in (
        ("discord_bot_token", "DISCORD_TOKEN"),
        ("telegram_bot_token", "TELEGRAM_BOT_TOKEN"),
    ):
        value = os.environ.get(env_key)
        if value:
            merged[key] = value
    return merged


def get_settings(path: Optional[Path] = None) -> Settings:
    """Convenience accessor honouring ``JOIN_NOTIFY_CONFIG``."""

    if path is None:
        env_path = os.environ.get("JOIN_NOTIFY_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    return SettingsLoader(path).load()


__all__ = [
    "ConfigurationError",
    "EXAMPLE_CONFIG",
    "Settings",
    "SettingsLoader",
    "get_settings",
    "write_example_config",
]
