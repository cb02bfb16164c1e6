"""Core data models for Discord Join Notify."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Mapping, Optional, Tuple


class ConfigurationError(RuntimeError):
    """Raised when the roster or credentials cannot be loaded."""


class SnapshotUnavailable(RuntimeError):
    """Raised when the current voice state of a guild cannot be read."""


@dataclass(frozen=True)
class Person:
    """One human tracked by the roster, possibly owning several accounts."""

    name: str
    primary_account_id: int
    secondary_account_ids: Tuple[int, ...] = ()
    destination_address: Optional[int] = None

    @property
    def account_ids(self) -> Tuple[int, ...]:
        return (self.primary_account_id,) + self.secondary_account_ids

    def has_account(self, account_id: int) -> bool:
        return (
            account_id == self.primary_account_id
            or account_id in self.secondary_account_ids
        )


@dataclass(frozen=True)
class VoiceTransition:
    """A single voice state change for one Discord account."""

    person_account_id: int
    guild_id: int
    previous_guild_id: Optional[int] = None
    previous_channel: Optional[int] = None
    new_channel: Optional[int] = None
    self_deafened: bool = False


@dataclass(frozen=True)
class VoicePresence:
    channel_id: Optional[int]
    self_deafened: bool = False


@dataclass(frozen=True)
class GuildVoiceSnapshot:
    """Point-in-time view of who is connected to voice in a guild."""

    guild_id: int
    guild_name: str
    voice_states: Mapping[int, VoicePresence] = field(default_factory=dict)

    def is_present(self, account_id: int) -> bool:
        return account_id in self.voice_states

    def is_active(self, account_id: int) -> bool:
        """Connected to a channel and listening."""

        presence = self.voice_states.get(account_id)
        if presence is None:
            return False
        return presence.channel_id is not None and not presence.self_deafened

    def other_accounts(self, account_id: int) -> Iterator[int]:
        return (other for other in self.voice_states if other != account_id)


class NotificationKind(str, Enum):
    SELF = "self"
    PEER = "peer"


@dataclass(frozen=True)
class NotificationIntent:
    """Decision that `recipient` should hear about `arrival` joining."""

    kind: NotificationKind
    recipient: Person
    arrival: Person
    account_id: int
    guild_name: str


@dataclass(frozen=True)
class PendingNotification:
    destination_address: int
    message_text: str
    recipient_name: str = ""
    kind: NotificationKind = NotificationKind.PEER


@dataclass(frozen=True)
class DeliveryOutcome:
    notification: PendingNotification
    success: bool
    error: Optional[str] = None


__all__ = [
    "ConfigurationError",
    "DeliveryOutcome",
    "GuildVoiceSnapshot",
    "NotificationIntent",
    "NotificationKind",
    "PendingNotification",
    "Person",
    "SnapshotUnavailable",
    "VoicePresence",
    "VoiceTransition",
]
