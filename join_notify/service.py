"""Presence service bridging voice transitions to notification delivery."""
from __future__ import annotations

import logging
from typing import Callable, List

from .correlator import correlate
from .models import (
    GuildVoiceSnapshot,
    PendingNotification,
    SnapshotUnavailable,
    VoiceTransition,
)
from .notifications import DisplayNameResolver, NotificationDispatcher, compose
from .roster import Roster

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], GuildVoiceSnapshot]


class PresenceService:
    """Entry point the event source calls once per voice state change."""

    def __init__(
        self,
        roster: Roster,
        dispatcher: NotificationDispatcher,
        resolve_display_name: DisplayNameResolver,
    ) -> None:
        self.roster = roster
        self.dispatcher = dispatcher
        self._resolve_display_name = resolve_display_name

    async def on_voice_transition(
        self, transition: VoiceTransition, snapshot_provider: SnapshotProvider
    ) -> List[PendingNotification]:
        # Snapshot read and correlation must not be separated by an await so
        # that events of one guild are evaluated in arrival order.
        try:
            snapshot = snapshot_provider()
            intents = correlate(transition, snapshot, self.roster)
        except SnapshotUnavailable as exc:
            logger.warning(
                "Skipping voice update for %s in guild %s; voice state unavailable: %s",
                transition.person_account_id,
                transition.guild_id,
                exc,
            )
            return []
        except Exception:
            logger.exception(
                "Failed to evaluate voice update for %s", transition.person_account_id
            )
            return []
        if not intents:
            return []

        try:
            notifications = await compose(intents, self._resolve_display_name)
        except Exception:
            logger.exception(
                "Failed to compose notifications for %s", transition.person_account_id
            )
            return []
        self.dispatcher.dispatch(notifications)
        return notifications


__all__ = ["PresenceService", "SnapshotProvider"]
