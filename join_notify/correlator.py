"""Presence correlation: decides who hears about a voice channel join.

``correlate`` is a pure function of the transition, the guild snapshot taken
after the transition was applied, and the roster. It runs four gates and
returns no intents as soon as one of them fails:

1. the account was already connected in this guild (channel move, mute
   toggle and similar updates),
2. the account left voice,
3. the account is not on the roster,
4. another account of the same person is already connected.

A transition that passes every gate is a genuine arrival. The arriving
person is told when they joined without their primary account, and every
other person who is not connected and listening is told that they arrived.
"""
from __future__ import annotations

import logging
from typing import List

from .models import (
    GuildVoiceSnapshot,
    NotificationIntent,
    NotificationKind,
    Person,
    VoiceTransition,
)
from .roster import Roster

logger = logging.getLogger(__name__)


def is_genuine_arrival(
    transition: VoiceTransition, snapshot: GuildVoiceSnapshot, roster: Roster
) -> bool:
    if (
        transition.previous_guild_id is not None
        and transition.previous_guild_id == transition.guild_id
    ):
        logger.debug(
            "Ignoring update for %s; already connected in guild %s",
            transition.person_account_id,
            transition.guild_id,
        )
        return False
    if transition.new_channel is None:
        return False
    if roster.resolve(transition.person_account_id) is None:
        logger.debug("Ignoring unknown account %s", transition.person_account_id)
        return False
    for other_id in snapshot.other_accounts(transition.person_account_id):
        if roster.is_same_person(transition.person_account_id, other_id):
            logger.debug(
                "Ignoring %s; account %s of the same user is already connected",
                transition.person_account_id,
                other_id,
            )
            return False
    return True


def _is_listening(person: Person, snapshot: GuildVoiceSnapshot) -> bool:
    return any(snapshot.is_active(account_id) for account_id in person.account_ids)


def correlate(
    transition: VoiceTransition, snapshot: GuildVoiceSnapshot, roster: Roster
) -> List[NotificationIntent]:
    """Return the notifications a voice transition should produce."""

    if not is_genuine_arrival(transition, snapshot, roster):
        return []
    person = roster.resolve(transition.person_account_id)
    assert person is not None

    intents: List[NotificationIntent] = []
    if person.destination_address is not None and not snapshot.is_present(
        person.primary_account_id
    ):
        intents.append(
            NotificationIntent(
                kind=NotificationKind.SELF,
                recipient=person,
                arrival=person,
                account_id=transition.person_account_id,
                guild_name=snapshot.guild_name,
            )
        )

    for other in roster.others(person):
        if other.destination_address is None:
            continue
        if _is_listening(other, snapshot):
            continue
        intents.append(
            NotificationIntent(
                kind=NotificationKind.PEER,
                recipient=other,
                arrival=person,
                account_id=transition.person_account_id,
                guild_name=snapshot.guild_name,
            )
        )
    return intents


__all__ = ["correlate", "is_genuine_arrival"]
