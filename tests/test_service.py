"""End-to-end tests for the presence service with fake collaborators."""
from __future__ import annotations

import asyncio

import pytest

from join_notify.models import (
    GuildVoiceSnapshot,
    Person,
    SnapshotUnavailable,
    VoicePresence,
    VoiceTransition,
)
from join_notify.notifications import LookupFailure, NotificationDispatcher
from join_notify.roster import Roster
from join_notify.service import PresenceService

GUILD = 555
GENERAL = 10

ROSTER = Roster(
    [
        Person("Alice", 1, (2,), destination_address=100),
        Person("Bob", 3, (), destination_address=300),
    ]
)
DISPLAY_NAMES = {1: "alice", 2: "Alice-alt", 3: "bob"}


class FakeSender:
    def __init__(self):
        self.messages = []

    async def send(self, destination_address, message_text):
        self.messages.append((destination_address, message_text))


class FakeGuild:
    """Mimics the gateway cache: state is updated before handlers run."""

    def __init__(self):
        self.voice_states = {}

    def apply(self, transition):
        if transition.new_channel is None:
            self.voice_states.pop(transition.person_account_id, None)
        else:
            self.voice_states[transition.person_account_id] = VoicePresence(
                transition.new_channel, transition.self_deafened
            )

    def snapshot(self):
        return GuildVoiceSnapshot(GUILD, "G", dict(self.voice_states))


async def _resolve(account_id):
    try:
        return DISPLAY_NAMES[account_id]
    except KeyError:
        raise LookupFailure(f"no user {account_id}") from None


def _service():
    sender = FakeSender()
    dispatcher = NotificationDispatcher(sender)
    return PresenceService(ROSTER, dispatcher, _resolve), sender


async def _deliver(service, guild, transition):
    guild.apply(transition)
    notifications = await service.on_voice_transition(transition, guild.snapshot)
    await service.dispatcher.drain(timeout=1)
    return notifications


@pytest.mark.asyncio
async def test_alt_join_then_peer_join_scenario():
    service, sender = _service()
    guild = FakeGuild()

    await _deliver(service, guild, VoiceTransition(2, GUILD, new_channel=GENERAL))
    assert sender.messages == [
        (100, "You joined with Alice-alt on G"),
        (300, "Alice joined on G!"),
    ]

    sender.messages.clear()
    await _deliver(service, guild, VoiceTransition(3, GUILD, new_channel=GENERAL))
    assert sender.messages == []


@pytest.mark.asyncio
async def test_deafened_peer_gets_notified():
    service, sender = _service()
    guild = FakeGuild()

    await _deliver(service, guild, VoiceTransition(1, GUILD, new_channel=GENERAL))
    sender.messages.clear()
    await _deliver(
        service,
        guild,
        VoiceTransition(
            1,
            GUILD,
            previous_guild_id=GUILD,
            previous_channel=GENERAL,
            new_channel=GENERAL,
            self_deafened=True,
        ),
    )
    assert sender.messages == []

    await _deliver(service, guild, VoiceTransition(3, GUILD, new_channel=GENERAL))
    assert sender.messages == [(100, "Bob joined on G!")]


@pytest.mark.asyncio
async def test_switching_to_alt_account_is_silent():
    service, sender = _service()
    guild = FakeGuild()

    await _deliver(service, guild, VoiceTransition(1, GUILD, new_channel=GENERAL))
    sender.messages.clear()

    await _deliver(service, guild, VoiceTransition(2, GUILD, new_channel=GENERAL))
    assert sender.messages == []


@pytest.mark.asyncio
async def test_unavailable_snapshot_skips_event():
    service, sender = _service()

    def unavailable():
        raise SnapshotUnavailable("guild outage")

    result = await service.on_voice_transition(
        VoiceTransition(2, GUILD, new_channel=GENERAL), unavailable
    )

    assert result == []
    assert service.dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_unexpected_errors_do_not_escape_the_handler():
    service, sender = _service()

    def broken():
        raise KeyError("cache corrupted")

    result = await service.on_voice_transition(
        VoiceTransition(2, GUILD, new_channel=GENERAL), broken
    )

    assert result == []


@pytest.mark.asyncio
async def test_failed_name_lookup_keeps_peer_notification():
    roster = Roster([Person("Eve", 7, (8,), 700), Person("Bob", 3, (), 300)])
    sender = FakeSender()
    service = PresenceService(roster, NotificationDispatcher(sender), _resolve)
    guild = FakeGuild()

    await _deliver(service, guild, VoiceTransition(8, GUILD, new_channel=GENERAL))

    assert sender.messages == [(300, "Eve joined on G!")]


@pytest.mark.asyncio
async def test_handler_returns_before_delivery_completes():
    release = asyncio.Event()

    class SlowSender:
        async def send(self, destination_address, message_text):
            await release.wait()

    service = PresenceService(ROSTER, NotificationDispatcher(SlowSender()), _resolve)
    guild = FakeGuild()
    transition = VoiceTransition(2, GUILD, new_channel=GENERAL)
    guild.apply(transition)

    notifications = await service.on_voice_transition(transition, guild.snapshot)

    assert len(notifications) == 2
    assert service.dispatcher.in_flight == 2
    release.set()
    outcomes = await service.dispatcher.drain(timeout=1)
    assert all(outcome.success for outcome in outcomes)
