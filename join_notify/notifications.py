"""Notification formatting and fire-and-forget delivery."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Set

from .models import (
    DeliveryOutcome,
    NotificationIntent,
    NotificationKind,
    PendingNotification,
)

logger = logging.getLogger(__name__)


class LookupFailure(RuntimeError):
    """Raised when a display name cannot be resolved for a message."""


class DeliveryError(RuntimeError):
    """Raised by a sender when the destination rejects a message."""


class NotificationSender(Protocol):
    async def send(self, destination_address: int, message_text: str) -> None:
        ...


DisplayNameResolver = Callable[[int], Awaitable[str]]


_MAX_MESSAGE_LENGTH = 4096


def _clamp_text(text: str) -> str:
    """Ensure Telegram-compatible message length."""

    if len(text) <= _MAX_MESSAGE_LENGTH:
        return text
    return text[: _MAX_MESSAGE_LENGTH - 1].rstrip() + "…"


def format_self_message(account_name: str, guild_name: str) -> str:
    return _clamp_text(f"You joined with {account_name} on {guild_name}")


def format_peer_message(person_name: str, guild_name: str) -> str:
    return _clamp_text(f"{person_name} joined on {guild_name}!")


async def compose(
    intents: Iterable[NotificationIntent], resolve_display_name: DisplayNameResolver
) -> List[PendingNotification]:
    """Render intents into messages, dropping those whose lookups fail."""

    notifications: List[PendingNotification] = []
    for intent in intents:
        destination = intent.recipient.destination_address
        if destination is None:
            continue
        if intent.kind is NotificationKind.SELF:
            try:
                account_name = await resolve_display_name(intent.account_id)
            except LookupFailure as exc:
                logger.error(
                    "Skipping notification to %s; could not resolve account %s: %s",
                    intent.recipient.name,
                    intent.account_id,
                    exc,
                )
                continue
            except Exception:
                logger.exception(
                    "Skipping notification to %s; lookup of account %s failed",
                    intent.recipient.name,
                    intent.account_id,
                )
                continue
            text = format_self_message(account_name, intent.guild_name)
        else:
            text = format_peer_message(intent.arrival.name, intent.guild_name)
        notifications.append(
            PendingNotification(
                destination_address=destination,
                message_text=text,
                recipient_name=intent.recipient.name,
                kind=intent.kind,
            )
        )
    return notifications


@dataclass
class DeliveryStats:
    sent: int = 0
    failed: int = 0


class NotificationDispatcher:
    """Sends each notification as its own task and records the outcome.

    Delivery is attempted exactly once. Failures are logged and counted,
    never retried, and never raised to the caller.
    """

    def __init__(self, sender: NotificationSender) -> None:
        self._sender = sender
        self._pending: Set[asyncio.Task] = set()
        self.stats = DeliveryStats()

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def dispatch(
        self, notifications: Iterable[PendingNotification]
    ) -> List["asyncio.Task[DeliveryOutcome]"]:
        tasks = []
        for notification in notifications:
            task = asyncio.create_task(self._deliver(notification))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _deliver(self, notification: PendingNotification) -> DeliveryOutcome:
        try:
            await self._sender.send(
                notification.destination_address, notification.message_text
            )
        except Exception as exc:
            self.stats.failed += 1
            logger.error(
                "Error sending telegram message to %s: %s",
                notification.recipient_name,
                exc,
            )
            return DeliveryOutcome(notification, success=False, error=str(exc))
        self.stats.sent += 1
        logger.info("Sent telegram message to %s", notification.recipient_name)
        return DeliveryOutcome(notification, success=True)

    async def drain(self, timeout: Optional[float] = None) -> List[DeliveryOutcome]:
        """Wait for in-flight sends, cancelling any still running at the deadline."""

        if not self._pending:
            return []
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                "Cancelled %d telegram messages still in flight at shutdown",
                len(pending),
            )
            await asyncio.gather(*pending, return_exceptions=True)
        return [task.result() for task in done if not task.cancelled()]


__all__ = [
    "DeliveryError",
    "DeliveryStats",
    "DisplayNameResolver",
    "LookupFailure",
    "NotificationDispatcher",
    "NotificationSender",
    "compose",
    "format_peer_message",
    "format_self_message",
]
