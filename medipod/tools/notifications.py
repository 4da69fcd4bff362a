"""
Outbound messaging and timed booking notifications.

The messenger is fire-and-forget: delivery failures are logged and never
reach the conversation. Scheduled notices run as asyncio tasks keyed by
booking id so a cancel or reschedule can withdraw them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

from medipod.schemas.message_schema import OutboundMessage

logger = logging.getLogger(__name__)


class OutboundMessenger(ABC):
    @abstractmethod
    async def send(self, target: str, body: str, media_url: Optional[str] = None) -> None:
        ...


class LoggingMessenger(OutboundMessenger):
    """Simulated transport that logs and remembers every message."""

    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []

    async def send(self, target: str, body: str, media_url: Optional[str] = None) -> None:
        self.sent.append(OutboundMessage(target=target, body=body, media_url=media_url))
        logger.info("Outbound to %s: %s", target, body.splitlines()[0] if body else "")


class NotificationScheduler:
    """Delivers messages at a future time through an OutboundMessenger."""

    def __init__(
        self,
        messenger: OutboundMessenger,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._messenger = messenger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: dict[str, dict[str, asyncio.Task]] = {}

    def schedule(
        self,
        booking_id: str,
        kind: str,
        target: str,
        body: str,
        send_at: datetime,
    ) -> None:
        """Queue a notice. Re-scheduling the same kind replaces the earlier one.

        Must be called from a running event loop. Times already past are
        delivered immediately.
        """
        self._cancel_one(booking_id, kind)
        delay = max(0.0, (send_at - self._clock()).total_seconds())
        task = asyncio.get_running_loop().create_task(
            self._deliver(booking_id, kind, target, body, delay)
        )
        self._tasks.setdefault(booking_id, {})[kind] = task
        task.add_done_callback(lambda t: self._forget(booking_id, kind, t))
        logger.debug("Scheduled %s for %s in %.0fs", kind, booking_id, delay)

    async def _deliver(
        self, booking_id: str, kind: str, target: str, body: str, delay: float
    ) -> None:
        await asyncio.sleep(delay)
        try:
            await self._messenger.send(target, body)
        except Exception:
            logger.exception("Failed to deliver %s for booking %s", kind, booking_id)

    def _forget(self, booking_id: str, kind: str, task: asyncio.Task) -> None:
        kinds = self._tasks.get(booking_id)
        if kinds is not None and kinds.get(kind) is task:
            del kinds[kind]
            if not kinds:
                del self._tasks[booking_id]

    def _cancel_one(self, booking_id: str, kind: str) -> bool:
        task = self._tasks.get(booking_id, {}).pop(kind, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self, booking_id: str) -> list[str]:
        return sorted(
            kind for kind, task in self._tasks.get(booking_id, {}).items() if not task.done()
        )

    def cancel(self, booking_id: str) -> int:
        """Best-effort cancel of every pending notice for a booking."""
        kinds = list(self._tasks.get(booking_id, {}))
        cancelled = sum(1 for kind in kinds if self._cancel_one(booking_id, kind))
        self._tasks.pop(booking_id, None)
        if cancelled:
            logger.info("Cancelled %d notifications for %s", cancelled, booking_id)
        return cancelled

    async def join(self) -> None:
        """Wait for every queued notice to finish or be cancelled."""
        tasks = [task for kinds in self._tasks.values() for task in kinds.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        for booking_id in list(self._tasks):
            self.cancel(booking_id)
        await asyncio.sleep(0)
