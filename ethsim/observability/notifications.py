"""Trade notifications — fire-and-forget delivery to users.

Every notification is logged to the console. When a sender is attached
(the Telegram bot registers one at startup) it is also delivered to the
target chat. Delivery failures are logged and never propagated: the
trade was committed before the notification was attempted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ethsim.observability.logger import get_logger
from ethsim.observability.metrics import metrics

log = get_logger(__name__)

Sender = Callable[[str, str], Awaitable[Any]]


@dataclass
class Notification:
    """A message addressed to one target."""
    target: str
    message: str
    timestamp: float = 0.0
    channels_sent: list[str] = field(default_factory=list)
    error: str = ""

    def __post_init__(self):
        if self.timestamp == 0.0:
            self.timestamp = time.time()


class Notifier:
    """Send notifications through the attached channel."""

    def __init__(self, sender: Sender | None = None):
        self._sender = sender

    def attach(self, sender: Sender | None) -> None:
        self._sender = sender

    async def notify(self, target: str, message: str) -> Notification:
        note = Notification(target=target, message=message)

        log.info("notification.sent", target=target, message=message[:200])
        note.channels_sent.append("console")

        if self._sender is not None and target:
            try:
                await self._sender(target, message)
                note.channels_sent.append("telegram")
                metrics.incr("notifications.delivered")
            except Exception as e:
                note.error = str(e)
                metrics.incr("notifications.failed")
                log.error("notification.delivery_error", target=target, error=str(e))
        return note
