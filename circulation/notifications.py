from __future__ import annotations
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_reservation_ready(self, email: str, book_title: str) -> None:
        ...


class LoggingNotifier:
    """Writes the pickup notice to the log instead of sending mail."""

    def notify_reservation_ready(self, email: str, book_title: str) -> None:
        logger.info(
            "Sending notification to %s: your reservation for '%s' is ready for pickup.",
            email,
            book_title,
        )
