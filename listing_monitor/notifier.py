"""Notification collaborators.

Delivery is fire-and-forget from the engine's side: the poll worker consults
the notification quota first and does not retry a failed delivery.
"""
from abc import ABC, abstractmethod
from typing import Sequence
from .schemas import Item
from .utils import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, user_id: int, monitor_id: int, new_items: Sequence[Item]) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify(self, user_id, monitor_id, new_items):
        logger.info("Notify user %s: %d new item(s) for monitor %s", user_id, len(new_items), monitor_id)
        for item in new_items:
            logger.info("  %s | %s | %s", item.item_id, item.title, item.link)
