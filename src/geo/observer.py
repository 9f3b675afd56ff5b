"""Push source of observer positions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from domain.models import MercatorPosition

logger = logging.getLogger(__name__)


class ObserverFeed:
    """Delivers every published position to the subscribers, in subscription order.

    A failing subscriber is logged and skipped so it can never stall the
    position loop.
    """

    def __init__(self) -> None:
        self._subscribers: list[Callable[[MercatorPosition], None]] = []
        self.last_position: MercatorPosition | None = None

    def subscribe(self, callback: Callable[[MercatorPosition], None]) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MercatorPosition], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, position: MercatorPosition) -> None:
        self.last_position = position
        for callback in list(self._subscribers):
            try:
                callback(position)
            except Exception:
                logger.exception('Observer subscriber failed for %s', position)
