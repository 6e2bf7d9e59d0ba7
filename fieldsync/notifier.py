"""Minimal publish/subscribe for queue change notifications."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]


class ChangeNotifier:
    """Broadcasts "the queue changed" to subscribers such as a pending counter."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register ``callback``.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        """Invoke every current subscriber; one failing subscriber does not stop the rest."""
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Change subscriber {callback!r} failed: {e}", exc_info=True)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
