"""Publish/subscribe channel for sync status changes."""
from typing import Any, Callable, Optional
import logging

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` to stop delivery."""

    def __init__(self, broadcaster: "StatusBroadcaster", listener: Listener):
        self._broadcaster = broadcaster
        self.listener = listener
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self._broadcaster._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()


class StatusBroadcaster:
    """
    Deliver each published status to every current subscriber exactly once.

    Delivery iterates over a snapshot, so listeners may subscribe or
    unsubscribe (themselves or others) from inside a callback. A listener
    removed mid-delivery does not receive the status being delivered if it
    had not been reached yet. A listener that raises is logged and skipped.
    """

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self.last_status: Optional[Any] = None

    def subscribe(self, listener: Listener) -> Subscription:
        subscription = Subscription(self, listener)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, status: Any):
        self.last_status = status
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.listener(status)
            except Exception:
                logger.error("Sync status listener failed", exc_info=True)

    def clear(self):
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()
