"""Scope-keyed registry for file-change push notifications."""

import logging
import threading
from typing import Callable

from .models import ChangeNotification, Scope

logger = logging.getLogger(__name__)

Listener = Callable[[ChangeNotification], None]


class Subscription:
    """Handle returned by `NotificationBus.subscribe`; cancel to unregister."""

    def __init__(self, bus: "NotificationBus", scope: Scope, listener: Listener):
        self._bus = bus
        self.scope = scope
        self.listener = listener
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._bus._remove(self)


class NotificationBus:
    """Delivers change notifications to listeners registered for that exact scope.

    Several timelines share one bus; a notification for (project, session A)
    never reaches a listener registered for (project, session B) or for a
    sub-agent of the same project.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: dict[Scope, list[Subscription]] = {}

    def subscribe(self, scope: Scope, listener: Listener) -> Subscription:
        subscription = Subscription(self, scope, listener)
        with self._lock:
            self._listeners.setdefault(scope, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            subs = self._listeners.get(subscription.scope, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._listeners.pop(subscription.scope, None)

    def listener_count(self, scope: Scope) -> int:
        with self._lock:
            return len(self._listeners.get(scope, []))

    def publish(self, notification: ChangeNotification) -> int:
        """Deliver to every listener of the notification's scope.

        Returns the number of listeners reached. A failing listener is
        logged and does not stop delivery to the others.
        """
        with self._lock:
            subs = list(self._listeners.get(notification.scope, []))
        for sub in subs:
            try:
                sub.listener(notification)
            except Exception as e:
                logger.warning(f"Change listener for {notification.scope.key} failed: {e}")
        return len(subs)
