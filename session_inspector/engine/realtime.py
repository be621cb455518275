"""Per-timeline subscription to backend change notifications."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from ..backend.base import EventBackend
from ..models import ChangeNotification, Scope
from ..notifications import Subscription

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[Scope], Union[None, Awaitable[None]]]


class WatchState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"


class RealtimeWatcher:
    """Keeps one timeline subscribed to changes of exactly its scope.

    unsubscribed -> subscribing (watch request sent)
                 -> subscribed (listener registered)
                 -> unsubscribed (stop, or a new start)

    The listener is registered whether or not the watch request succeeded.
    Stopping unregisters immediately and sends the unwatch request in the
    background; its failures are only logged.
    """

    def __init__(self, backend: EventBackend, on_change: ChangeHandler):
        self.backend = backend
        self.on_change = on_change
        self.state = WatchState.UNSUBSCRIBED
        self.scope: Optional[Scope] = None
        self._subscription: Optional[Subscription] = None
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._unwatching: dict[Scope, asyncio.Task] = {}

    async def start(self, scope: Scope):
        if self.scope is not None:
            self.stop()

        self._generation += 1
        generation = self._generation
        self.scope = scope
        self.state = WatchState.SUBSCRIBING

        # a pending unwatch of the same scope would cancel the new watch
        pending = self._unwatching.get(scope)
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)
            if generation != self._generation:
                return

        try:
            await self.backend.watch(scope)
        except Exception as e:
            logger.warning(f"Failed to watch {scope.key}: {e}")

        if generation != self._generation:
            # stopped (or restarted elsewhere) while the watch request was out
            if self.scope != scope:
                self._spawn_unwatch(scope)
            return

        self._subscription = self.backend.bus.subscribe(scope, self._on_notification)
        self.state = WatchState.SUBSCRIBED

    def stop(self):
        if self.scope is None:
            return
        scope = self.scope
        self._generation += 1
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        was_watching = self.state != WatchState.UNSUBSCRIBED
        self.scope = None
        self.state = WatchState.UNSUBSCRIBED
        if was_watching:
            self._spawn_unwatch(scope)

    def _spawn_unwatch(self, scope: Scope):
        task = self._spawn(self._unwatch(scope))
        if task is None:
            return
        self._unwatching[scope] = task
        task.add_done_callback(lambda t: self._forget_unwatch(scope, t))

    def _forget_unwatch(self, scope: Scope, task: asyncio.Task):
        if self._unwatching.get(scope) is task:
            del self._unwatching[scope]

    async def _unwatch(self, scope: Scope):
        try:
            await self.backend.unwatch(scope)
        except Exception as e:
            logger.warning(f"Failed to unwatch {scope.key}: {e}")

    def _on_notification(self, notification: ChangeNotification):
        if self.state != WatchState.SUBSCRIBED or notification.scope != self.scope:
            return
        result = self.on_change(notification.scope)
        if inspect.isawaitable(result):
            self._spawn(result)

    def _spawn(self, awaitable: Awaitable) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no running loop (interpreter shutdown); nothing left to notify
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return None
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self):
        """Wait for background unwatch requests and triggered refreshes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
