"""Detection of newly arrived events for the transient flash effect."""

import asyncio
from typing import Callable, Iterable, Optional

from ..config import FLASH_DURATION_SECONDS


def compute_newly_arrived(previous_ids: set[int], current_ids: set[int]) -> set[int]:
    """Byte offsets present now that were not present before."""
    return set(current_ids) - set(previous_ids)


class FlashTracker:
    """Tracks which loaded events should pulse after a window update.

    The first population of a window never flashes, including the first
    non-empty one after an empty or failed load; call `reset()` whenever
    the window is discarded (session change) so the next load counts as a
    first population again.
    """

    def __init__(
        self,
        duration: float = FLASH_DURATION_SECONDS,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.duration = duration
        self.on_change = on_change
        self.flashing: frozenset[int] = frozenset()
        self._previous: Optional[set[int]] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def reset(self):
        self._previous = None
        self._cancel_timer()
        self.flashing = frozenset()

    def update(self, current_ids: Iterable[int], flash: bool = True) -> frozenset[int]:
        """Record the current ids and return the ones to flash.

        With `flash=False` the ids are only recorded (e.g. older pages
        appended by pagination).
        """
        current = set(current_ids)
        previous, self._previous = self._previous, current
        # an empty or failed window does not count as populated
        if not previous or not flash:
            return frozenset()

        arrived = compute_newly_arrived(previous, current)
        if not arrived:
            return frozenset()

        self.flashing = frozenset(arrived)
        self._schedule_clear()
        return self.flashing

    def _schedule_clear(self):
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: caller clears manually
        self._timer = loop.call_later(self.duration, self.clear)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def clear(self):
        self._timer = None
        if self.flashing:
            self.flashing = frozenset()
            if self.on_change:
                self.on_change()
