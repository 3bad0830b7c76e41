"""
Activity tracking.

Records the timestamp of the last meaningful user action so the
session manager can judge inactivity. Writing the mark never
raises and never blocks the action that triggered it.
"""

import time
from typing import Callable

from calmward.storage.kv_store import KeyValueStore
from calmward.utils.logger import get_logger

logger = get_logger(__name__)

LAST_ACTIVITY_KEY = "calmward_last_activity"


def current_millis() -> int:
    """Wall-clock time in milliseconds since epoch."""
    return int(time.time() * 1000)


class ActivityTracker:
    """
    Writes the ActivityMark on qualifying user actions.

    Qualifying actions: sending a chat message, saving a day rating,
    opening a sponsor link, entering a protected screen.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], int] = current_millis,
    ):
        self._store = store
        self._clock = clock

    async def touch(self) -> None:
        """Stamp the ActivityMark with the current time."""
        try:
            await self._store.set(LAST_ACTIVITY_KEY, str(self._clock()))
        except Exception as exc:
            logger.warning(
                "Failed to record activity",
                extra={"error": str(exc)},
            )

    async def clear(self) -> None:
        """Remove the ActivityMark."""
        try:
            await self._store.remove(LAST_ACTIVITY_KEY)
        except Exception as exc:
            logger.warning(
                "Failed to clear activity mark",
                extra={"error": str(exc)},
            )
