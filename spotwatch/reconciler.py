from __future__ import annotations

import logging
from typing import Awaitable, Callable

from spotwatch.domain import Snapshot, SnapshotKey, SpotChange, SpotInfo

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], Awaitable[None]]


class Reconciler:
    """Keeps the last observed spots per appointment and reports changes.

    The retained state is not locked. Only the task driving the poll loop
    may call :meth:`merge`, and only after all program polls of the cycle
    have finished.
    """

    def __init__(self, notify: Notify):
        self._notify = notify
        self._state: dict[SnapshotKey, SpotInfo] = {}

    def __len__(self) -> int:
        return len(self._state)

    def get(self, key: SnapshotKey) -> SpotInfo | None:
        return self._state.get(key)

    async def merge(self, snapshot: Snapshot) -> list[SpotChange]:
        changes: list[SpotChange] = []

        for key, info in snapshot.items():
            previous = self._state.get(key)

            if previous is None:
                # First sighting only sets the baseline.
                logger.info(
                    "New tracking: %s (%s) on %s @ %s - %s",
                    info.program_name,
                    info.product_name,
                    info.date,
                    info.time,
                    info.spots,
                )
            elif previous.spots != info.spots:
                change = SpotChange(key=key, previous=previous, current=info)
                logger.info("Change detected: %s", change.message)
                changes.append(change)
                await self._deliver(change)

            # Keys missing from this snapshot are kept as they are.
            self._state[key] = info

        return changes

    async def _deliver(self, change: SpotChange) -> None:
        try:
            await self._notify(change.title, change.message)
        except Exception as e:
            logger.warning("Failed to send notification (%s: %s)", type(e).__name__, e)
