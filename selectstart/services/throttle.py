"""
selectstart.services.throttle — Per-entity alert throttle
==========================================================

At most one notification per entity (board) per ``min_interval`` seconds.
An event that arrives inside the window is dropped, not queued: a late
rank alert is stale by the time it would be sent.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class AlertThrottle:
    def __init__(
        self,
        min_interval: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._last_sent: dict[str, float] = {}

    def is_allowed(self, entity_id: str) -> bool:
        """Return True and mark *entity_id* as alerted; False → caller drops."""
        now = self._clock()
        last = self._last_sent.get(entity_id)
        if last is not None and now - last < self.min_interval:
            logger.info(
                "Alert for %s suppressed: last one %.0f min ago (minimum %.0f min)",
                entity_id, (now - last) / 60, self.min_interval / 60,
            )
            return False
        self._last_sent[entity_id] = now
        return True

    def last_sent(self, entity_id: str) -> float | None:
        return self._last_sent.get(entity_id)

    def prune(self) -> int:
        """Forget entities whose window has closed."""
        now = self._clock()
        stale = [e for e, t in self._last_sent.items() if now - t >= self.min_interval]
        for e in stale:
            del self._last_sent[e]
        return len(stale)
