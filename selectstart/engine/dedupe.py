"""
selectstart.engine.dedupe — Bounded announced-id log
=====================================================

Remembers which achievement ids were already announced for a subject.
The log is an insertion-ordered set capped at ``cap`` entries; once full,
the oldest id is evicted.  Persisted as a plain JSON list on the subject
row.
"""

from __future__ import annotations

from collections.abc import Iterable


class AnnouncedIdLog:
    def __init__(self, ids: Iterable[str] = (), cap: int = 100) -> None:
        if cap < 1:
            raise ValueError(f"cap must be positive, got {cap}")
        self.cap = cap
        # dict preserves insertion order; values unused
        self._ids: dict[str, None] = {}
        for i in ids:
            self.add(str(i))

    def __contains__(self, achievement_id: object) -> bool:
        return str(achievement_id) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, achievement_id: str) -> bool:
        """Record *achievement_id*.  Returns False if it was already present."""
        key = str(achievement_id)
        if key in self._ids:
            return False
        self._ids[key] = None
        while len(self._ids) > self.cap:
            del self._ids[next(iter(self._ids))]
        return True

    def to_list(self) -> list[str]:
        return list(self._ids)
