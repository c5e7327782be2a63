"""
selectstart.engine.events — Transition Event Model
===================================================

Every observable change the trackers detect is reduced to a single
immutable :class:`TransitionEvent`.  The dispatcher routes events by
:class:`AlertType`, which is derived from the event kind and, for rank and
award events, the challenge system.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from selectstart.engine.awards import AwardTier, ChallengeSystem


class EventKind(enum.StrEnum):
    ENTERED_TOP_K = "entered_top_k"
    RANK_IMPROVED = "rank_improved"
    RANK_DECREASED = "rank_decreased"
    FELL_OUT_OF_TOP_K = "fell_out_of_top_k"
    TIER_INCREASED = "tier_increased"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


RANK_KINDS = frozenset({
    EventKind.ENTERED_TOP_K,
    EventKind.RANK_IMPROVED,
    EventKind.RANK_DECREASED,
    EventKind.FELL_OUT_OF_TOP_K,
})


class AlertType(enum.StrEnum):
    BOARD_RANKS = "board_ranks"
    CHALLENGE_RANKS = "challenge_ranks"
    MONTHLY_AWARD = "monthly_award"
    SHADOW_AWARD = "shadow_award"
    ACHIEVEMENT = "achievement"


@dataclass(frozen=True, slots=True)
class TransitionEvent:
    """One detected change for one subject on one tracked entity."""

    kind: EventKind
    subject_key: str
    entity_id: str
    observed_at: datetime
    previous_rank: int | None = None
    new_rank: int | None = None
    tier: AwardTier | None = None
    achieved_count: int | None = None
    achievement_id: str | None = None
    system: ChallengeSystem | None = None
    entity_title: str | None = None
    details: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_rank_event(self) -> bool:
        return self.kind in RANK_KINDS


def alert_type_for(event: TransitionEvent) -> AlertType:
    """Routing key for *event*."""
    if event.kind in RANK_KINDS:
        # challenge standings carry their system; leaderboard ranks do not
        if event.system is not None:
            return AlertType.CHALLENGE_RANKS
        return AlertType.BOARD_RANKS
    if event.kind is EventKind.TIER_INCREASED:
        if event.system is ChallengeSystem.SHADOW:
            return AlertType.SHADOW_AWARD
        return AlertType.MONTHLY_AWARD
    return AlertType.ACHIEVEMENT
