"""
selectstart.engine.awards — Award Tier State Machine
=====================================================

Classifies a member's progress on a challenge game into an ordered award
tier, and decides which achievements count toward a challenge month.

This module is pure calculation — no database I/O, no network I/O.

Tier rules, in priority order::

    1. required ids non-empty and all earned in window  → MASTERY
    2. earned count >= win condition                     → BEATEN
    3. earned count > 0                                  → PARTICIPATION
    4. otherwise                                         → NONE

Shadow challenges cap at BEATEN; the cap is applied by callers with
:func:`apply_ceiling` so :func:`classify` stays context-free.

Month window: an achievement counts for a challenge month when it was
earned in ``[month_start, next_month_start)`` **or** on the calendar day
immediately before ``month_start`` (one-day grace for clock/timezone skew).
"""

from __future__ import annotations

import enum
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from selectstart.services.ra_models import GameProgress


class AwardTier(enum.IntEnum):
    NONE = 0
    PARTICIPATION = 1
    BEATEN = 2
    MASTERY = 3


class ChallengeSystem(enum.StrEnum):
    MONTHLY = "monthly"
    SHADOW = "shadow"


SHADOW_CEILING = AwardTier.BEATEN

CEILINGS: dict[ChallengeSystem, AwardTier] = {
    ChallengeSystem.MONTHLY: AwardTier.MASTERY,
    ChallengeSystem.SHADOW: SHADOW_CEILING,
}


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------
def classify(
    required_ids: Collection[str],
    earned_ids: Collection[str],
    total_required: int,
    beaten_threshold: int,
) -> AwardTier:
    """Map achievement progress to an :class:`AwardTier`.

    *beaten_threshold* is the configured win condition (a count).  When it
    is not positive, *total_required* is used instead; when neither is
    positive, BEATEN is unreachable.
    """
    earned = set(earned_ids)
    required = set(required_ids)

    if required and earned >= required:
        return AwardTier.MASTERY

    win_condition = beaten_threshold if beaten_threshold > 0 else total_required
    if win_condition > 0 and len(earned) >= win_condition:
        return AwardTier.BEATEN

    if earned:
        return AwardTier.PARTICIPATION
    return AwardTier.NONE


def apply_ceiling(tier: AwardTier, ceiling: AwardTier) -> AwardTier:
    """Downgrade *tier* to *ceiling* when it exceeds it."""
    return min(tier, ceiling)


# ---------------------------------------------------------------------------
# Month windows
# ---------------------------------------------------------------------------
def month_start(dt: datetime | date) -> datetime:
    """First instant (UTC) of the month containing *dt*."""
    return datetime(dt.year, dt.month, 1, tzinfo=UTC)


def next_month_start(dt: datetime | date) -> datetime:
    if dt.month == 12:
        return datetime(dt.year + 1, 1, 1, tzinfo=UTC)
    return datetime(dt.year, dt.month + 1, 1, tzinfo=UTC)


def period_key(dt: datetime | date) -> str:
    """``"YYYY-MM"`` key used for award records and challenges."""
    return f"{dt.year:04d}-{dt.month:02d}"


def parse_period_key(key: str) -> datetime:
    """Inverse of :func:`period_key`; returns the month start."""
    year, month = key.split("-", 1)
    return datetime(int(year), int(month), 1, tzinfo=UTC)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def earned_in_window(earned_at: datetime | None, start: datetime) -> bool:
    """True if *earned_at* counts for the challenge month beginning at *start*."""
    if earned_at is None:
        return False
    earned_at = _as_utc(earned_at)
    start = month_start(start)
    if start <= earned_at < next_month_start(start):
        return True
    grace_day = (start - timedelta(days=1)).date()
    return earned_at.date() == grace_day


def earned_ids_in_window(progress: GameProgress, start: datetime) -> set[str]:
    """Ids of achievements in *progress* earned within the month window."""
    return {
        ach_id
        for ach_id, ach in progress.achievements.items()
        if earned_in_window(ach.earned_at, start)
    }


# ---------------------------------------------------------------------------
# Award records
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TierProgress:
    tier: AwardTier = AwardTier.NONE
    achieved_count: int = 0


@dataclass(frozen=True, slots=True)
class AwardRecord:
    """Persisted monthly + shadow award state for one subject and month."""

    monthly: TierProgress = field(default_factory=TierProgress)
    shadow: TierProgress = field(default_factory=TierProgress)

    def for_system(self, system: ChallengeSystem) -> TierProgress:
        if system is ChallengeSystem.SHADOW:
            return self.shadow
        return self.monthly


def normalize_ids(ids: Iterable[object]) -> list[str]:
    """Achievement ids arrive as ints or strings; compare them as strings."""
    return [str(i) for i in ids]
