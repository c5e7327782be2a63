"""
selectstart.engine.snapshots — Standings Snapshots & Diff
==========================================================

Pure functions behind the rank tracker.  Nothing here performs I/O;
:mod:`selectstart.services.rank_tracker` owns fetching and the stored
baselines.

Community ranks
---------------
A board may hold thousands of entries, but only tracked subjects matter.
:func:`build_snapshot` drops everyone else, orders the survivors by their
API rank and numbers them ``1..n``.  Those *community* ranks are what the
diff compares, so an untracked player moving around never produces an
event.

Challenge standings are snapshots too: :func:`build_challenge_snapshot`
ranks the roster on a challenge game by award tier and achievement count,
and the same diff runs over them.

Diff rules (``K`` = interesting zone)
-------------------------------------
For each subject currently at rank ``<= K``:

- absent from the previous snapshot      → ``entered_top_k``
- rank number went down (better)         → ``rank_improved``
- rank number went up, previously ``<= K`` → ``rank_decreased``

For each subject previously at rank ``<= K`` now absent or ``> K``
→ ``fell_out_of_top_k`` (new rank ``999`` when absent).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING

from selectstart.constants import UNRANKED
from selectstart.engine.awards import AwardTier, ChallengeSystem
from selectstart.engine.events import EventKind, TransitionEvent

if TYPE_CHECKING:
    from selectstart.services.ra_models import LeaderboardEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StandingEntry:
    community_rank: int
    api_rank: int
    score_text: str
    username: str = ""


@dataclass(frozen=True, slots=True)
class EntitySnapshot:
    """Immutable standings of tracked subjects on one board."""

    entity_id: str
    as_of: datetime
    entries: Mapping[str, StandingEntry] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the mapping so a stored baseline can never be patched
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def __len__(self) -> int:
        return len(self.entries)

    def top(self, k: int) -> list[tuple[str, StandingEntry]]:
        """Subjects with community rank ``<= k``, best first."""
        return sorted(
            ((key, e) for key, e in self.entries.items() if e.community_rank <= k),
            key=lambda item: item[1].community_rank,
        )


# ---------------------------------------------------------------------------
# Building
# ---------------------------------------------------------------------------
def build_snapshot(
    entity_id: str,
    entries: Iterable[LeaderboardEntry],
    roster: Iterable[str],
    as_of: datetime,
) -> EntitySnapshot:
    """Filter *entries* to tracked usernames in *roster* and rank them.

    Matching is case-insensitive; keys in the snapshot are lower-cased
    usernames.  Ties in API rank keep feed order.
    """
    tracked = {name.strip().lower() for name in roster if name}
    kept = [
        e for e in entries
        if e.user and e.user.strip().lower() in tracked
    ]
    kept.sort(key=lambda e: e.rank)

    standings: dict[str, StandingEntry] = {}
    for entry in kept:
        key = entry.user.strip().lower()
        if key in standings:
            # Duplicated row in a glitched page; first (best) one wins
            continue
        standings[key] = StandingEntry(
            community_rank=len(standings) + 1,
            api_rank=entry.rank,
            score_text=entry.score_text,
            username=entry.user.strip(),
        )
    return EntitySnapshot(entity_id=entity_id, as_of=as_of, entries=standings)


@dataclass(frozen=True, slots=True)
class ChallengeStanding:
    """One subject's measured progress on a challenge game this month."""

    subject_key: str
    username: str
    tier: AwardTier
    achieved_count: int


def build_challenge_snapshot(
    entity_id: str,
    standings: Iterable[ChallengeStanding],
    as_of: datetime,
    total: int = 0,
) -> EntitySnapshot:
    """Rank challenge participants by tier, then achievement count.

    Subjects with nothing earned are not participants.  Equal
    ``(tier, count)`` pairs share a rank and the next rank is skipped
    (``1, 1, 3``), so a tie forming is not reported as an overtake.
    """
    ranked = sorted(
        (s for s in standings if s.achieved_count > 0),
        key=lambda s: (-s.tier, -s.achieved_count, s.subject_key),
    )
    entries: dict[str, StandingEntry] = {}
    rank = 0
    previous: tuple[int, int] | None = None
    for position, s in enumerate(ranked, start=1):
        if (s.tier, s.achieved_count) != previous:
            rank = position
            previous = (s.tier, s.achieved_count)
        entries[s.subject_key] = StandingEntry(
            community_rank=rank,
            api_rank=rank,
            score_text=f"{s.achieved_count}/{total}" if total else str(s.achieved_count),
            username=s.username,
        )
    return EntitySnapshot(entity_id=entity_id, as_of=as_of, entries=entries)


# ---------------------------------------------------------------------------
# Data-quality checks
# ---------------------------------------------------------------------------
def is_consistent(
    previous_size: int,
    current_size: int,
    tolerance: float = 0.2,
    min_tolerance: int = 1,
) -> bool:
    """False when the size change exceeds ``max(min_tolerance, ⌊prev·tolerance⌋)``."""
    allowed = max(min_tolerance, math.floor(previous_size * tolerance))
    return abs(current_size - previous_size) <= allowed


def standings_agree(
    first: EntitySnapshot,
    second: EntitySnapshot,
    min_overlap: float = 0.9,
    max_size_delta: int = 1,
) -> bool:
    """Whether two back-to-back fetches describe the same board."""
    size_a, size_b = len(first), len(second)
    if abs(size_a - size_b) > max_size_delta:
        return False
    smaller = min(size_a, size_b)
    if smaller == 0:
        return size_a == size_b
    common = len(first.entries.keys() & second.entries.keys())
    return common / smaller >= min_overlap


def prefer_complete(first: EntitySnapshot, second: EntitySnapshot) -> EntitySnapshot:
    """The larger snapshot; the later one on a tie."""
    return second if len(second) >= len(first) else first


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------
def diff_snapshots(
    previous: EntitySnapshot,
    current: EntitySnapshot,
    top_k: int,
    observed_at: datetime,
    entity_title: str | None = None,
    system: ChallengeSystem | None = None,
) -> list[TransitionEvent]:
    """Transition events between two snapshots of the same entity.

    Output order: current subjects by community rank, then fell-out
    subjects by their previous rank.  *system* tags events from challenge
    standings so they route apart from leaderboard ranks.
    """
    events: list[TransitionEvent] = []

    def _event(kind, key, prev_rank, new_rank, entry: StandingEntry | None):
        if entry is not None:
            details = {
                "username": entry.username or key,
                "score": entry.score_text,
                "api_rank": entry.api_rank,
            }
        else:
            details = {"username": previous.entries[key].username or key}
        return TransitionEvent(
            kind=kind,
            subject_key=key,
            entity_id=current.entity_id,
            observed_at=observed_at,
            previous_rank=prev_rank,
            new_rank=new_rank,
            system=system,
            entity_title=entity_title,
            details=details,
        )

    for key, cur in current.top(top_k):
        prev = previous.entries.get(key)
        if prev is None:
            events.append(_event(EventKind.ENTERED_TOP_K, key, None, cur.community_rank, cur))
        elif cur.community_rank < prev.community_rank:
            events.append(_event(
                EventKind.RANK_IMPROVED, key, prev.community_rank, cur.community_rank, cur
            ))
        elif cur.community_rank > prev.community_rank and prev.community_rank <= top_k:
            events.append(_event(
                EventKind.RANK_DECREASED, key, prev.community_rank, cur.community_rank, cur
            ))

    for key, prev in previous.top(top_k):
        cur = current.entries.get(key)
        if cur is None or cur.community_rank > top_k:
            events.append(_event(
                EventKind.FELL_OUT_OF_TOP_K,
                key,
                prev.community_rank,
                cur.community_rank if cur is not None else UNRANKED,
                cur,
            ))

    logger.debug(
        "Diffed %s: %d → %d subjects, %d events",
        current.entity_id, len(previous), len(current), len(events),
    )
    return events
