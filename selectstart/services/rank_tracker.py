"""
selectstart.services.rank_tracker — Board & challenge rank diffing
====================================================================

Per tracked board, once per rank cycle::

    fetch (gateway + cache) ──fail──▶ FETCH_FAILED   baseline untouched
        │
        ▼ filter to roster, assign community ranks
    no baseline yet ─────────────────▶ BASELINE       store, no events
        │
        ▼ consistency gate (size change)
    implausible ─────────────────────▶ INCONSISTENT   store, no events, counter += 1
        │
        ▼
    diff against baseline ───────────▶ DIFFED         store, events

Volatile boards are fetched twice, ``reconfirm_delay`` apart; if the two
listings disagree the larger one is used.

Challenge standings (:class:`ChallengeStandingsEngine`) go through the same
baseline, gate and diff steps, fed by the award cycle's progress
measurements instead of a leaderboard fetch.

Snapshots live only in memory (:class:`SnapshotStore`).  After a restart
every board starts again from a silent baseline.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from selectstart.config import PollingPolicy
from selectstart.engine.awards import ChallengeSystem
from selectstart.engine.events import TransitionEvent
from selectstart.engine.snapshots import (
    ChallengeStanding,
    EntitySnapshot,
    build_challenge_snapshot,
    build_snapshot,
    diff_snapshots,
    is_consistent,
    prefer_complete,
    standings_agree,
)
from selectstart.services.ra_client import AchievementApi
from selectstart.services.repository import BoardConfig, ChallengeTarget

logger = logging.getLogger(__name__)


class PollStatus(enum.StrEnum):
    FETCH_FAILED = "fetch_failed"
    BASELINE = "baseline"
    INCONSISTENT = "inconsistent"
    DIFFED = "diffed"


@dataclass(frozen=True, slots=True)
class BoardPollResult:
    board_id: str
    status: PollStatus
    events: list[TransitionEvent] = field(default_factory=list)
    snapshot_size: int = 0


class SnapshotStore:
    """Board id → latest snapshot, plus consecutive inconsistency counts."""

    def __init__(self) -> None:
        self._snapshots: dict[str, EntitySnapshot] = {}
        self._inconsistencies: dict[str, int] = {}

    def get(self, entity_id: str) -> EntitySnapshot | None:
        return self._snapshots.get(entity_id)

    def replace(self, snapshot: EntitySnapshot) -> None:
        self._snapshots[snapshot.entity_id] = snapshot

    def mark_inconsistent(self, entity_id: str) -> int:
        count = self._inconsistencies.get(entity_id, 0) + 1
        self._inconsistencies[entity_id] = count
        return count

    def mark_consistent(self, entity_id: str) -> None:
        self._inconsistencies.pop(entity_id, None)

    def inconsistency_count(self, entity_id: str) -> int:
        return self._inconsistencies.get(entity_id, 0)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)


class RankDiffEngine:
    def __init__(
        self,
        api: AchievementApi,
        store: SnapshotStore,
        policy: PollingPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.api = api
        self.store = store
        self.policy = policy or PollingPolicy()
        self._sleep = sleep
        self._now = now

    async def _fetch(
        self, board: BoardConfig, roster: list[str], *, use_cache: bool
    ) -> EntitySnapshot | None:
        result = await self.api.leaderboard_entries(
            board.leaderboard_id,
            max_entries=self.policy.max_leaderboard_entries,
            use_cache=use_cache,
        )
        if not result.ok:
            logger.warning(
                "Leaderboard fetch failed for %s (%s): %s",
                board.title, result.error, result.detail,
            )
            return None
        return build_snapshot(board.board_id, result.value, roster, self._now())

    async def _fetch_confirmed(
        self, board: BoardConfig, roster: list[str]
    ) -> EntitySnapshot | None:
        first = await self._fetch(board, roster, use_cache=True)
        if first is None or not board.volatile:
            return first

        await self._sleep(self.policy.reconfirm_delay)
        second = await self._fetch(board, roster, use_cache=False)
        if second is None:
            return first
        if standings_agree(
            first, second,
            min_overlap=self.policy.reconfirm_min_overlap,
            max_size_delta=self.policy.reconfirm_max_size_delta,
        ):
            return second
        chosen = prefer_complete(first, second)
        logger.warning(
            "Back-to-back fetches of %s disagree (%d vs %d subjects); using %d",
            board.title, len(first), len(second), len(chosen),
        )
        return chosen

    async def poll_board(
        self, board: BoardConfig, roster: Iterable[str]
    ) -> BoardPollResult:
        """Fetch, gate and diff one board; always leaves a coherent baseline."""
        roster = list(roster)
        current = await self._fetch_confirmed(board, roster)
        if current is None:
            return BoardPollResult(board.board_id, PollStatus.FETCH_FAILED)

        return advance_snapshot(
            self.store,
            current,
            self.policy,
            top_k=board.top_k or self.policy.top_k,
            title=board.title,
        )


class ChallengeStandingsEngine:
    """Roster standings on each active challenge, gated and diffed like a board.

    A subject whose progress could not be measured this cycle keeps their
    last known standing, so one failed request never reads as a fall-out.
    """

    def __init__(
        self,
        store: SnapshotStore | None = None,
        policy: PollingPolicy | None = None,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store if store is not None else SnapshotStore()
        self.policy = policy or PollingPolicy()
        self._now = now
        self._last_known: dict[str, dict[str, ChallengeStanding]] = {}

    @staticmethod
    def entity_id(target: ChallengeTarget) -> str:
        return f"standings:{target.system}:{target.period_key}"

    def poll_challenge(
        self,
        target: ChallengeTarget,
        measured: Mapping[str, ChallengeStanding],
        roster: Iterable[str],
    ) -> BoardPollResult:
        """Rank *roster* (subject keys) on *target* and diff against the baseline."""
        entity_id = self.entity_id(target)
        roster = list(roster)
        if roster and not measured:
            logger.warning("No progress measured for %s; baseline kept", entity_id)
            return BoardPollResult(entity_id, PollStatus.FETCH_FAILED)

        known = self._last_known.get(entity_id, {})
        merged: dict[str, ChallengeStanding] = {}
        for key in roster:
            standing = measured.get(key) or known.get(key)
            if standing is not None:
                merged[key] = standing
        self._last_known[entity_id] = merged

        current = build_challenge_snapshot(
            entity_id,
            merged.values(),
            self._now(),
            total=len(target.required_ids) or target.total_required,
        )
        return advance_snapshot(
            self.store,
            current,
            self.policy,
            top_k=self.policy.challenge_top_k,
            title=target.game_title,
            system=target.system,
        )


def advance_snapshot(
    store: SnapshotStore,
    current: EntitySnapshot,
    policy: PollingPolicy,
    *,
    top_k: int,
    title: str,
    system: ChallengeSystem | None = None,
) -> BoardPollResult:
    """Store *current*; diff it against the previous baseline when plausible."""
    entity_id = current.entity_id
    previous = store.get(entity_id)
    store.replace(current)

    if previous is None:
        logger.info("Baseline for %s established with %d subjects", title, len(current))
        return BoardPollResult(entity_id, PollStatus.BASELINE, snapshot_size=len(current))

    if not is_consistent(
        len(previous), len(current),
        tolerance=policy.consistency_tolerance,
        min_tolerance=policy.consistency_min_tolerance,
    ):
        count = store.mark_inconsistent(entity_id)
        logger.warning(
            "Implausible listing for %s: %d → %d subjects; skipping diff "
            "(%d consecutive)",
            title, len(previous), len(current), count,
        )
        return BoardPollResult(entity_id, PollStatus.INCONSISTENT, snapshot_size=len(current))

    store.mark_consistent(entity_id)
    events = diff_snapshots(
        previous,
        current,
        top_k=top_k,
        observed_at=current.as_of,
        entity_title=title,
        system=system,
    )
    if events:
        logger.info("%s: %d rank changes", title, len(events))
    return BoardPollResult(
        entity_id, PollStatus.DIFFED, events=events, snapshot_size=len(current)
    )
