"""
selectstart.services.tracking_service — Poll cycle composition
===============================================================

The two jobs the schedulers run:

- :meth:`TrackingService.run_rank_cycle` — every tracked board, diffed and
  dispatched.
- :meth:`TrackingService.run_award_cycle` — every tracked subject, checked
  against the month's challenges, plus their recent unlocks in tracked
  games.  The progress measured along the way then feeds one standings
  diff per challenge.

Entities are processed one at a time in a stable order with a fixed
pause between them.  Each entity runs inside its own ``try/except``: one
broken board or subject is logged and skipped, never the whole cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from selectstart.config import PollingPolicy
from selectstart.constants import game_url, leaderboard_url
from selectstart.database.engine import run_db
from selectstart.engine.snapshots import ChallengeStanding
from selectstart.services.award_tracker import AchievementFeed, AwardTracker
from selectstart.services.dispatcher import NotificationDispatcher
from selectstart.services.ra_client import AchievementApi
from selectstart.services.rank_tracker import (
    ChallengeStandingsEngine,
    PollStatus,
    RankDiffEngine,
)
from selectstart.services.repository import (
    BoardConfig,
    ChallengeTarget,
    SqlRepository,
    TrackedSubject,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CycleReport:
    entities: int = 0
    events: int = 0
    failures: int = 0
    skipped: int = 0


class TrackingService:
    def __init__(
        self,
        repository: SqlRepository,
        api: AchievementApi,
        rank_engine: RankDiffEngine,
        award_tracker: AwardTracker,
        feed: AchievementFeed,
        dispatcher: NotificationDispatcher,
        policy: PollingPolicy | None = None,
        *,
        standings: ChallengeStandingsEngine | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.repository = repository
        self.api = api
        self.rank_engine = rank_engine
        self.award_tracker = award_tracker
        self.feed = feed
        self.dispatcher = dispatcher
        self.policy = policy or PollingPolicy()
        self.standings = standings or ChallengeStandingsEngine(policy=self.policy, now=now)
        self._sleep = sleep
        self._now = now

    # -------------------------------------------------------------------
    # Rank cycle
    # -------------------------------------------------------------------
    async def run_rank_cycle(self) -> CycleReport:
        report = CycleReport()
        boards = sorted(await run_db(self.repository.load_boards), key=lambda b: b.board_id)
        roster = await run_db(self.repository.load_roster)
        usernames = [s.username for s in roster]
        logger.info("Rank cycle: %d boards, %d subjects", len(boards), len(usernames))

        for i, board in enumerate(boards):
            if i:
                await self._sleep(self.policy.inter_entity_delay)
            report.entities += 1
            try:
                result = await self.rank_engine.poll_board(board, usernames)
                if result.status is PollStatus.FETCH_FAILED:
                    report.skipped += 1
                    continue
                if result.events:
                    report.events += len(result.events)
                    extras = await self._board_extras(board)
                    await self.dispatcher.dispatch_many(result.events, {board.board_id: extras})
            except Exception:
                report.failures += 1
                logger.exception("Rank check failed for board %s", board.board_id)

        self.dispatcher.throttle.prune()
        logger.info(
            "Rank cycle done: %d boards, %d events, %d skipped, %d failed",
            report.entities, report.events, report.skipped, report.failures,
        )
        return report

    async def _board_extras(self, board: BoardConfig) -> dict[str, Any]:
        """Standings and artwork for a board's rank-change message."""
        extras: dict[str, Any] = {}
        snapshot = self.rank_engine.store.get(board.board_id)
        if snapshot is not None:
            top_k = board.top_k or self.policy.top_k
            extras["standings"] = [
                (entry.username or key, entry.community_rank, entry.score_text)
                for key, entry in snapshot.top(top_k)
            ]
        if board.game_id:
            info = await self.api.game_info(board.game_id)
            if info.ok:
                extras["thumbnail_url"] = info.value.icon_url
        extras["url"] = leaderboard_url(board.leaderboard_id)
        return extras

    # -------------------------------------------------------------------
    # Award cycle
    # -------------------------------------------------------------------
    async def run_award_cycle(self) -> CycleReport:
        report = CycleReport()
        now = self._now()
        targets = await run_db(self.repository.load_challenge_targets, now)
        roster = await run_db(self.repository.load_roster)
        boards = await run_db(self.repository.load_boards)
        game_ids = {t.game_id for t in targets} | {b.game_id for b in boards if b.game_id}
        logger.info(
            "Award cycle: %d subjects, %d challenges, %d games",
            len(roster), len(targets), len(game_ids),
        )

        measured: dict[str, dict[str, ChallengeStanding]] = {
            self.standings.entity_id(t): {} for t in targets
        }
        for i, subject in enumerate(roster):
            if i:
                await self._sleep(self.policy.inter_entity_delay)
            report.entities += 1
            try:
                events = []
                for target in targets:
                    standing = await self.award_tracker.measure(subject, target)
                    if standing is None:
                        continue
                    measured[self.standings.entity_id(target)][subject.subject_key] = standing
                    events.extend(await self.award_tracker.record(subject, target, standing))
                events.extend(await self.feed.collect(subject, game_ids))
                if events:
                    report.events += len(events)
                    await self.dispatcher.dispatch_many(events)
            except Exception:
                report.failures += 1
                logger.exception("Award check failed for %s", subject.username)

        for target in targets:
            await self._post_standings(
                target, measured[self.standings.entity_id(target)], roster, report
            )

        logger.info(
            "Award cycle done: %d subjects, %d events, %d failed",
            report.entities, report.events, report.failures,
        )
        return report

    async def _post_standings(
        self,
        target: ChallengeTarget,
        measured: dict[str, ChallengeStanding],
        roster: list[TrackedSubject],
        report: CycleReport,
    ) -> None:
        entity_id = self.standings.entity_id(target)
        try:
            result = self.standings.poll_challenge(
                target, measured, [s.subject_key for s in roster]
            )
            if result.events:
                report.events += len(result.events)
                extras = await self._challenge_extras(target)
                await self.dispatcher.dispatch_many(result.events, {entity_id: extras})
        except Exception:
            report.failures += 1
            logger.exception("Standings check failed for %s", entity_id)

    async def _challenge_extras(self, target: ChallengeTarget) -> dict[str, Any]:
        extras: dict[str, Any] = {}
        snapshot = self.standings.store.get(self.standings.entity_id(target))
        if snapshot is not None:
            extras["standings"] = [
                (entry.username or key, entry.community_rank, entry.score_text)
                for key, entry in snapshot.top(self.policy.challenge_top_k)
            ]
        info = await self.api.game_info(target.game_id)
        if info.ok:
            extras["thumbnail_url"] = info.value.icon_url
        extras["url"] = game_url(target.game_id)
        return extras
