"""
selectstart.services.award_tracker — Challenge awards & achievement feed
=========================================================================

:class:`AwardTracker` classifies a subject's progress on each active
challenge and emits ``tier_increased`` only when the tier beats the one
already persisted for that month.  Because the persisted tier is only
ever raised, a transient drop in the API's reported progress can never
produce a downgrade (or a second announcement of the same tier).

:class:`AchievementFeed` turns a subject's recent unlocks in tracked games
into ``achievement_unlocked`` events.  It does not deduplicate; the
dispatcher checks every id against the subject's announced-id log.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from datetime import UTC, datetime

from selectstart.config import PollingPolicy
from selectstart.database.engine import run_db
from selectstart.engine.awards import (
    CEILINGS,
    apply_ceiling,
    classify,
    earned_ids_in_window,
    parse_period_key,
)
from selectstart.engine.events import EventKind, TransitionEvent
from selectstart.engine.snapshots import ChallengeStanding
from selectstart.services.ra_client import AchievementApi
from selectstart.services.repository import ChallengeTarget, SqlRepository, TrackedSubject

logger = logging.getLogger(__name__)


class AwardTracker:
    def __init__(
        self,
        api: AchievementApi,
        repository: SqlRepository,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.api = api
        self.repository = repository
        self._now = now

    async def measure(
        self, subject: TrackedSubject, target: ChallengeTarget
    ) -> ChallengeStanding | None:
        """Current tier and in-window count, or None when progress is unavailable."""
        result = await self.api.game_progress(subject.username, target.game_id)
        if not result.ok:
            logger.info(
                "No progress for %s on game %d (%s); skipping",
                subject.username, target.game_id, result.error,
            )
            return None

        earned = earned_ids_in_window(result.value, parse_period_key(target.period_key))
        tier = classify(
            target.required_ids, earned, target.total_required, target.beaten_threshold
        )
        return ChallengeStanding(
            subject_key=subject.subject_key,
            username=subject.username,
            tier=apply_ceiling(tier, CEILINGS[target.system]),
            achieved_count=len(earned),
        )

    async def record(
        self,
        subject: TrackedSubject,
        target: ChallengeTarget,
        standing: ChallengeStanding,
    ) -> list[TransitionEvent]:
        """Persist *standing*; one event when it raised the stored tier."""
        tier = standing.tier
        raised = await run_db(
            self.repository.raise_award_tier,
            subject.subject_key,
            target.period_key,
            target.system,
            tier,
            standing.achieved_count,
        )
        if not raised:
            return []

        return [
            TransitionEvent(
                kind=EventKind.TIER_INCREASED,
                subject_key=subject.subject_key,
                entity_id=f"{target.system}:{target.period_key}",
                observed_at=self._now(),
                tier=tier,
                achieved_count=standing.achieved_count,
                system=target.system,
                entity_title=target.game_title,
                details={
                    "username": subject.username,
                    "discord_id": subject.discord_id,
                    "game_id": target.game_id,
                    "total": len(target.required_ids) or target.total_required,
                },
            )
        ]

    async def check_subject(
        self, subject: TrackedSubject, target: ChallengeTarget
    ) -> list[TransitionEvent]:
        """Classify *subject* against *target*; at most one event."""
        standing = await self.measure(subject, target)
        if standing is None:
            return []
        return await self.record(subject, target, standing)


class AchievementFeed:
    def __init__(
        self,
        api: AchievementApi,
        policy: PollingPolicy | None = None,
    ) -> None:
        self.api = api
        self.policy = policy or PollingPolicy()

    async def collect(
        self, subject: TrackedSubject, game_ids: Collection[int]
    ) -> list[TransitionEvent]:
        """Recent unlocks in *game_ids*, oldest first."""
        if not game_ids:
            return []
        result = await self.api.recent_achievements(
            subject.username, self.policy.recent_achievement_minutes
        )
        if not result.ok:
            logger.info("No recent achievements for %s (%s)", subject.username, result.error)
            return []

        wanted = set(game_ids)
        unlocks = [a for a in result.value if a.game_id in wanted and a.earned_at is not None]
        unlocks.sort(key=lambda a: a.earned_at)
        return [
            TransitionEvent(
                kind=EventKind.ACHIEVEMENT_UNLOCKED,
                subject_key=subject.subject_key,
                entity_id=f"game:{a.game_id}",
                observed_at=a.earned_at,
                achievement_id=a.achievement_id,
                entity_title=a.game_title,
                details={
                    "username": subject.username,
                    "discord_id": subject.discord_id,
                    "title": a.title,
                    "description": a.description,
                    "points": a.points,
                    "game_id": a.game_id,
                    "badge_url": a.badge_full_url,
                    "hardcore": a.hardcore,
                },
            )
            for a in unlocks
        ]
