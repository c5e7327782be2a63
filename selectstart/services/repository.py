"""
selectstart.services.repository — Persistence boundary
=======================================================

All database reads and writes the trackers need, as **synchronous**
methods on :class:`SqlRepository`.  Async callers wrap each call in
:func:`selectstart.database.engine.run_db`.

Rows never leave this module: every method returns frozen dataclasses
(:class:`TrackedSubject`, :class:`BoardConfig`, :class:`ChallengeTarget`,
:class:`~selectstart.engine.awards.AwardRecord`) so nothing downstream
touches a detached ORM instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from selectstart.database.engine import get_session
from selectstart.database.models import AwardRecordRow, Challenge, Subject, TrackedBoard
from selectstart.engine.awards import (
    AwardRecord,
    AwardTier,
    ChallengeSystem,
    TierProgress,
    normalize_ids,
    period_key,
)
from selectstart.engine.dedupe import AnnouncedIdLog

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TrackedSubject:
    subject_key: str          # lower-cased RA username
    username: str
    discord_id: int | None = None


@dataclass(frozen=True, slots=True)
class BoardConfig:
    board_id: str
    leaderboard_id: int
    title: str
    game_id: int | None = None
    top_k: int | None = None
    volatile: bool = False


@dataclass(frozen=True, slots=True)
class ChallengeTarget:
    """One (system, month) challenge a subject's progress is classified against."""

    system: ChallengeSystem
    period_key: str
    game_id: int
    game_title: str
    required_ids: tuple[str, ...]
    total_required: int
    beaten_threshold: int


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------
class SqlRepository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @staticmethod
    def _subject_by_key(session: Session, subject_key: str) -> Subject | None:
        return session.scalar(
            select(Subject).where(func.lower(Subject.ra_username) == subject_key.lower())
        )

    # -- Roster ---------------------------------------------------------
    def load_roster(self) -> list[TrackedSubject]:
        """Active subjects, ordered by key."""
        with get_session(self.engine) as session:
            rows = session.scalars(select(Subject).where(Subject.active.is_(True))).all()
            roster = [
                TrackedSubject(subject_key=r.key, username=r.ra_username, discord_id=r.discord_id)
                for r in rows
            ]
        return sorted(roster, key=lambda s: s.subject_key)

    def upsert_subject(self, username: str, discord_id: int | None = None) -> TrackedSubject:
        username = username.strip()
        with get_session(self.engine) as session:
            row = self._subject_by_key(session, username)
            if row is None:
                row = Subject(ra_username=username, discord_id=discord_id, active=True,
                              announced_achievements=[])
                session.add(row)
                logger.info("Registered subject %s", username)
            else:
                row.active = True
                if discord_id is not None:
                    row.discord_id = discord_id
            session.flush()
            return TrackedSubject(
                subject_key=row.key, username=row.ra_username, discord_id=row.discord_id
            )

    # -- Tracked entities -----------------------------------------------
    def load_boards(self) -> list[BoardConfig]:
        """Active boards in stable ``board_id`` order."""
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(TrackedBoard)
                .where(TrackedBoard.active.is_(True))
                .order_by(TrackedBoard.board_id)
            ).all()
            return [
                BoardConfig(
                    board_id=r.board_id,
                    leaderboard_id=r.leaderboard_id,
                    title=r.title,
                    game_id=r.game_id,
                    top_k=r.top_k,
                    volatile=bool(r.volatile),
                )
                for r in rows
            ]

    def load_challenge_targets(self, now: datetime) -> list[ChallengeTarget]:
        """Monthly (and revealed shadow) targets for the month containing *now*."""
        key = period_key(now)
        with get_session(self.engine) as session:
            row = session.scalar(select(Challenge).where(Challenge.period_key == key))
            if row is None:
                return []
            targets = [
                ChallengeTarget(
                    system=ChallengeSystem.MONTHLY,
                    period_key=key,
                    game_id=row.game_id,
                    game_title=row.game_title or f"Game {row.game_id}",
                    required_ids=tuple(normalize_ids(row.required_achievements or [])),
                    total_required=row.total_achievements or 0,
                    beaten_threshold=row.beaten_threshold or 0,
                )
            ]
            if row.shadow_game_id and row.shadow_revealed:
                targets.append(ChallengeTarget(
                    system=ChallengeSystem.SHADOW,
                    period_key=key,
                    game_id=row.shadow_game_id,
                    game_title=row.shadow_game_title or f"Game {row.shadow_game_id}",
                    required_ids=tuple(normalize_ids(row.shadow_required_achievements or [])),
                    total_required=row.shadow_total_achievements or 0,
                    beaten_threshold=row.shadow_beaten_threshold or 0,
                ))
            return targets

    # -- Award records --------------------------------------------------
    def load_award_record(self, subject_key: str, period: str) -> AwardRecord:
        with get_session(self.engine) as session:
            subject = self._subject_by_key(session, subject_key)
            if subject is None:
                return AwardRecord()
            row = session.get(AwardRecordRow, (subject.id, period))
            if row is None:
                return AwardRecord()
            return AwardRecord(
                monthly=TierProgress(AwardTier(row.monthly_tier), row.monthly_count),
                shadow=TierProgress(AwardTier(row.shadow_tier), row.shadow_count),
            )

    def raise_award_tier(
        self,
        subject_key: str,
        period: str,
        system: ChallengeSystem,
        tier: AwardTier,
        achieved_count: int,
    ) -> bool:
        """Store *tier* only if it beats the stored one.  Returns True when raised."""
        with get_session(self.engine) as session:
            subject = self._subject_by_key(session, subject_key)
            if subject is None:
                logger.warning("raise_award_tier: unknown subject %s", subject_key)
                return False
            row = session.get(AwardRecordRow, (subject.id, period))
            if row is None:
                row = AwardRecordRow(
                    subject_id=subject.id, period_key=period,
                    monthly_tier=0, monthly_count=0, shadow_tier=0, shadow_count=0,
                )
                session.add(row)

            if system is ChallengeSystem.SHADOW:
                if tier <= row.shadow_tier:
                    return False
                row.shadow_tier = int(tier)
                row.shadow_count = achieved_count
            else:
                if tier <= row.monthly_tier:
                    return False
                row.monthly_tier = int(tier)
                row.monthly_count = achieved_count
            logger.info(
                "%s %s award for %s raised to %s (%d achievements)",
                period, system, subject_key, tier.name, achieved_count,
            )
            return True

    # -- Announced ids --------------------------------------------------
    def is_announced(self, subject_key: str, achievement_id: str) -> bool:
        with get_session(self.engine) as session:
            subject = self._subject_by_key(session, subject_key)
            if subject is None:
                return False
            return str(achievement_id) in (subject.announced_achievements or [])

    def record_announced(self, subject_key: str, achievement_id: str, cap: int = 100) -> bool:
        """Add *achievement_id* to the subject's log.  False if already there."""
        with get_session(self.engine) as session:
            subject = self._subject_by_key(session, subject_key)
            if subject is None:
                logger.warning("record_announced: unknown subject %s", subject_key)
                return False
            log = AnnouncedIdLog(subject.announced_achievements or [], cap=cap)
            if not log.add(str(achievement_id)):
                return False
            # Reassign so the JSON column is flagged dirty
            subject.announced_achievements = log.to_list()
            return True
