"""
selectstart.database.models — SQLAlchemy 2.0 Data Models
=========================================================

Tables:
- subjects        — Tracked community members (RA username ↔ Discord id)
- award_records   — Per-subject, per-month monthly/shadow award tiers
- tracked_boards  — Leaderboards whose standings are diffed
- challenges      — Monthly (and shadow) challenge game configuration
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Select Start ORM models."""


# ---------------------------------------------------------------------------
# Subjects — one row per tracked member
# ---------------------------------------------------------------------------
class Subject(Base):
    __tablename__ = "subjects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ra_username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    discord_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Ordered list of already-announced achievement ids, oldest first
    announced_achievements: Mapped[list] = mapped_column(JsonColumn, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    awards: Mapped[list[AwardRecordRow]] = relationship(
        back_populates="subject", cascade="all, delete-orphan"
    )

    @property
    def key(self) -> str:
        return self.ra_username.lower()

    def __repr__(self) -> str:
        return f"<Subject id={self.id} ra={self.ra_username!r}>"


# ---------------------------------------------------------------------------
# AwardRecordRow — monthly + shadow tiers for one subject and one month
# ---------------------------------------------------------------------------
class AwardRecordRow(Base):
    __tablename__ = "award_records"

    subject_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subjects.id", ondelete="CASCADE"), primary_key=True
    )
    period_key: Mapped[str] = mapped_column(String(7), primary_key=True)  # "YYYY-MM"
    monthly_tier: Mapped[int] = mapped_column(Integer, default=0)
    monthly_count: Mapped[int] = mapped_column(Integer, default=0)
    shadow_tier: Mapped[int] = mapped_column(Integer, default=0)
    shadow_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    subject: Mapped[Subject] = relationship(back_populates="awards")

    def __repr__(self) -> str:
        return (
            f"<AwardRecordRow subject={self.subject_id} period={self.period_key} "
            f"monthly={self.monthly_tier} shadow={self.shadow_tier}>"
        )


# ---------------------------------------------------------------------------
# TrackedBoard — leaderboards whose standings are diffed every rank cycle
# ---------------------------------------------------------------------------
class TrackedBoard(Base):
    __tablename__ = "tracked_boards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    leaderboard_id: Mapped[int] = mapped_column(Integer, nullable=False)
    game_id: Mapped[int | None] = mapped_column(Integer, default=None)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    top_k: Mapped[int | None] = mapped_column(Integer, default=None)  # None → policy default
    volatile: Mapped[bool] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<TrackedBoard {self.board_id!r} lb={self.leaderboard_id}>"


# ---------------------------------------------------------------------------
# Challenge — one row per challenge month
# ---------------------------------------------------------------------------
class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period_key: Mapped[str] = mapped_column(String(7), nullable=False)
    game_id: Mapped[int] = mapped_column(Integer, nullable=False)
    game_title: Mapped[str | None] = mapped_column(String(200), default=None)
    required_achievements: Mapped[list] = mapped_column(JsonColumn, default=list)
    total_achievements: Mapped[int] = mapped_column(Integer, default=0)
    beaten_threshold: Mapped[int] = mapped_column(Integer, default=0)

    shadow_game_id: Mapped[int | None] = mapped_column(Integer, default=None)
    shadow_game_title: Mapped[str | None] = mapped_column(String(200), default=None)
    shadow_required_achievements: Mapped[list] = mapped_column(JsonColumn, default=list)
    shadow_total_achievements: Mapped[int] = mapped_column(Integer, default=0)
    shadow_beaten_threshold: Mapped[int] = mapped_column(Integer, default=0)
    shadow_revealed: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("period_key", name="uq_challenges_period"),
    )

    def __repr__(self) -> str:
        return f"<Challenge period={self.period_key} game={self.game_id}>"
