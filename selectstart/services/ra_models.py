"""
selectstart.services.ra_models — Decoded RetroAchievements records
===================================================================

The RetroAchievements Web API is inconsistent across endpoints and
versions: ``User`` vs ``user``, ranks as strings, scores under four
different keys, achievement lists as dicts *or* lists.  Every payload is
decoded here into a strongly-typed pydantic model, with absent fields
defaulted at the boundary so business logic never probes raw dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from selectstart.constants import RA_SITE_URL

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = ("Results", "results", "data", "Data", "Entries", "entries")


def _parse_ra_datetime(value: Any) -> datetime | None:
    """``"2024-05-01 12:34:56"`` (server time, UTC) → aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


class _RAModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
class LeaderboardEntry(_RAModel):
    user: str = Field(
        default="", validation_alias=AliasChoices("User", "user", "Username", "username")
    )
    # a row without a positive rank cannot be placed; decode_rows drops it
    rank: int = Field(gt=0, validation_alias=AliasChoices("Rank", "rank"))
    score_text: str = Field(
        default="",
        validation_alias=AliasChoices(
            "FormattedScore", "formattedScore", "ScoreFormatted", "scoreFormatted"
        ),
    )
    score: float | None = Field(
        default=None, validation_alias=AliasChoices("Score", "score", "Value", "value")
    )

    @field_validator("user", mode="before")
    @classmethod
    def _strip_user(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("score_text", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @model_validator(mode="after")
    def _default_score_text(self) -> LeaderboardEntry:
        if not self.score_text:
            if self.score is None:
                text = "0"
            elif float(self.score).is_integer():
                text = str(int(self.score))
            else:
                text = str(self.score)
            object.__setattr__(self, "score_text", text)
        return self


@dataclass(frozen=True, slots=True)
class LeaderboardPage:
    """Decoded rows of one page plus how many rows the server actually sent."""

    entries: list[LeaderboardEntry]
    row_count: int


# ---------------------------------------------------------------------------
# Game progress
# ---------------------------------------------------------------------------
class AchievementProgress(_RAModel):
    id: str = Field(validation_alias=AliasChoices("ID", "id", "AchievementID", "achievementId"))
    title: str = Field(default="", validation_alias=AliasChoices("Title", "title"))
    points: int = Field(default=0, validation_alias=AliasChoices("Points", "points"))
    earned_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("DateEarned", "dateEarned")
    )
    earned_hardcore_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("DateEarnedHardcore", "dateEarnedHardcore"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)

    @field_validator("earned_at", "earned_hardcore_at", mode="before")
    @classmethod
    def _dates(cls, v: Any) -> datetime | None:
        return _parse_ra_datetime(v)

    @model_validator(mode="after")
    def _hardcore_counts_as_earned(self) -> AchievementProgress:
        if self.earned_at is None and self.earned_hardcore_at is not None:
            object.__setattr__(self, "earned_at", self.earned_hardcore_at)
        return self


class GameProgress(_RAModel):
    game_id: int = Field(default=0, validation_alias=AliasChoices("ID", "id", "GameID", "gameId"))
    title: str = Field(default="", validation_alias=AliasChoices("Title", "title"))
    image_icon: str = Field(
        default="", validation_alias=AliasChoices("ImageIcon", "imageIcon", "GameIcon")
    )
    achievements: dict[str, AchievementProgress] = Field(
        default_factory=dict, validation_alias=AliasChoices("Achievements", "achievements")
    )

    @field_validator("achievements", mode="before")
    @classmethod
    def _keyed_by_id(cls, v: Any) -> dict[str, Any]:
        """Accept ``{"123": {...}}``, ``[{"ID": 123, ...}]`` or nothing."""
        if not v:
            return {}
        items: list[tuple[Any, Any]]
        if isinstance(v, dict):
            items = list(v.items())
        elif isinstance(v, list):
            items = [(None, a) for a in v]
        else:
            return {}
        result: dict[str, Any] = {}
        for key, raw in items:
            if not isinstance(raw, dict):
                continue
            if not any(k in raw for k in ("ID", "id", "AchievementID", "achievementId")):
                if key is None:
                    continue
                raw = {**raw, "ID": key}
            try:
                ach = AchievementProgress.model_validate(raw)
            except ValidationError:
                logger.debug("Skipping malformed achievement row: %r", raw)
                continue
            result[ach.id] = ach
        return result

    @property
    def earned_ids(self) -> set[str]:
        return {a.id for a in self.achievements.values() if a.earned_at is not None}


# ---------------------------------------------------------------------------
# Recent achievements
# ---------------------------------------------------------------------------
class RecentAchievement(_RAModel):
    achievement_id: str = Field(
        validation_alias=AliasChoices("AchievementID", "achievementId", "ID", "id")
    )
    title: str = Field(default="", validation_alias=AliasChoices("Title", "title"))
    description: str = Field(
        default="", validation_alias=AliasChoices("Description", "description")
    )
    points: int = Field(default=0, validation_alias=AliasChoices("Points", "points"))
    game_id: int = Field(default=0, validation_alias=AliasChoices("GameID", "gameId"))
    game_title: str = Field(default="", validation_alias=AliasChoices("GameTitle", "gameTitle"))
    badge_url: str = Field(default="", validation_alias=AliasChoices("BadgeURL", "badgeUrl"))
    hardcore: bool = Field(
        default=False, validation_alias=AliasChoices("HardcoreMode", "hardcoreMode")
    )
    earned_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("Date", "date", "DateEarned", "dateEarned")
    )

    @field_validator("achievement_id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)

    @field_validator("earned_at", mode="before")
    @classmethod
    def _date(cls, v: Any) -> datetime | None:
        return _parse_ra_datetime(v)

    @field_validator("hardcore", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> bool:
        return str(v).strip().lower() in {"1", "true"}

    @property
    def badge_full_url(self) -> str | None:
        if not self.badge_url:
            return None
        if self.badge_url.startswith("http"):
            return self.badge_url
        return f"https://media.retroachievements.org{self.badge_url}"


# ---------------------------------------------------------------------------
# Game info
# ---------------------------------------------------------------------------
class GameInfo(_RAModel):
    game_id: int = Field(default=0, validation_alias=AliasChoices("ID", "id", "GameID"))
    title: str = Field(default="", validation_alias=AliasChoices("Title", "title", "GameTitle"))
    console_name: str = Field(
        default="", validation_alias=AliasChoices("ConsoleName", "consoleName", "Console")
    )
    image_icon: str = Field(
        default="", validation_alias=AliasChoices("ImageIcon", "imageIcon", "GameIcon")
    )

    @property
    def icon_url(self) -> str | None:
        if not self.image_icon:
            return None
        return f"{RA_SITE_URL}{self.image_icon}"


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------
def unwrap_list(payload: Any) -> list[Any]:
    """Find the row list in ``{"Results": [...]}``, ``{"data": [...]}`` or ``[...]``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ENVELOPE_KEYS:
            rows = payload.get(key)
            if isinstance(rows, list):
                return rows
    return []


def decode_rows(payload: Any, model: type[_RAModel]) -> list[Any]:
    """Validate each row of *payload*, skipping the ones that don't fit."""
    decoded = []
    skipped = 0
    for row in unwrap_list(payload):
        if not isinstance(row, dict):
            skipped += 1
            continue
        try:
            decoded.append(model.model_validate(row))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.debug("Skipped %d malformed %s rows", skipped, model.__name__)
    return decoded
