"""
selectstart.services.seed — YAML fixture loader
================================================

Loads tracked subjects, boards and challenge months from a YAML file
(``seed_file`` in ``config.yaml``).  Safe to run on every start: rows are
matched on their natural keys and updated in place, never duplicated.

File layout::

    subjects:
      - username: Alice
        discord_id: 123456789012345678
    boards:
      - board_id: smw-any
        leaderboard_id: 1234
        game_id: 228
        title: Super Mario World (Any%)
        top_k: 5
        volatile: true
    challenges:
      - period: "2025-06"
        game_id: 355
        game_title: Mega Man X
        required_achievements: [1001, 1002, 1003]
        total_achievements: 3
        beaten_threshold: 2
        shadow:
          game_id: 11240
          game_title: Pulseman
          required_achievements: [2001, 2002]
          beaten_threshold: 1
          revealed: false
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from selectstart.database.engine import get_session
from selectstart.database.models import Challenge, Subject, TrackedBoard

logger = logging.getLogger(__name__)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.warning("Seed file not found: %s", path)
        return {}
    with open(path, encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _seed_subjects(session: Session, items: list[dict]) -> int:
    count = 0
    for item in items:
        username = str(item["username"]).strip()
        row = session.scalar(
            select(Subject).where(func.lower(Subject.ra_username) == username.lower())
        )
        if row is None:
            row = Subject(ra_username=username, announced_achievements=[])
            session.add(row)
            count += 1
        row.discord_id = item.get("discord_id", row.discord_id)
        row.active = item.get("active", True)
    logger.info("Seeded %d new subjects (%d listed).", count, len(items))
    return count


def _seed_boards(session: Session, items: list[dict]) -> int:
    count = 0
    for item in items:
        board_id = str(item["board_id"])
        row = session.scalar(select(TrackedBoard).where(TrackedBoard.board_id == board_id))
        if row is None:
            row = TrackedBoard(board_id=board_id)
            session.add(row)
            count += 1
        row.leaderboard_id = int(item["leaderboard_id"])
        row.title = item.get("title") or board_id
        row.game_id = item.get("game_id")
        row.top_k = item.get("top_k")
        row.volatile = bool(item.get("volatile", False))
        row.active = bool(item.get("active", True))
    logger.info("Seeded %d new boards (%d listed).", count, len(items))
    return count


def _seed_challenges(session: Session, items: list[dict]) -> int:
    count = 0
    for item in items:
        key = str(item["period"])
        row = session.scalar(select(Challenge).where(Challenge.period_key == key))
        if row is None:
            row = Challenge(period_key=key)
            session.add(row)
            count += 1
        required = [str(a) for a in item.get("required_achievements") or []]
        row.game_id = int(item["game_id"])
        row.game_title = item.get("game_title")
        row.required_achievements = required
        row.total_achievements = int(item.get("total_achievements", len(required)))
        row.beaten_threshold = int(item.get("beaten_threshold", 0))

        shadow = item.get("shadow") or {}
        if shadow:
            shadow_required = [str(a) for a in shadow.get("required_achievements") or []]
            row.shadow_game_id = int(shadow["game_id"])
            row.shadow_game_title = shadow.get("game_title")
            row.shadow_required_achievements = shadow_required
            row.shadow_total_achievements = int(
                shadow.get("total_achievements", len(shadow_required))
            )
            row.shadow_beaten_threshold = int(shadow.get("beaten_threshold", 0))
            row.shadow_revealed = bool(shadow.get("revealed", False))
    logger.info("Seeded %d new challenge months (%d listed).", count, len(items))
    return count


def seed_from_yaml(engine: Engine, path: str | Path) -> dict[str, int]:
    """Apply the fixture at *path*; returns counts of newly created rows."""
    data = _load_yaml(Path(path))
    if not data:
        return {"subjects": 0, "boards": 0, "challenges": 0}
    with get_session(engine) as session:
        result = {
            "subjects": _seed_subjects(session, data.get("subjects") or []),
            "boards": _seed_boards(session, data.get("boards") or []),
            "challenges": _seed_challenges(session, data.get("challenges") or []),
        }
    logger.info("Seeding from %s complete: %s", path, result)
    return result
