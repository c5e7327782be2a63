"""
selectstart.constants — Shared Constants & Helpers
===================================================

Single source of truth for presentation constants and cache freshness
classes.  Import from here instead of duplicating in services and embeds.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# RetroAchievements endpoints
# ---------------------------------------------------------------------------
RA_SITE_URL = "https://retroachievements.org"
RA_API_URL = f"{RA_SITE_URL}/API/"

# ---------------------------------------------------------------------------
# Cache freshness per data class (seconds)
# ---------------------------------------------------------------------------
CACHE_TTLS: dict[str, float] = {
    "default": 5 * 60,
    "leaderboard": 2 * 60,
    "recent_achievements": 60,
    "game_progress": 5 * 60,
    "game_info": 24 * 60 * 60,
}

# ---------------------------------------------------------------------------
# Award presentation (used by embeds)
# ---------------------------------------------------------------------------
TIER_EMOJI: dict[str, str] = {
    "PARTICIPATION": "\U0001f3c1",  # 🏁
    "BEATEN": "\u2b50",        # ⭐
    "MASTERY": "\u2728",       # ✨
}

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉

ALERT_COLORS: dict[str, int] = {
    "board_ranks": 0x3498DB,     # Blue
    "challenge_ranks": 0x1ABC9C, # Teal
    "monthly_award": 0x9B59B6,   # Purple
    "shadow_award": 0x000000,    # Black
    "achievement": 0x808080,     # Grey
}
DEFAULT_ALERT_COLOR = 0x808080

# Sentinel rank for subjects that dropped off a board entirely
UNRANKED = 999


def user_link(username: str) -> str:
    """Markdown link to a RetroAchievements profile."""
    if not username:
        return username
    return f"[{username}]({RA_SITE_URL}/user/{username})"


def game_link(title: str, game_id: int | None) -> str:
    if not game_id or not title:
        return title
    return f"[{title}]({RA_SITE_URL}/game/{game_id})"


def leaderboard_url(leaderboard_id: int) -> str:
    return f"{RA_SITE_URL}/leaderboardinfo.php?i={leaderboard_id}"


def game_url(game_id: int) -> str:
    return f"{RA_SITE_URL}/game/{game_id}"


def rank_label(rank: int) -> str:
    """``🥇`` for 1-3, ``#4`` beyond."""
    if 1 <= rank <= len(RANK_BADGES):
        return RANK_BADGES[rank - 1]
    return f"#{rank}"
