"""
selectstart.services.ra_client — RetroAchievements Web API client
==================================================================

Two layers:

- :class:`RetroAchievementsClient` — one ``httpx`` request per method,
  HTTP failures translated to :class:`~selectstart.services.gateway.ApiError`
  and payloads decoded into :mod:`selectstart.services.ra_models`.
- :class:`AchievementApi` — what the trackers use: every request goes
  through the shared :class:`RateLimitedGateway`, successful results are
  cached per data class (see ``CACHE_TTLS``), and every method returns a
  :class:`Result` instead of raising.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from selectstart.constants import CACHE_TTLS, RA_API_URL
from selectstart.engine.cache import ResponseCache
from selectstart.services.gateway import (
    ApiError,
    ErrorKind,
    RateLimitedGateway,
    Result,
    classify_status,
)
from selectstart.services.ra_models import (
    GameInfo,
    GameProgress,
    LeaderboardEntry,
    LeaderboardPage,
    RecentAchievement,
    decode_rows,
    unwrap_list,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Raw HTTP client
# ---------------------------------------------------------------------------
class RetroAchievementsClient:
    """Thin async wrapper over the RetroAchievements ``API_*.php`` endpoints."""

    def __init__(
        self,
        username: str,
        api_key: str,
        http: httpx.AsyncClient | None = None,
        *,
        base_url: str = RA_API_URL,
        timeout: float = 15.0,
    ) -> None:
        self._auth = {"z": username, "y": api_key}
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _get(self, endpoint: str, **params: Any) -> Any:
        try:
            resp = await self._http.get(endpoint, params={**self._auth, **params})
        except httpx.TimeoutException as exc:
            raise ApiError(ErrorKind.TRANSIENT, f"{endpoint} timed out") from exc
        except httpx.TransportError as exc:
            raise ApiError(ErrorKind.TRANSIENT, f"{endpoint}: {exc}") from exc

        kind = classify_status(resp.status_code)
        if kind is not None:
            raise ApiError(kind, f"{endpoint} returned HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(ErrorKind.PERMANENT, f"{endpoint} returned malformed JSON") from exc

    async def leaderboard_page(
        self, leaderboard_id: int, offset: int, count: int
    ) -> LeaderboardPage:
        payload = await self._get(
            "API_GetLeaderboardEntries.php", i=leaderboard_id, o=offset, c=count
        )
        return LeaderboardPage(
            entries=decode_rows(payload, LeaderboardEntry),
            row_count=len(unwrap_list(payload)),
        )

    async def game_progress(self, username: str, game_id: int) -> GameProgress:
        payload = await self._get(
            "API_GetGameInfoAndUserProgress.php", g=game_id, u=username, a=1
        )
        if not isinstance(payload, dict):
            raise ApiError(ErrorKind.PERMANENT, "game progress payload is not an object")
        return GameProgress.model_validate(payload)

    async def recent_achievements(
        self, username: str, minutes: int
    ) -> list[RecentAchievement]:
        payload = await self._get("API_GetUserRecentAchievements.php", u=username, m=minutes)
        return decode_rows(payload, RecentAchievement)

    async def game_info(self, game_id: int) -> GameInfo:
        payload = await self._get("API_GetGame.php", i=game_id)
        if not isinstance(payload, dict) or not payload:
            raise ApiError(ErrorKind.NOT_FOUND, f"game {game_id} not found")
        info = GameInfo.model_validate(payload)
        if not info.game_id:
            info = info.model_copy(update={"game_id": game_id})
        return info


# ---------------------------------------------------------------------------
# Gateway + cache facade
# ---------------------------------------------------------------------------
class AchievementApi:
    """Cached, rate-limited access used by the trackers."""

    def __init__(
        self,
        client: RetroAchievementsClient,
        gateway: RateLimitedGateway,
        cache: ResponseCache,
    ) -> None:
        self.client = client
        self.gateway = gateway
        self.cache = cache

    async def leaderboard_entries(
        self,
        leaderboard_id: int,
        max_entries: int = 1000,
        page_size: int = 500,
        use_cache: bool = True,
    ) -> Result[list[LeaderboardEntry]]:
        """All entries of a leaderboard up to *max_entries*.

        Pages are requested by offset and each page is its own gateway
        release.  A page holding fewer raw rows than requested ends the
        listing; rows dropped while decoding do not.  A failed page fails the
        whole fetch: a truncated listing would look like a mass drop-out.
        """
        key = f"leaderboard:{leaderboard_id}:{max_entries}"
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return Result.success(cached)

        entries: list[LeaderboardEntry] = []
        offset = 0
        while offset < max_entries:
            count = min(page_size, max_entries - offset)
            page = await self.gateway.call(
                lambda o=offset, c=count: self.client.leaderboard_page(leaderboard_id, o, c),
                label=f"leaderboard {leaderboard_id} @{offset}",
            )
            if not page.ok:
                return Result.failure(page.error, page.detail)
            entries.extend(page.value.entries)
            if page.value.row_count < count:
                break
            offset += count

        self.cache.put(key, entries, ttl=CACHE_TTLS["leaderboard"])
        return Result.success(entries)

    async def game_progress(
        self, username: str, game_id: int, use_cache: bool = True
    ) -> Result[GameProgress]:
        key = f"game_progress:{username.lower()}:{game_id}"
        return await self._cached(
            key,
            CACHE_TTLS["game_progress"],
            lambda: self.client.game_progress(username, game_id),
            label=f"progress {username}/{game_id}",
            use_cache=use_cache,
        )

    async def recent_achievements(
        self, username: str, minutes: int = 120
    ) -> Result[list[RecentAchievement]]:
        key = f"recent_achievements:{username.lower()}:{minutes}"
        return await self._cached(
            key,
            CACHE_TTLS["recent_achievements"],
            lambda: self.client.recent_achievements(username, minutes),
            label=f"recent {username}",
        )

    async def game_info(self, game_id: int) -> Result[GameInfo]:
        return await self._cached(
            f"game_info:{game_id}",
            CACHE_TTLS["game_info"],
            lambda: self.client.game_info(game_id),
            label=f"game_info {game_id}",
        )

    async def _cached(self, key, ttl, thunk, *, label: str, use_cache: bool = True) -> Result:
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return Result.success(cached)
        result = await self.gateway.call(thunk, label=label)
        if result.ok:
            self.cache.put(key, result.value, ttl=ttl)
        return result
