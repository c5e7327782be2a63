"""
selectstart.bot.core — Bot instance & tracker wiring
=====================================================

**Why this file exists:**
:class:`TrackerBot` is the process root.  It builds every long-lived
component exactly once and passes them to each other explicitly:

    httpx client → RetroAchievementsClient ─┐
    RateLimitedGateway ─────────────────────┼→ AchievementApi
    ResponseCache ──────────────────────────┘        │
                                                     ▼
    SnapshotStore → RankDiffEngine,  AwardTracker,  AchievementFeed
    SnapshotStore → ChallengeStandingsEngine         │
                                                     │
    DiscordChannelSink + AlertThrottle → NotificationDispatcher
                                                     │
                                   TrackingService ◀─┘
                                   ├─ rank scheduler  (hourly)
                                   └─ award scheduler (every 30 min)

Schedulers start in ``on_ready`` (the sink needs the channel cache) and
are stopped in ``close()`` after their current cycle finishes.
"""

from __future__ import annotations

import asyncio
import logging

import discord
import httpx
from discord.ext import commands
from sqlalchemy import Engine

from selectstart.config import TrackerConfig
from selectstart.constants import RA_API_URL
from selectstart.engine.cache import ResponseCache
from selectstart.engine.events import AlertType
from selectstart.services.award_tracker import AchievementFeed, AwardTracker
from selectstart.services.dispatcher import NotificationDispatcher, build_routes
from selectstart.services.gateway import RateLimitedGateway
from selectstart.services.ra_client import AchievementApi, RetroAchievementsClient
from selectstart.services.rank_tracker import (
    ChallengeStandingsEngine,
    RankDiffEngine,
    SnapshotStore,
)
from selectstart.services.repository import SqlRepository
from selectstart.services.scheduler import PollScheduler
from selectstart.services.sinks import DiscordChannelSink
from selectstart.services.throttle import AlertThrottle
from selectstart.services.tracking_service import TrackingService

logger = logging.getLogger(__name__)


class TrackerBot(commands.Bot):
    """Discord bot that hosts the RetroAchievements poll loops.

    Parameters
    ----------
    cfg:
        The parsed :class:`TrackerConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine`.
    ra_username, ra_api_key:
        RetroAchievements Web API credentials.
    """

    def __init__(
        self,
        cfg: TrackerConfig,
        engine: Engine,
        ra_username: str,
        ra_api_key: str,
    ) -> None:
        intents = discord.Intents.default()
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} progress tracker",
        )

        self.cfg = cfg
        self.engine = engine
        self._ra_credentials = (ra_username, ra_api_key)

        self.http_client: httpx.AsyncClient | None = None
        self.gateway: RateLimitedGateway | None = None
        self.tracking: TrackingService | None = None
        self.rank_scheduler: PollScheduler | None = None
        self.award_scheduler: PollScheduler | None = None

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Build the tracker components once, before connecting."""
        cfg = self.cfg
        username, api_key = self._ra_credentials

        self.http_client = httpx.AsyncClient(
            base_url=RA_API_URL,
            timeout=cfg.gateway.timeout,
        )
        client = RetroAchievementsClient(username, api_key, self.http_client)
        self.gateway = RateLimitedGateway.from_policy(cfg.gateway)
        api = AchievementApi(client, self.gateway, ResponseCache())

        repository = SqlRepository(self.engine)
        dispatcher = NotificationDispatcher(
            sink=DiscordChannelSink(self),
            routes=build_routes(cfg.routes, cfg.throttled_alert_types),
            throttle=AlertThrottle(cfg.alerts.min_alert_interval),
            announced=repository,
            announced_cap=cfg.alerts.announced_id_cap,
        )
        self.tracking = TrackingService(
            repository=repository,
            api=api,
            rank_engine=RankDiffEngine(api, SnapshotStore(), cfg.polling),
            award_tracker=AwardTracker(api, repository),
            feed=AchievementFeed(api, cfg.polling),
            dispatcher=dispatcher,
            policy=cfg.polling,
            standings=ChallengeStandingsEngine(SnapshotStore(), cfg.polling),
        )
        self.rank_scheduler = PollScheduler("rank", self.tracking.run_rank_cycle)
        self.award_scheduler = PollScheduler("award", self.tracking.run_award_cycle)

        missing = [t.value for t in AlertType if not cfg.routes.get(t)]
        if missing:
            logger.warning("No channels routed for alert types: %s", ", ".join(missing))
        logger.info("Tracker components ready.")

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        loop = asyncio.get_running_loop()
        # start() is a no-op on reconnects
        if self.rank_scheduler is not None:
            self.rank_scheduler.start(self.cfg.polling.rank_interval, loop)
        if self.award_scheduler is not None:
            self.award_scheduler.start(self.cfg.polling.award_interval, loop)

    async def close(self) -> None:
        """Graceful shutdown: finish in-flight cycles, then release I/O."""
        logger.info("Bot shutting down…")
        for scheduler in (self.rank_scheduler, self.award_scheduler):
            if scheduler is not None:
                try:
                    await scheduler.stop()
                except Exception:
                    logger.exception("Error stopping %s scheduler", scheduler.name)
        if self.gateway is not None:
            await self.gateway.close()
        if self.http_client is not None:
            await self.http_client.aclose()
        await super().close()
