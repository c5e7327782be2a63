"""
selectstart.services.dispatcher — Notification Dispatcher
==========================================================

Routes transition events to Discord channels.

Pipeline for each notification::

    alert type ── no route ──────────▶ UNROUTED   (logged as an error)
        │
    achievement id already logged ───▶ DUPLICATE  (silent)
        │
    throttled type, entity alerted
    within min interval ─────────────▶ THROTTLED  (dropped, not queued)
        │
    record id / mark throttle, render ── render error ─▶ FAILED
        │
    hand to sink ────────────────────▶ SENT

Rank events for the same board in one batch become a single message, so a
board whose standings shuffled sends one update instead of tripping its
own throttle.  State is recorded *before* the sink call and kept even if
delivery fails; a flaky channel must not cause a flood of repeats.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from selectstart.database.engine import run_db
from selectstart.engine.events import AlertType, EventKind, TransitionEvent, alert_type_for
from selectstart.services.embeds import MessagePayload, render
from selectstart.services.sinks import NotificationSink
from selectstart.services.throttle import AlertThrottle

logger = logging.getLogger(__name__)


class DispatchOutcome(enum.StrEnum):
    SENT = "sent"
    THROTTLED = "throttled"
    DUPLICATE = "duplicate"
    UNROUTED = "unrouted"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Route:
    destinations: tuple[int, ...]
    throttled: bool = False


class AnnouncedStore(Protocol):
    def is_announced(self, subject_key: str, achievement_id: str) -> bool: ...

    def record_announced(self, subject_key: str, achievement_id: str, cap: int = 100) -> bool: ...


def build_routes(
    routes: Mapping[str, Sequence[int]],
    throttled_types: Iterable[str] = (AlertType.BOARD_RANKS, AlertType.CHALLENGE_RANKS),
) -> dict[AlertType, Route]:
    """Routing table from ``config.routes``; unknown alert types are rejected."""
    throttled = {AlertType(t) for t in throttled_types}
    table: dict[AlertType, Route] = {}
    for name, destinations in routes.items():
        alert_type = AlertType(name)
        table[alert_type] = Route(
            destinations=tuple(int(d) for d in destinations),
            throttled=alert_type in throttled,
        )
    return table


class NotificationDispatcher:
    def __init__(
        self,
        sink: NotificationSink,
        routes: Mapping[AlertType, Route],
        throttle: AlertThrottle,
        announced: AnnouncedStore,
        *,
        announced_cap: int = 100,
        renderer: Callable[..., MessagePayload] = render,
    ) -> None:
        self.sink = sink
        self.routes = dict(routes)
        self.throttle = throttle
        self.announced = announced
        self.announced_cap = announced_cap
        self.renderer = renderer

    async def dispatch(
        self, event: TransitionEvent, extras: Mapping[str, Any] | None = None
    ) -> DispatchOutcome:
        return await self._deliver([event], extras)

    async def dispatch_many(
        self,
        events: Sequence[TransitionEvent],
        extras: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[DispatchOutcome]:
        """Dispatch a batch; returns one outcome per input event.

        *extras* maps entity id → rendering context (standings, thumbnail).
        """
        extras = extras or {}
        groups: dict[tuple[str, str], list[int]] = {}
        singles: list[int] = []
        for i, event in enumerate(events):
            if event.is_rank_event:
                groups.setdefault((alert_type_for(event), event.entity_id), []).append(i)
            else:
                singles.append(i)

        outcomes: list[DispatchOutcome | None] = [None] * len(events)
        for (_, entity_id), indexes in groups.items():
            outcome = await self._deliver([events[i] for i in indexes], extras.get(entity_id))
            for i in indexes:
                outcomes[i] = outcome
        for i in singles:
            outcomes[i] = await self._deliver([events[i]], extras.get(events[i].entity_id))
        return outcomes  # type: ignore[return-value]

    async def _deliver(
        self, events: Sequence[TransitionEvent], extras: Mapping[str, Any] | None
    ) -> DispatchOutcome:
        first = events[0]
        alert_type = alert_type_for(first)
        route = self.routes.get(alert_type)
        if route is None or not route.destinations:
            logger.error(
                "No destination configured for %s alerts; dropping %d event(s) for %s",
                alert_type, len(events), first.entity_id,
            )
            return DispatchOutcome.UNROUTED

        is_achievement = first.kind is EventKind.ACHIEVEMENT_UNLOCKED
        if is_achievement:
            if first.achievement_id is None or await run_db(
                self.announced.is_announced, first.subject_key, first.achievement_id
            ):
                logger.debug(
                    "Achievement %s for %s already announced", first.achievement_id,
                    first.subject_key,
                )
                return DispatchOutcome.DUPLICATE

        if route.throttled and not self.throttle.is_allowed(first.entity_id):
            return DispatchOutcome.THROTTLED

        if is_achievement and not await run_db(
            self.announced.record_announced,
            first.subject_key,
            first.achievement_id,
            self.announced_cap,
        ):
            return DispatchOutcome.DUPLICATE

        try:
            payload = self.renderer(events, extras)
        except Exception:
            logger.exception(
                "Failed to render %s alert for %s (%d event(s))",
                alert_type, first.entity_id, len(events),
            )
            return DispatchOutcome.FAILED

        for destination in route.destinations:
            try:
                await self.sink.send(destination, payload)
            except Exception:
                logger.exception(
                    "Failed to deliver %s alert for %s to %d",
                    alert_type, first.entity_id, destination,
                )
        logger.info(
            "Dispatched %s alert for %s (%d event(s)) to %d destination(s)",
            alert_type, first.entity_id, len(events), len(route.destinations),
        )
        return DispatchOutcome.SENT
