"""
selectstart.services.embeds — Notification payload builders
============================================================

All message layout lives here so the dispatcher only routes.  Builders
return a destination-agnostic :class:`MessagePayload`;
:func:`to_discord_embed` adapts it for the Discord sink.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import discord

from selectstart.constants import (
    ALERT_COLORS,
    DEFAULT_ALERT_COLOR,
    TIER_EMOJI,
    UNRANKED,
    game_link,
    rank_label,
    user_link,
)
from selectstart.engine.awards import ChallengeSystem
from selectstart.engine.events import AlertType, EventKind, TransitionEvent, alert_type_for


@dataclass(frozen=True, slots=True)
class PayloadField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True, slots=True)
class MessagePayload:
    title: str
    description: str = ""
    color: int = DEFAULT_ALERT_COLOR
    fields: tuple[PayloadField, ...] = ()
    thumbnail_url: str | None = None
    footer: str | None = None
    url: str | None = None


def _who(event: TransitionEvent) -> str:
    username = event.details.get("username") or event.subject_key
    discord_id = event.details.get("discord_id")
    if discord_id:
        return f"<@{discord_id}> ({user_link(username)})"
    return user_link(username)


# ---------------------------------------------------------------------------
# Rank changes (one payload per board or challenge)
# ---------------------------------------------------------------------------
def _rank_line(event: TransitionEvent) -> str:
    who = user_link(event.details.get("username") or event.subject_key)
    score = event.details.get("score")
    suffix = f" ({score})" if score else ""
    match event.kind:
        case EventKind.ENTERED_TOP_K:
            return f"\U0001f195 {who} entered at {rank_label(event.new_rank)}{suffix}"
        case EventKind.RANK_IMPROVED:
            return (
                f"\u2b06\ufe0f {who} climbed {rank_label(event.previous_rank)} → "
                f"{rank_label(event.new_rank)}{suffix}"
            )
        case EventKind.RANK_DECREASED:
            return (
                f"\u2b07\ufe0f {who} slipped {rank_label(event.previous_rank)} → "
                f"{rank_label(event.new_rank)}{suffix}"
            )
        case _:
            if event.new_rank is None or event.new_rank >= UNRANKED:
                return f"\U0001f4a8 {who} dropped off from {rank_label(event.previous_rank)}"
            return (
                f"\U0001f4a8 {who} fell out from {rank_label(event.previous_rank)} "
                f"to {rank_label(event.new_rank)}"
            )


def build_rank_payload(
    events: Sequence[TransitionEvent], extras: Mapping[str, Any] | None = None
) -> MessagePayload:
    extras = extras or {}
    first = events[0]
    title = first.entity_title or first.entity_id

    fields = [PayloadField("Changes", "\n".join(_rank_line(e) for e in events))]
    standings = extras.get("standings") or []
    if standings:
        lines = [
            f"{rank_label(rank)} {user_link(name)} \u00b7 {score}"
            for name, rank, score in standings
        ]
        fields.append(PayloadField("Current Standings", "\n".join(lines)))

    if first.system is not None:
        is_shadow = first.system is ChallengeSystem.SHADOW
        label = "Shadow Challenge" if is_shadow else "Monthly Challenge"
        return MessagePayload(
            title=f"\U0001f3c1 {label} Standings: {title}",
            description="The race for this month's challenge has changed!",
            color=ALERT_COLORS[AlertType.CHALLENGE_RANKS],
            fields=tuple(fields),
            thumbnail_url=extras.get("thumbnail_url"),
            url=extras.get("url"),
            footer="Ranked by award tier, then achievements earned",
        )
    return MessagePayload(
        title=f"\U0001f579\ufe0f Rank Update: {title}",
        description="The community standings on this board have changed!",
        color=ALERT_COLORS[AlertType.BOARD_RANKS],
        fields=tuple(fields),
        thumbnail_url=extras.get("thumbnail_url"),
        url=extras.get("url"),
        footer="Rankings refresh hourly",
    )


# ---------------------------------------------------------------------------
# Award tiers
# ---------------------------------------------------------------------------
def build_award_payload(event: TransitionEvent) -> MessagePayload:
    tier_name = event.tier.name if event.tier is not None else "NONE"
    emoji = TIER_EMOJI.get(tier_name, "")
    is_shadow = event.system is ChallengeSystem.SHADOW
    label = "Shadow Challenge" if is_shadow else "Monthly Challenge"
    game = game_link(event.entity_title or "", event.details.get("game_id"))
    total = event.details.get("total")
    progress = f"{event.achieved_count}/{total}" if total else str(event.achieved_count)

    return MessagePayload(
        title=f"{emoji} {label}: {tier_name.title()}",
        description=f"{_who(event)} reached **{tier_name.title()}** in {game}!",
        color=ALERT_COLORS[AlertType.SHADOW_AWARD if is_shadow else AlertType.MONTHLY_AWARD],
        fields=(PayloadField("Progress", progress, inline=True),),
        footer=event.entity_id,
    )


# ---------------------------------------------------------------------------
# Achievement unlocks
# ---------------------------------------------------------------------------
def build_achievement_payload(event: TransitionEvent) -> MessagePayload:
    d = event.details
    game = game_link(event.entity_title or "", d.get("game_id"))
    description = f"{_who(event)} unlocked **{d.get('title') or event.achievement_id}**"
    if game:
        description += f" in {game}"
    if d.get("description"):
        description += f"\n*{d['description']}*"
    fields = [PayloadField("Points", str(d.get("points", 0)), inline=True)]
    if d.get("hardcore"):
        fields.append(PayloadField("Mode", "Hardcore", inline=True))
    return MessagePayload(
        title="\U0001f3c6 Achievement Unlocked!",
        description=description,
        color=ALERT_COLORS[AlertType.ACHIEVEMENT],
        fields=tuple(fields),
        thumbnail_url=d.get("badge_url"),
    )


def render(
    events: Sequence[TransitionEvent], extras: Mapping[str, Any] | None = None
) -> MessagePayload:
    """Payload for a group of events sharing one alert type and entity."""
    alert_type = alert_type_for(events[0])
    if alert_type in (AlertType.BOARD_RANKS, AlertType.CHALLENGE_RANKS):
        return build_rank_payload(events, extras)
    if alert_type in (AlertType.MONTHLY_AWARD, AlertType.SHADOW_AWARD):
        return build_award_payload(events[0])
    return build_achievement_payload(events[0])


def to_discord_embed(payload: MessagePayload) -> discord.Embed:
    embed = discord.Embed(
        title=payload.title,
        description=payload.description or None,
        color=discord.Color(payload.color),
        url=payload.url,
    )
    for f in payload.fields:
        # Discord rejects field values over 1024 characters
        embed.add_field(name=f.name, value=f.value[:1024] or "\u200b", inline=f.inline)
    if payload.thumbnail_url:
        embed.set_thumbnail(url=payload.thumbnail_url)
    if payload.footer:
        embed.set_footer(text=payload.footer)
    return embed
