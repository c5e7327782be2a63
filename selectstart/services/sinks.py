"""
selectstart.services.sinks — Notification delivery
===================================================

A sink takes a rendered :class:`MessagePayload` and a destination id and
delivers it.  Delivery errors propagate to the dispatcher, which logs
them; nothing is retried.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from discord.abc import Messageable

from selectstart.services.embeds import MessagePayload, to_discord_embed

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, destination: int, payload: MessagePayload) -> None: ...


class DiscordChannelSink:
    """Posts payloads as embeds to Discord text channels."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def send(self, destination: int, payload: MessagePayload) -> None:
        channel = self.bot.get_channel(destination)
        if channel is None:
            channel = await self.bot.fetch_channel(destination)
        if not isinstance(channel, Messageable):
            raise LookupError(f"Channel {destination} is not messageable")
        await channel.send(embed=to_discord_embed(payload))
