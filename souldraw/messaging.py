"""Discord implementation of the engine's messenger contract."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Final

import discord

from lottery_bot.models import ExternalLocation, Lottery, LotteryStatus, now_ms

from . import embeds

log: Final = logging.getLogger("souldraw-messaging")

MessageableChannel = discord.TextChannel | discord.Thread


async def resolve_channel(
    client: discord.Client,
    channel_id: int,
    guild_id: int | None = None,
) -> MessageableChannel | None:
    """Return the channel or None when it is gone or not accessible.

    Looks in the client cache first, then tries a REST fetch. Transient HTTP
    errors propagate so callers do not mistake them for a deleted channel.
    """
    channel = client.get_channel(channel_id)
    if channel is None:
        try:
            channel = await client.fetch_channel(channel_id)
        except discord.NotFound:
            log.warning("Channel %s not found", channel_id)
            return None
        except discord.Forbidden:
            log.warning("No access to channel %s – check bot permissions", channel_id)
            return None

    if not isinstance(channel, (discord.TextChannel, discord.Thread)):
        log.warning("Channel ID %s is not a text channel", channel_id)
        return None
    if guild_id is not None and channel.guild.id != guild_id:
        log.warning(
            "Channel %s belongs to different guild (%s) than expected (%s)",
            channel_id,
            channel.guild.id,
            guild_id,
        )
        return None
    return channel


class DiscordMessenger:
    def __init__(
        self,
        client: discord.Client,
        *,
        clock: Callable[[], int] = now_ms,
        view_factory: Callable[[str], discord.ui.View] | None = None,
    ) -> None:
        self._client = client
        self._clock = clock
        self.view_factory = view_factory

    # ----- Rendering -----
    def render_lottery_card(self, lottery: Lottery) -> dict[str, Any]:
        content: dict[str, Any] = {"embed": embeds.build_lottery_card(lottery, self._clock())}
        if lottery.status != LotteryStatus.ACTIVE:
            content["view"] = None
        elif self.view_factory is not None:
            content["view"] = self.view_factory(lottery.lottery_id)
        return content

    def render_ending_soon(self, lottery: Lottery, user_id: str) -> discord.Embed:
        return embeds.build_ending_soon_embed(lottery, user_id, self._clock())

    def render_winner_notice(self, lottery: Lottery) -> discord.Embed:
        return embeds.build_winner_notice(lottery)

    # ----- Delivery -----
    async def update_message(self, location: ExternalLocation, content: dict[str, Any]) -> bool:
        if location.message_id is None:
            return True
        channel = await resolve_channel(self._client, location.channel_id, location.guild_id)
        if channel is None:
            return False
        message = channel.get_partial_message(location.message_id)
        try:
            await message.edit(**content)
        except discord.NotFound:
            log.warning(
                "Lottery message %s in channel %s no longer exists",
                location.message_id,
                location.channel_id,
            )
            return False
        return True

    async def _channel_for(self, lottery: Lottery) -> MessageableChannel | None:
        location = lottery.location
        if location is None:
            log.warning("Lottery %s has no channel to post to", lottery.lottery_id)
            return None
        channel = await resolve_channel(self._client, location.channel_id, location.guild_id)
        if channel is None:
            log.warning(
                "Channel %s for lottery %s is unavailable",
                location.channel_id,
                lottery.lottery_id,
            )
        return channel

    async def post_announcement(self, lottery: Lottery, winner_ids: list[str]) -> None:
        channel = await self._channel_for(lottery)
        if channel is None:
            return
        await channel.send(
            content=" ".join(embeds.mention(w) for w in winner_ids),
            embeds=[
                embeds.build_winner_embed(lottery, winner_ids),
                embeds.build_congratulations_embed(lottery, winner_ids),
            ],
            allowed_mentions=discord.AllowedMentions(users=True, roles=False, everyone=False),
        )
        log.info("Announced winners for lottery %s", lottery.lottery_id)

    async def post_failure(self, lottery: Lottery) -> None:
        channel = await self._channel_for(lottery)
        if channel is None:
            return
        await channel.send(embed=embeds.build_failure_embed(lottery))

    async def send_direct_notification(self, user_id: str, content: object) -> bool:
        user = self._client.get_user(int(user_id))
        try:
            if user is None:
                user = await self._client.fetch_user(int(user_id))
            if isinstance(content, discord.Embed):
                await user.send(embed=content)
            else:
                await user.send(str(content))
        except (discord.Forbidden, discord.NotFound):
            log.info("Cannot DM user %s", user_id)
            return False
        return True


__all__ = ["DiscordMessenger", "resolve_channel"]
