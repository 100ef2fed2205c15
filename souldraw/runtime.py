"""SoulDraw Discord runtime wiring the lottery engine to a bot client."""

from __future__ import annotations

import asyncio
import logging

import boto3
import discord
from discord import app_commands

from lottery_bot.analytics import AnalyticsRecorder
from lottery_bot.engine import LotteryEngine
from lottery_bot.models import LotteryStatus
from lottery_bot.skulls import SkullLedger
from lottery_bot.storage import LotteryStore

from .commands import CommandContext, register_commands
from .config import EnvironmentConfig
from .messaging import DiscordMessenger
from .views import LotteryInteractions, LotteryView

log = logging.getLogger("souldraw")


class SoulDrawRuntime:
    def __init__(self, config: EnvironmentConfig, dynamodb_resource=None) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        self.config = config
        self.bot = discord.Client(intents=intents)
        self.tree = app_commands.CommandTree(self.bot)
        self.dynamodb = dynamodb_resource or boto3.resource(
            "dynamodb", region_name=config.aws_region
        )

        self.store = LotteryStore(
            self.dynamodb.Table(config.lottery_table_name), config.settings
        )
        self.ledger = SkullLedger(self.dynamodb.Table(config.skulls_table_name))
        self.analytics = (
            AnalyticsRecorder(self.dynamodb.Table(config.analytics_table_name))
            if config.analytics_table_name
            else None
        )
        self.messenger = DiscordMessenger(self.bot)
        self.engine = LotteryEngine(
            self.store,
            self.messenger,
            ledger=self.ledger,
            analytics=self.analytics,
            settings=config.settings,
        )
        self.interactions = LotteryInteractions(self.engine, self.ledger, self.messenger)
        self.messenger.view_factory = self.lottery_view
        self._ready = False
        self._synced = False

        register_commands(
            self.tree,
            CommandContext(
                engine=self.engine,
                messenger=self.messenger,
                interactions=self.interactions,
                ledger=self.ledger,
                analytics=self.analytics,
                roles=config.roles,
            ),
        )
        self.bot.event(self.on_ready)

    def lottery_view(self, lottery_id: str) -> LotteryView:
        return LotteryView(lottery_id, self.interactions)

    def restore_views(self) -> int:
        """Re-attach persistent card buttons for every live lottery."""
        restored = 0
        for lottery in self.engine.list_by_status(LotteryStatus.ACTIVE):
            location = lottery.location
            if location is None or location.message_id is None:
                continue
            try:
                self.bot.add_view(
                    self.lottery_view(lottery.lottery_id), message_id=location.message_id
                )
                restored += 1
            except Exception as exc:  # pylint: disable=broad-except
                log.exception(
                    "Failed to restore persistent view for %s: %s", lottery.lottery_id, exc
                )
        return restored

    async def on_ready(self) -> None:
        # on_ready fires again after reconnects
        if not self._ready:
            live = await self.engine.reconcile()
            restored = self.restore_views()
            self._ready = True
            log.info(
                "SoulDraw ready as %s (%s live lotteries, %s views restored)",
                self.bot.user,
                len(live),
                restored,
            )
        if not self._synced:
            try:
                await self.tree.sync()
            except discord.HTTPException as exc:
                log.error("Command sync failed, retrying on next ready: %s", exc)
                return
            self._synced = True
            log.info("Commands synced globally")

    async def run(self) -> None:
        try:
            async with self.bot:
                await self.bot.start(self.config.discord_token)
        finally:
            self.engine.shutdown()


async def main() -> None:
    config = EnvironmentConfig.load()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    runtime = SoulDrawRuntime(config)
    await runtime.run()


def run() -> None:
    asyncio.run(main())


__all__ = ["SoulDrawRuntime", "main", "run"]
