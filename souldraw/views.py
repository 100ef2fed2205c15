"""Buttons for lottery cards, ticket purchases and the creation screen."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

import discord

from lottery_bot.engine import EntryResult, LotteryEngine
from lottery_bot.errors import InvalidStateError, LotteryError
from lottery_bot.models import DrawMode, ExternalLocation, Lottery, LotteryStatus, now_ms
from lottery_bot.skulls import SkullLedger

from . import embeds

if TYPE_CHECKING:
    from .messaging import DiscordMessenger

log: Final = logging.getLogger("souldraw-views")

MAX_TICKET_BUTTONS = 5
GENERIC_ERROR = "There was an error processing your request. Please try again."


def ticket_options(lottery: Lottery, user_id: str, balance: int) -> list[int]:
    """Ticket quantities a user can afford without passing the per-user cap."""
    room = lottery.max_tickets_per_user - lottery.tickets_for(user_id)
    affordable = balance // lottery.ticket_price if lottery.ticket_price else room
    most = min(room, affordable)
    if most < 1:
        return []
    options = list(range(1, min(MAX_TICKET_BUTTONS, most) + 1))
    if most > MAX_TICKET_BUTTONS:
        options.append(most)
    return options


def entry_message(result: EntryResult, lottery: Lottery, tickets: int = 1) -> str:
    if result is EntryResult.JOINED:
        if lottery.is_paid:
            plural = "s" if tickets > 1 else ""
            return (
                f"Successfully purchased {tickets} ticket{plural} for "
                f"{tickets * lottery.ticket_price} skulls!"
            )
        return "You have joined the lottery!"
    if result is EntryResult.ALREADY_JOINED:
        return "You are already participating in this lottery!"
    if result is EntryResult.TICKET_CAP_REACHED:
        return f"You can hold at most {lottery.max_tickets_per_user} tickets in this lottery."
    if result is EntryResult.INSUFFICIENT_BALANCE:
        return (
            f"You don't have enough skulls. Required: {tickets * lottery.ticket_price} "
            "skulls. Use /skulls balance to check your balance."
        )
    if result is EntryResult.NOT_ACTIVE:
        return "This lottery is not active!"
    return "Your entry could not be saved. Any skulls spent were refunded."


class LotteryInteractions:
    """Button handlers shared by every lottery view."""

    def __init__(
        self,
        engine: LotteryEngine,
        ledger: SkullLedger | None,
        messenger: DiscordMessenger,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.engine = engine
        self.ledger = ledger
        self.messenger = messenger
        self.clock = clock

    async def _reply(self, interaction: discord.Interaction, content: str, **kwargs) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True, **kwargs)
        else:
            await interaction.response.send_message(content, ephemeral=True, **kwargs)

    async def _confirm_entry(self, user: discord.abc.User, lottery_id: str) -> None:
        lottery = self.engine.get(lottery_id)
        if lottery is None:
            return
        embed = embeds.build_entry_confirmation(lottery.snapshot(), str(user.id), self.clock())
        await self.messenger.send_direct_notification(str(user.id), embed)

    async def join(self, interaction: discord.Interaction, lottery_id: str) -> None:
        user_id = str(interaction.user.id)
        try:
            lottery = self.engine.get(lottery_id)
            if lottery is None or lottery.status != LotteryStatus.ACTIVE:
                await self._reply(interaction, "This lottery is not active!")
                return

            if lottery.is_paid:
                if self.ledger is None:
                    await self._reply(interaction, "Ticket sales are not configured.")
                    return
                balance = self.ledger.get_balance(user_id)
                options = ticket_options(lottery, user_id, balance)
                if not options:
                    if lottery.tickets_for(user_id) >= lottery.max_tickets_per_user:
                        message = entry_message(EntryResult.TICKET_CAP_REACHED, lottery)
                    else:
                        message = entry_message(EntryResult.INSUFFICIENT_BALANCE, lottery)
                    await self._reply(interaction, message)
                    return
                await self._reply(
                    interaction,
                    "How many tickets would you like to purchase? "
                    f"({lottery.ticket_price} skulls per ticket)",
                    view=TicketView(lottery, options, self),
                )
                return

            result = self.engine.join(lottery_id, user_id)
            await self._reply(interaction, entry_message(result, lottery))
            if result is EntryResult.JOINED:
                await self._confirm_entry(interaction.user, lottery_id)
        except LotteryError as exc:
            await self._reply(interaction, str(exc))
        except Exception:  # pylint: disable=broad-except
            log.exception("Join failed for lottery %s", lottery_id)
            await self._reply(interaction, GENERIC_ERROR)

    async def buy(self, interaction: discord.Interaction, lottery_id: str, tickets: int) -> None:
        try:
            result = self.engine.purchase_tickets(lottery_id, str(interaction.user.id), tickets)
            lottery = self.engine.get(lottery_id)
            if lottery is None:
                await self._reply(interaction, "This lottery is not active!")
                return
            await self._reply(interaction, entry_message(result, lottery, tickets))
            if result is EntryResult.JOINED:
                await self._confirm_entry(interaction.user, lottery_id)
        except LotteryError as exc:
            await self._reply(interaction, str(exc))
        except Exception:  # pylint: disable=broad-except
            log.exception("Ticket purchase failed for lottery %s", lottery_id)
            await self._reply(interaction, GENERIC_ERROR)

    async def show_participants(self, interaction: discord.Interaction, lottery_id: str) -> None:
        lottery = self.engine.get(lottery_id)
        if lottery is None or lottery.status != LotteryStatus.ACTIVE:
            await self._reply(interaction, "This lottery is not active!")
            return
        embed = embeds.build_participants_embed(lottery.snapshot(), self.clock())
        await interaction.response.send_message(embed=embed, ephemeral=True)


class LotteryView(discord.ui.View):
    """Persistent Join and View buttons on a live lottery card."""

    def __init__(self, lottery_id: str, interactions: LotteryInteractions) -> None:
        super().__init__(timeout=None)
        self.lottery_id = lottery_id
        self.interactions = interactions
        self.join_button.custom_id = f"join:{lottery_id}"
        self.view_button.custom_id = f"view:{lottery_id}"

    @discord.ui.button(label="🎟️ Join Lottery", style=discord.ButtonStyle.primary)
    async def join_button(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        await self.interactions.join(interaction, self.lottery_id)

    @discord.ui.button(label="👥 View Participants", style=discord.ButtonStyle.secondary)
    async def view_button(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        await self.interactions.show_participants(interaction, self.lottery_id)


class TicketButton(discord.ui.Button):
    def __init__(self, lottery: Lottery, tickets: int, interactions: LotteryInteractions) -> None:
        plural = "s" if tickets > 1 else ""
        super().__init__(
            label=f"{tickets} ticket{plural} ({tickets * lottery.ticket_price} skulls)",
            style=discord.ButtonStyle.primary,
            custom_id=f"ticket:{lottery.lottery_id}:{tickets}",
        )
        self.lottery_id = lottery.lottery_id
        self.tickets = tickets
        self.interactions = interactions

    async def callback(self, interaction: discord.Interaction) -> None:
        await self.interactions.buy(interaction, self.lottery_id, self.tickets)


class TicketView(discord.ui.View):
    def __init__(
        self, lottery: Lottery, options: list[int], interactions: LotteryInteractions
    ) -> None:
        super().__init__(timeout=120)
        for tickets in options:
            self.add_item(TicketButton(lottery, tickets, interactions))


class ConfirmView(discord.ui.View):
    """Creation screen: pick a draw mode, then confirm or cancel."""

    def __init__(
        self, lottery_id: str, requester_id: int, interactions: LotteryInteractions
    ) -> None:
        super().__init__(timeout=300)
        self.lottery_id = lottery_id
        self.requester_id = requester_id
        self.interactions = interactions
        self.draw_mode: DrawMode | None = None
        self.finished = False

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id == self.requester_id:
            return True
        await interaction.response.send_message(
            "Only the lottery creator may use these buttons.", ephemeral=True
        )
        return False

    async def _set_mode(self, interaction: discord.Interaction, mode: DrawMode) -> None:
        self.draw_mode = mode
        if mode == DrawMode.AUTO:
            message = "Auto draw enabled. Winners will be selected when the timer ends."
        else:
            message = "Manual draw enabled. Use /draw to select winners once the timer ends."
        await interaction.response.send_message(message, ephemeral=True)

    @discord.ui.button(label="Auto Draw", style=discord.ButtonStyle.secondary, custom_id="auto")
    async def auto_button(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        await self._set_mode(interaction, DrawMode.AUTO)

    @discord.ui.button(label="Manual Draw", style=discord.ButtonStyle.secondary, custom_id="manual")
    async def manual_button(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        await self._set_mode(interaction, DrawMode.MANUAL)

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.success, custom_id="confirm")
    async def confirm_button(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        if self.draw_mode is None:
            await interaction.response.send_message(
                "Please select a draw method (Auto or Manual) before confirming.",
                ephemeral=True,
            )
            return
        channel = interaction.channel
        if channel is None:
            await interaction.response.send_message(GENERIC_ERROR, ephemeral=True)
            return

        engine = self.interactions.engine
        guild_id = interaction.guild.id if interaction.guild else None
        try:
            lottery = engine.activate(
                self.lottery_id, self.draw_mode, ExternalLocation(guild_id, channel.id)
            )
        except LotteryError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        self.finished = True
        self.stop()
        await interaction.response.edit_message(
            content="Lottery started successfully!", embed=None, view=None
        )

        try:
            card = self.interactions.messenger.render_lottery_card(lottery.snapshot())
            message = await channel.send(**card)
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to post card for lottery %s", self.lottery_id)
            try:
                engine.cancel(self.lottery_id)
            except InvalidStateError:
                log.info("Lottery %s already ended before its card failed", self.lottery_id)
            await interaction.followup.send(
                "Could not post the lottery card, so the lottery was cancelled.",
                ephemeral=True,
            )
            return
        try:
            engine.set_location(
                self.lottery_id, ExternalLocation(guild_id, channel.id, message.id)
            )
        except InvalidStateError:
            # cancelled while the card was being posted
            log.info("Lottery %s ended before its card was recorded", self.lottery_id)
        except LotteryError:
            log.exception("Failed to record card for lottery %s", self.lottery_id)

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.danger, custom_id="cancel")
    async def cancel_button(
        self, interaction: discord.Interaction, _: discord.ui.Button
    ) -> None:  # pylint: disable=unused-argument
        try:
            self.interactions.engine.cancel(self.lottery_id)
        except LotteryError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        self.finished = True
        self.stop()
        await interaction.response.edit_message(
            content="Lottery cancelled.", embed=None, view=None
        )

    async def on_timeout(self) -> None:  # pragma: no cover - UI timeout
        if self.finished:
            return
        lottery = self.interactions.engine.get(self.lottery_id)
        if lottery is not None and lottery.status == LotteryStatus.PENDING:
            try:
                self.interactions.engine.cancel(self.lottery_id)
            except LotteryError:
                log.exception("Failed to cancel abandoned lottery %s", self.lottery_id)


__all__ = [
    "ticket_options",
    "entry_message",
    "LotteryInteractions",
    "LotteryView",
    "TicketButton",
    "TicketView",
    "ConfirmView",
]
