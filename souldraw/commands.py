"""Slash command handlers and their registration on a command tree."""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Final

import discord
from discord import app_commands

from lottery_bot.analytics import AnalyticsRecorder
from lottery_bot.engine import LotteryEngine, LotteryParams
from lottery_bot.errors import LotteryError
from lottery_bot.models import LotteryStatus, now_ms
from lottery_bot.skulls import SkullLedger
from lottery_bot.validation import parse_duration

from . import embeds
from .config import RoleConfig
from .messaging import DiscordMessenger
from .permissions import allowed_commands, has_permission, require_permission
from .views import ConfirmView, LotteryInteractions

log: Final = logging.getLogger("souldraw-commands")

GENERIC_ERROR = "An unexpected error occurred. Please try again."
MAX_STATUS_EMBEDS = 10


@dataclass(slots=True)
class CommandContext:
    engine: LotteryEngine
    messenger: DiscordMessenger
    interactions: LotteryInteractions
    ledger: SkullLedger | None = None
    analytics: AnalyticsRecorder | None = None
    roles: RoleConfig = field(default_factory=RoleConfig)
    clock: Callable[[], int] = now_ms


async def respond(interaction: discord.Interaction, content: str | None = None, **kwargs) -> None:
    kwargs.setdefault("ephemeral", True)
    if interaction.response.is_done():
        await interaction.followup.send(content, **kwargs)
    else:
        await interaction.response.send_message(content, **kwargs)


def handles_errors(
    func: Callable[..., Awaitable[None]],
) -> Callable[..., Awaitable[None]]:
    """Answer lottery errors with their message and log anything else."""

    @functools.wraps(func)
    async def wrapper(ctx: CommandContext, interaction: discord.Interaction, *args, **kwargs) -> None:
        try:
            await func(ctx, interaction, *args, **kwargs)
        except LotteryError as exc:
            await respond(interaction, str(exc))
        except Exception:  # pylint: disable=broad-except
            log.exception("Command %s failed", func.__name__)
            await respond(interaction, GENERIC_ERROR)

    return wrapper


async def _refresh_card(ctx: CommandContext, lottery_id: str) -> None:
    lottery = ctx.engine.get(lottery_id)
    if lottery is None or lottery.location is None:
        return
    try:
        await ctx.messenger.update_message(
            lottery.location, ctx.messenger.render_lottery_card(lottery.snapshot())
        )
    except discord.HTTPException as exc:
        log.warning("Failed to refresh card for lottery %s: %s", lottery_id, exc)


# ----- Lottery lifecycle -----
@handles_errors
async def start_lottery(
    ctx: CommandContext,
    interaction: discord.Interaction,
    *,
    time: str,
    prize: str,
    winners: int,
    min_participants: int | None = None,
    terms: str | None = None,
    ticket_price: int = 0,
    max_tickets: int = 1,
) -> None:
    params = LotteryParams(
        prize=prize,
        winner_count=winners,
        duration_ms=parse_duration(time),
        created_by=str(interaction.user.id),
        min_participants=min_participants,
        ticket_price=ticket_price,
        max_tickets_per_user=max_tickets,
        terms=terms or "",
    )
    lottery = ctx.engine.create_lottery(params)
    view = ConfirmView(lottery.lottery_id, interaction.user.id, ctx.interactions)
    await interaction.response.send_message(
        embed=embeds.build_confirmation_embed(lottery), view=view, ephemeral=True
    )


@handles_errors
async def draw_lottery(ctx: CommandContext, interaction: discord.Interaction, lottery_id: str) -> None:
    await interaction.response.defer(ephemeral=True, thinking=True)
    outcome = await ctx.engine.manual_draw(lottery_id.strip())
    if outcome.insufficient:
        await respond(
            interaction,
            f"Lottery `{lottery_id}` ended without winners: "
            f"{len(outcome.lottery.participants)}/{outcome.lottery.min_participants} participants.",
        )
        return
    winners = ", ".join(embeds.mention(w) for w in outcome.winners)
    await respond(interaction, f"Winners drawn for `{lottery_id}`: {winners}")


@handles_errors
async def cancel_lottery(ctx: CommandContext, interaction: discord.Interaction, lottery_id: str) -> None:
    lottery = ctx.engine.cancel(lottery_id.strip())
    await _refresh_card(ctx, lottery.lottery_id)
    notice = f"The lottery for **{lottery.prize}** (`{lottery.lottery_id}`) has been cancelled."
    if lottery.is_paid and lottery.participants:
        notice += " All tickets have been refunded."
    await interaction.response.send_message(notice)


@handles_errors
async def remove_participant(
    ctx: CommandContext,
    interaction: discord.Interaction,
    lottery_id: str,
    user: discord.abc.User,
) -> None:
    lottery_id = lottery_id.strip()
    lottery = ctx.engine.get(lottery_id)
    tickets = lottery.tickets_for(str(user.id)) if lottery else 0
    removed = ctx.engine.remove_participant(lottery_id, str(user.id))
    if not removed:
        await respond(interaction, f"{user.mention} is not participating in this lottery.")
        return
    await respond(interaction, f"Removed {user.mention} from lottery `{lottery_id}`.")
    message = f"You have been removed from the lottery for **{lottery.prize}**."
    if lottery.is_paid and ctx.engine.settings.refund_on_removal:
        message += f" {tickets * lottery.ticket_price} skulls were refunded."
    await ctx.messenger.send_direct_notification(str(user.id), message)
    await _refresh_card(ctx, lottery_id)


@handles_errors
async def show_status(ctx: CommandContext, interaction: discord.Interaction) -> None:
    lotteries = ctx.engine.list_by_status(LotteryStatus.ACTIVE)
    lotteries += ctx.engine.list_by_status(LotteryStatus.EXPIRED)
    if not lotteries:
        await respond(interaction, "There are no active lotteries.")
        return
    now = ctx.clock()
    status_embeds = [
        embeds.build_status_embed(lottery, now) for lottery in lotteries[:MAX_STATUS_EMBEDS]
    ]
    content = None
    if len(lotteries) > MAX_STATUS_EMBEDS:
        content = f"Showing {MAX_STATUS_EMBEDS} of {len(lotteries)} lotteries."
    await respond(interaction, content, embeds=status_embeds)


@handles_errors
async def show_analytics(
    ctx: CommandContext,
    interaction: discord.Interaction,
    user: discord.abc.User | None = None,
) -> None:
    if ctx.analytics is None:
        await respond(interaction, "Analytics are not configured.")
        return
    await interaction.response.defer(ephemeral=True, thinking=True)
    if user is not None:
        stats = ctx.analytics.participant_stats(str(user.id))
        embed = embeds.build_user_stats_embed(str(user.id), stats)
    else:
        embed = embeds.build_analytics_embed(
            ctx.analytics.global_stats(), ctx.analytics.most_active(10)
        )
    await respond(interaction, embed=embed)


@handles_errors
async def show_help(ctx: CommandContext, interaction: discord.Interaction) -> None:
    allowed = allowed_commands(interaction.user, ctx.roles)
    await respond(interaction, embed=embeds.build_help_embed(allowed))


# ----- Skulls -----
def _require_ledger(ctx: CommandContext) -> SkullLedger:
    if ctx.ledger is None:
        raise RuntimeError("Skulls table is not configured")
    return ctx.ledger


@handles_errors
async def skulls_balance(ctx: CommandContext, interaction: discord.Interaction) -> None:
    balance = _require_ledger(ctx).get_balance(str(interaction.user.id))
    await respond(interaction, embed=embeds.build_balance_embed(balance))


@handles_errors
async def skulls_gift(
    ctx: CommandContext, interaction: discord.Interaction, user: discord.abc.User, amount: int
) -> None:
    ledger = _require_ledger(ctx)
    sender_id = str(interaction.user.id)
    if not ledger.transfer(sender_id, str(user.id), amount):
        balance = ledger.get_balance(sender_id)
        await respond(interaction, f"You don't have enough skulls! Your balance: {balance}")
        return
    await respond(interaction, f"Successfully gifted {amount} skulls to {user.mention}!")
    balance = ledger.get_balance(str(user.id))
    await ctx.messenger.send_direct_notification(
        str(user.id),
        f"{interaction.user.mention} has gifted you {amount} skulls! "
        f"Your new balance is {balance} skulls.",
    )


@handles_errors
async def skulls_adjust(
    ctx: CommandContext,
    interaction: discord.Interaction,
    user: discord.abc.User,
    amount: int,
    *,
    add: bool,
) -> None:
    if not has_permission(interaction.user, "skulls_admin", ctx.roles):
        await respond(interaction, "You do not have permission to use this command!")
        return
    ledger = _require_ledger(ctx)
    user_id = str(user.id)
    if add:
        balance = ledger.credit(user_id, amount)
        await respond(
            interaction,
            f"Added {amount} skulls to {user.mention}. New balance: {balance} skulls",
        )
        verb = "added"
        preposition = "to"
    else:
        if not ledger.debit(user_id, amount):
            balance = ledger.get_balance(user_id)
            await respond(
                interaction,
                f"{user.mention} does not have enough skulls! Current balance: {balance}",
            )
            return
        balance = ledger.get_balance(user_id)
        await respond(
            interaction,
            f"Removed {amount} skulls from {user.mention}. New balance: {balance} skulls",
        )
        verb = "removed"
        preposition = "from"
    await ctx.messenger.send_direct_notification(
        user_id,
        f"An admin has {verb} {amount} skulls {preposition} your balance. "
        f"Your new balance is {balance} skulls.",
    )


# ----- Registration -----
def register_commands(tree: app_commands.CommandTree, ctx: CommandContext) -> None:
    roles = ctx.roles

    @require_permission("sd", roles)
    @app_commands.describe(
        time="Duration such as 30m, 1h or 1h30m",
        prize="Prize for the winners",
        winners="Number of winners",
        min_participants="Minimum participants for a valid draw",
        terms="Terms and conditions",
    )
    @tree.command(name="sd", description="Start a SoulDraw lottery")
    async def sd_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
        time: str,
        prize: str,
        winners: app_commands.Range[int, 1, 100],
        min_participants: app_commands.Range[int, 1] | None = None,
        terms: str | None = None,
    ) -> None:
        await start_lottery(
            ctx,
            interaction,
            time=time,
            prize=prize,
            winners=winners,
            min_participants=min_participants,
            terms=terms,
        )

    @require_permission("rsd", roles)
    @app_commands.describe(
        time="Duration such as 30m, 1h or 1h30m",
        prize="Prize for the winners",
        winners="Number of winners",
        ticket_price="Skulls per ticket",
        max_tickets="Maximum tickets per user",
        min_participants="Minimum participants for a valid draw",
        terms="Terms and conditions",
    )
    @tree.command(name="rsd", description="Start a ticketed SoulDraw raffle")
    async def rsd_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
        time: str,
        prize: str,
        winners: app_commands.Range[int, 1, 100],
        ticket_price: app_commands.Range[int, 1],
        max_tickets: app_commands.Range[int, 1],
        min_participants: app_commands.Range[int, 1] | None = None,
        terms: str | None = None,
    ) -> None:
        await start_lottery(
            ctx,
            interaction,
            time=time,
            prize=prize,
            winners=winners,
            min_participants=min_participants,
            terms=terms,
            ticket_price=ticket_price,
            max_tickets=max_tickets,
        )

    @require_permission("draw", roles)
    @app_commands.describe(lottery_id="ID of the expired manual lottery")
    @tree.command(name="draw", description="Draw winners for a manual lottery")
    async def draw_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction, lottery_id: str
    ) -> None:
        await draw_lottery(ctx, interaction, lottery_id)

    @require_permission("cnl", roles)
    @app_commands.describe(lottery_id="ID of the lottery to cancel")
    @tree.command(name="cnl", description="Cancel a lottery")
    async def cnl_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction, lottery_id: str
    ) -> None:
        await cancel_lottery(ctx, interaction, lottery_id)

    @require_permission("rm", roles)
    @app_commands.describe(lottery_id="ID of the lottery", user="Participant to remove")
    @tree.command(name="rm", description="Remove a participant from a lottery")
    async def rm_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction, lottery_id: str, user: discord.User
    ) -> None:
        await remove_participant(ctx, interaction, lottery_id, user)

    @require_permission("st", roles)
    @tree.command(name="st", description="Show active lotteries")
    async def st_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
    ) -> None:
        await show_status(ctx, interaction)

    @require_permission("an", roles)
    @app_commands.describe(user="Show statistics for this member instead")
    @tree.command(name="an", description="View lottery analytics")
    async def an_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction, user: discord.User | None = None
    ) -> None:
        await show_analytics(ctx, interaction, user)

    @tree.command(name="hlp", description="Show SoulDraw commands")
    async def hlp_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
    ) -> None:
        await show_help(ctx, interaction)

    skulls = app_commands.Group(name="skulls", description="Manage SoulDraw skulls")

    @skulls.command(name="balance", description="Check your skull balance")
    async def balance_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
    ) -> None:
        await skulls_balance(ctx, interaction)

    @app_commands.describe(user="Member to gift skulls to", amount="Skulls to gift")
    @skulls.command(name="gift", description="Gift skulls to another member")
    async def gift_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
        user: discord.User,
        amount: app_commands.Range[int, 1],
    ) -> None:
        await skulls_gift(ctx, interaction, user, amount)

    @app_commands.describe(user="Member to credit", amount="Skulls to add")
    @skulls.command(name="add", description="Add skulls to a member (Admin only)")
    async def add_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
        user: discord.User,
        amount: app_commands.Range[int, 1],
    ) -> None:
        await skulls_adjust(ctx, interaction, user, amount, add=True)

    @app_commands.describe(user="Member to debit", amount="Skulls to remove")
    @skulls.command(name="remove", description="Remove skulls from a member (Admin only)")
    async def remove_command(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction,
        user: discord.User,
        amount: app_commands.Range[int, 1],
    ) -> None:
        await skulls_adjust(ctx, interaction, user, amount, add=False)

    tree.add_command(skulls)

    @tree.error
    async def on_app_command_error(  # pragma: no cover - Discord slash command wiring
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await respond(interaction, str(error))
            return
        log.exception("Unhandled command error: %s", error)
        await respond(interaction, GENERIC_ERROR)


__all__ = [
    "CommandContext",
    "respond",
    "handles_errors",
    "start_lottery",
    "draw_lottery",
    "cancel_lottery",
    "remove_participant",
    "show_status",
    "show_analytics",
    "show_help",
    "skulls_balance",
    "skulls_gift",
    "skulls_adjust",
    "register_commands",
]
