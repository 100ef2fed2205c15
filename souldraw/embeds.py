"""Embed builders for lottery cards, announcements and dashboards."""

from __future__ import annotations

from datetime import UTC, datetime

import discord

from lottery_bot.analytics import ActiveParticipant, GlobalStats, ParticipantStats
from lottery_bot.models import MINUTE_MS, DrawMode, Lottery, LotteryStatus

_FIELD_LIMIT = 1024

_STATUS_LABELS = {
    LotteryStatus.PENDING: "⏳ PENDING",
    LotteryStatus.ACTIVE: "🟢 LIVE",
    LotteryStatus.EXPIRED: "🟡 AWAITING DRAW",
    LotteryStatus.ENDED: "🔴 ENDED",
    LotteryStatus.CANCELLED: "⚫ CANCELLED",
}

HELP_TEXT: dict[str, str] = {
    "sd": "`/sd time prize winners` Start a free SoulDraw",
    "rsd": "`/rsd time prize winners ticket_price max_tickets` Start a ticketed raffle",
    "draw": "`/draw lottery_id` Draw winners for an expired manual lottery",
    "cnl": "`/cnl lottery_id` Cancel a lottery and refund tickets",
    "rm": "`/rm lottery_id user` Remove a participant",
    "st": "`/st` Show active lotteries",
    "an": "`/an [user]` Analytics dashboard or per-user statistics",
    "skulls": "`/skulls balance` and `/skulls gift` Check or gift skulls",
    "skulls_admin": "`/skulls add` and `/skulls remove` Adjust a member's skulls",
    "hlp": "`/hlp` Show this help",
}


def _timestamp(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def mention(user_id: str) -> str:
    return f"<@{user_id}>"


def format_remaining(ms: int) -> str:
    """Render a duration such as ``1d 2h 3m 4s``."""
    ms = max(0, ms)
    days, rest = divmod(ms // 1000, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes, seconds = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def progress_bar(fraction: float, width: int = 10) -> str:
    fraction = min(1.0, max(0.0, fraction))
    filled = round(fraction * width)
    bar = "▰" * filled + "▱" * (width - filled)
    return f"✨{bar}✨" if fraction <= 0.1 else bar


def _time_emoji(fraction: float) -> str:
    if fraction >= 0.75:
        return "⏳"
    if fraction >= 0.5:
        return "⌛"
    if fraction >= 0.25:
        return "🕒"
    if fraction >= 0.1:
        return "⚡"
    return "🔥"


def _time_color(fraction: float) -> discord.Color:
    if fraction >= 0.75:
        return discord.Color.green()
    if fraction >= 0.5:
        return discord.Color.orange()
    if fraction >= 0.25:
        return discord.Color.from_rgb(255, 127, 80)
    if fraction >= 0.1:
        return discord.Color.from_rgb(255, 69, 0)
    return discord.Color.red()


def _clip(lines: list[str], empty: str) -> str:
    if not lines:
        return empty
    value = ""
    for index, line in enumerate(lines):
        candidate = f"{value}\n{line}" if value else line
        if len(candidate) > _FIELD_LIMIT - 20:
            return f"{value}\n… {len(lines) - index} more"
        value = candidate
    return value


def _ticket_info(lottery: Lottery) -> str:
    if not lottery.is_paid:
        return "Free entry"
    return (
        f"Price: {lottery.ticket_price} skulls\n"
        f"Max per user: {lottery.max_tickets_per_user}"
    )


def _draw_label(lottery: Lottery) -> str:
    return "Manual Draw" if lottery.draw_mode == DrawMode.MANUAL else "Auto Draw"


def build_lottery_card(lottery: Lottery, now: int) -> discord.Embed:
    status_label = _STATUS_LABELS.get(lottery.status, str(lottery.status))
    is_active = lottery.status == LotteryStatus.ACTIVE
    participants = (
        f"{len(lottery.participants)}/{lottery.min_participants} participants "
        f"({lottery.total_tickets} tickets)"
    )

    description = f"**Lottery ID: `{lottery.lottery_id}`**\n"
    color = discord.Color.dark_grey()
    time_display = "Ended"
    if is_active:
        remaining = lottery.remaining_ms(now)
        total = max(1, lottery.end_time - lottery.start_time)
        fraction = remaining / total
        time_display = format_remaining(remaining)
        if fraction <= 0.1:
            time_display = f"⚠️ ENDING SOON: {time_display} ⚠️"
        color = _time_color(fraction)
        description += (
            "🎟️ Join now for a chance to win!\n\n"
            f"{_time_emoji(fraction)} {progress_bar(fraction)}"
        )
    elif lottery.status == LotteryStatus.EXPIRED:
        time_display = "Waiting for the host to draw"
        color = discord.Color.gold()
        description += "Entries are closed. Winners will be drawn by the host."
    elif lottery.status == LotteryStatus.CANCELLED:
        description += "This lottery was cancelled."
    else:
        description += "This lottery has ended."

    title = "🎉 Live SoulDraw!" if is_active else "🏁 SoulDraw Ended"
    embed = discord.Embed(
        title=f"{title} {status_label}",
        description=description,
        color=color,
        timestamp=_timestamp(now),
    )
    embed.add_field(name="🎁 Prize", value=lottery.prize, inline=True)
    embed.add_field(
        name=f"👥 Winners ({lottery.winner_count})", value=participants, inline=True
    )
    embed.add_field(name="⏰ Time", value=time_display, inline=True)
    embed.add_field(name="🎫 Ticket Info", value=_ticket_info(lottery), inline=False)
    embed.add_field(
        name="📝 Terms", value=lottery.terms or "No specific terms", inline=False
    )
    if lottery.status == LotteryStatus.ENDED and lottery.winner_list:
        embed.add_field(
            name="🏆 Winner(s)",
            value=_clip([mention(w) for w in lottery.winner_list], "None"),
            inline=False,
        )
    embed.set_footer(
        text=f"ID: {lottery.lottery_id} • {_draw_label(lottery)} • {status_label}"
    )
    return embed


def build_confirmation_embed(lottery: Lottery) -> discord.Embed:
    embed = discord.Embed(
        title="🎲 Confirm SoulDraw" if not lottery.is_paid else "🎲 Confirm Raffle",
        description=(
            "Pick **Auto** or **Manual** draw, then press **Confirm** to go live."
        ),
        color=discord.Color.blurple(),
    )
    embed.add_field(name="🎁 Prize", value=lottery.prize, inline=True)
    embed.add_field(name="🏆 Winners", value=str(lottery.winner_count), inline=True)
    embed.add_field(
        name="⏰ Duration", value=format_remaining(lottery.duration_ms), inline=True
    )
    embed.add_field(
        name="👥 Minimum Participants", value=str(lottery.min_participants), inline=True
    )
    embed.add_field(name="🎫 Ticket Info", value=_ticket_info(lottery), inline=True)
    embed.add_field(
        name="📝 Terms", value=lottery.terms or "No specific terms", inline=False
    )
    embed.set_footer(text=f"ID: {lottery.lottery_id}")
    return embed


def build_winner_embed(lottery: Lottery, winners: list[str]) -> discord.Embed:
    embed = discord.Embed(
        title="🎊 LOTTERY WINNERS ANNOUNCED 🎊",
        description=(
            f"The lottery for **{lottery.prize}** has concluded!\n"
            f"Lottery ID: `{lottery.lottery_id}`"
        ),
        color=discord.Color.green(),
        timestamp=_timestamp(lottery.end_time),
    )
    embed.add_field(
        name="🏆 Winner(s)", value=_clip([mention(w) for w in winners], "None"), inline=False
    )
    embed.add_field(
        name="📊 Statistics",
        value=(
            f"Total participants: {len(lottery.participants)}\n"
            f"Total tickets: {lottery.total_tickets}"
        ),
        inline=False,
    )
    embed.set_footer(text="Congratulations to all winners! 🌟")
    return embed


def build_congratulations_embed(lottery: Lottery, winners: list[str]) -> discord.Embed:
    winner_lines = "\n".join(mention(w) for w in winners)
    return discord.Embed(
        title="🌟 CONGRATULATIONS! 🌟",
        description=(
            f"🏆 **Winners**\n{winner_lines}\n\n"
            f"🎁 **Prize Won:** {lottery.prize}\n\n"
            "📝 Please contact the host to claim your prize.\n\n"
            "💫 Thank you to everyone who joined!"
        ),
        color=discord.Color.gold(),
    )


def build_failure_embed(lottery: Lottery) -> discord.Embed:
    description = (
        f"The lottery for **{lottery.prize}** ended with "
        f"{len(lottery.participants)} participant(s). "
        f"Minimum required: {lottery.min_participants}."
    )
    if lottery.is_paid:
        description += "\nAll tickets have been refunded."
    embed = discord.Embed(
        title="😔 Not Enough Participants",
        description=description,
        color=discord.Color.dark_grey(),
    )
    embed.set_footer(text=f"ID: {lottery.lottery_id}")
    return embed


def build_participants_embed(lottery: Lottery, now: int) -> discord.Embed:
    lines = []
    for user_id, tickets in lottery.participants.items():
        if lottery.is_paid:
            chance = lottery.win_probability(user_id)
            lines.append(f"{mention(user_id)} - {tickets} tickets ({chance:.2f}% chance)")
        else:
            lines.append(mention(user_id))
    embed = discord.Embed(
        title="👥 Current Participants",
        description=f"**Lottery ID:** `{lottery.lottery_id}`\n**Prize:** {lottery.prize}",
        color=discord.Color.blue(),
        timestamp=_timestamp(now),
    )
    embed.add_field(
        name=f"Participants ({len(lines)})",
        value=_clip(lines, "No participants yet"),
        inline=False,
    )
    embed.add_field(
        name="🎫 Total Tickets", value=f"{lottery.total_tickets} tickets", inline=True
    )
    embed.add_field(
        name="⏰ Time Remaining",
        value=format_remaining(lottery.remaining_ms(now)),
        inline=True,
    )
    embed.set_footer(text=f"Min. required: {lottery.min_participants}")
    return embed


def build_status_embed(lottery: Lottery, now: int) -> discord.Embed:
    embed = discord.Embed(
        title="📊 Lottery Status",
        description=f"**Lottery ID:** `{lottery.lottery_id}`",
        color=discord.Color.blue(),
    )
    embed.add_field(name="🎁 Prize", value=lottery.prize, inline=True)
    embed.add_field(
        name="⏰ Time Remaining",
        value=format_remaining(lottery.remaining_ms(now)),
        inline=True,
    )
    embed.add_field(
        name="👥 Participants", value=str(len(lottery.participants)), inline=True
    )
    embed.add_field(
        name="📌 Status",
        value=f"{str(lottery.status).capitalize()} ({_draw_label(lottery)})",
        inline=False,
    )
    return embed


def build_entry_confirmation(lottery: Lottery, user_id: str, now: int) -> discord.Embed:
    embed = discord.Embed(
        title="🎟️ Lottery Entry Confirmed!",
        description=f"You have joined the lottery for **{lottery.prize}**!",
        color=discord.Color.green(),
    )
    embed.add_field(
        name="🎫 Your Tickets", value=f"{lottery.tickets_for(user_id)} tickets", inline=True
    )
    embed.add_field(
        name="🎲 Win Chance", value=f"{lottery.win_probability(user_id):.2f}%", inline=True
    )
    embed.add_field(
        name="⏰ Drawing In",
        value=format_remaining(lottery.remaining_ms(now)),
        inline=False,
    )
    embed.set_footer(text=f"Lottery ID: {lottery.lottery_id}")
    return embed


def build_ending_soon_embed(lottery: Lottery, user_id: str, now: int) -> discord.Embed:
    remaining = lottery.remaining_ms(now)
    urgent = remaining <= 5 * MINUTE_MS
    emoji = "⚡" if urgent else "⚠️"
    embed = discord.Embed(
        title=f"{emoji} Lottery Ending Soon! {emoji}",
        description=(
            f"The lottery for **{lottery.prize}** ends in {format_remaining(remaining)}!"
        ),
        color=discord.Color.orange(),
    )
    embed.add_field(
        name="🎫 Your Tickets", value=f"{lottery.tickets_for(user_id)} tickets", inline=True
    )
    embed.add_field(
        name="🎲 Current Win Chance",
        value=f"{lottery.win_probability(user_id):.2f}%",
        inline=True,
    )
    embed.add_field(
        name="👥 Total Participants", value=str(len(lottery.participants)), inline=True
    )
    embed.set_footer(text=f"Lottery ID: {lottery.lottery_id}")
    return embed


def build_winner_notice(lottery: Lottery) -> discord.Embed:
    embed = discord.Embed(
        title="🎉 Congratulations! You Won!",
        description=f"You have won the lottery for **{lottery.prize}**!",
        color=discord.Color.gold(),
    )
    embed.add_field(name="🏆 Prize", value=lottery.prize, inline=False)
    embed.add_field(
        name="📝 Next Steps",
        value="Please contact the host to claim your prize.",
        inline=False,
    )
    embed.set_footer(text=f"Lottery ID: {lottery.lottery_id}")
    return embed


def build_analytics_embed(
    stats: GlobalStats, top: list[ActiveParticipant]
) -> discord.Embed:
    embed = discord.Embed(
        title="📊 SoulDraw Analytics Dashboard", color=discord.Color.purple()
    )
    embed.add_field(
        name="🌐 Global Statistics",
        value=(
            f"📊 Total participations: {stats.total_participations}\n"
            f"👥 Unique participants: {stats.unique_participants}\n"
            f"🎯 Total lotteries: {stats.total_lotteries}\n"
            f"🏆 Total winners: {stats.total_winners}\n"
            f"🎫 Total tickets: {stats.total_tickets}\n"
            f"📈 Avg. participants/lottery: {stats.average_participation:.2f}"
        ),
        inline=False,
    )
    lines = [
        f"{index}. {mention(entry.user_id)} - {entry.tickets} tickets, {entry.wins} wins"
        for index, entry in enumerate(top, start=1)
    ]
    embed.add_field(
        name="🏅 Most Active Participants",
        value=_clip(lines, "No participation data yet"),
        inline=False,
    )
    return embed


def build_user_stats_embed(user_id: str, stats: ParticipantStats) -> discord.Embed:
    embed = discord.Embed(
        title="📊 Participant Statistics",
        description=f"Statistics for {mention(user_id)}",
        color=discord.Color.purple(),
    )
    embed.add_field(
        name="🎯 Participation Overview",
        value=(
            f"🎟️ Total participations: {stats.total_participations}\n"
            f"🎪 Unique lotteries: {stats.unique_lotteries}\n"
            f"🎫 Tickets bought: {stats.total_tickets}\n"
            f"🏆 Total wins: {stats.wins}\n"
            f"📊 Win rate: {stats.win_rate:.2f}%"
        ),
        inline=False,
    )
    return embed


def build_balance_embed(balance: int) -> discord.Embed:
    embed = discord.Embed(
        title="💀 Skull Balance",
        description=f"You currently have **{balance}** skulls",
        color=discord.Color.gold(),
    )
    embed.set_footer(text="Contact an admin to get more skulls")
    return embed


def build_help_embed(allowed: set[str]) -> discord.Embed:
    lines = [text for command, text in HELP_TEXT.items() if command in allowed]
    return discord.Embed(
        title="📖 SoulDraw Help",
        description="\n".join(lines) or "No commands available.",
        color=discord.Color.blurple(),
    )


__all__ = [
    "HELP_TEXT",
    "mention",
    "format_remaining",
    "progress_bar",
    "build_lottery_card",
    "build_confirmation_embed",
    "build_winner_embed",
    "build_congratulations_embed",
    "build_failure_embed",
    "build_participants_embed",
    "build_status_embed",
    "build_entry_confirmation",
    "build_ending_soon_embed",
    "build_winner_notice",
    "build_analytics_embed",
    "build_user_stats_embed",
    "build_balance_embed",
    "build_help_embed",
]
