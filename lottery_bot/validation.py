from __future__ import annotations

import re

from .errors import ValidationError
from .models import HOUR_MS, MINUTE_MS, Lottery, LotterySettings

_DURATION_PATTERN = re.compile(r"^(?:(?P<hours>\d+)\s*h)?\s*(?:(?P<minutes>\d+)\s*m)?$")


def parse_duration(raw: str) -> int:
    """Parse durations such as ``1h``, ``30m`` or ``1h30m`` into milliseconds."""
    value = raw.strip().lower()
    if not value:
        raise ValidationError("A duration is required, e.g. 1h or 30m")
    match = _DURATION_PATTERN.match(value)
    if match is None or not (match.group("hours") or match.group("minutes")):
        raise ValidationError(f"Invalid duration: {raw}. Use a format like 1h, 30m")
    hours = int(match.group("hours") or 0)
    minutes = int(match.group("minutes") or 0)
    return hours * HOUR_MS + minutes * MINUTE_MS


def format_duration_bounds(settings: LotterySettings) -> str:
    low = settings.min_duration_ms // MINUTE_MS
    high = settings.max_duration_ms // HOUR_MS
    return f"{low}m to {high}h"


def validate_duration(duration_ms: int, settings: LotterySettings) -> int:
    if duration_ms < settings.min_duration_ms or duration_ms > settings.max_duration_ms:
        raise ValidationError(
            f"Duration must be between {format_duration_bounds(settings)}"
        )
    return duration_ms


def validate_prize(raw: str | None) -> str:
    prize = (raw or "").strip()
    if not prize:
        raise ValidationError("A prize is required")
    if len(prize) > 256:
        raise ValidationError("Prize must be 256 characters or fewer")
    return prize


def validate_winner_count(winner_count: int | None, settings: LotterySettings) -> int:
    if winner_count is None:
        raise ValidationError("Number of winners is required")
    if winner_count < 1:
        raise ValidationError("There must be at least one winner")
    if winner_count > settings.max_winners:
        raise ValidationError(f"At most {settings.max_winners} winners are supported")
    return winner_count


def validate_min_participants(min_participants: int | None, winner_count: int) -> int:
    if min_participants is None:
        return winner_count
    if min_participants < winner_count:
        raise ValidationError(
            "Minimum participants must be greater than or equal to the number of winners"
        )
    return min_participants


def validate_ticket_settings(
    ticket_price: int, max_tickets_per_user: int, settings: LotterySettings
) -> tuple[int, int]:
    if ticket_price < 0:
        raise ValidationError("Ticket price cannot be negative")
    if ticket_price > settings.max_ticket_price:
        raise ValidationError(
            f"Ticket price must be at most {settings.max_ticket_price} skulls"
        )
    if ticket_price == 0:
        # free entry is always one entry per participant
        return 0, 1
    if max_tickets_per_user < 1:
        raise ValidationError("Maximum tickets per user must be at least 1")
    if max_tickets_per_user > settings.max_tickets_per_user:
        raise ValidationError(
            f"Maximum tickets per user must be at most {settings.max_tickets_per_user}"
        )
    return ticket_price, max_tickets_per_user


def validate_lottery(lottery: Lottery, settings: LotterySettings) -> None:
    """Check a freshly built record against the configured bounds."""
    validate_prize(lottery.prize)
    validate_winner_count(lottery.winner_count, settings)
    validate_duration(lottery.duration_ms, settings)
    validate_min_participants(lottery.min_participants, lottery.winner_count)
    validate_ticket_settings(
        lottery.ticket_price, lottery.max_tickets_per_user, settings
    )
    if lottery.ticket_price == 0 and lottery.max_tickets_per_user != 1:
        raise ValidationError("Free lotteries allow exactly one entry per user")
    if lottery.end_time != lottery.start_time + lottery.duration_ms:
        raise ValidationError("End time must equal start time plus duration")


__all__ = [
    "parse_duration",
    "format_duration_bounds",
    "validate_duration",
    "validate_prize",
    "validate_winner_count",
    "validate_min_participants",
    "validate_ticket_settings",
    "validate_lottery",
]
