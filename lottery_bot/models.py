from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import ClassVar, TypedDict

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


def now_ms() -> int:
    """Return the current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class LotteryStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    ENDED = "ended"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({LotteryStatus.ENDED, LotteryStatus.CANCELLED})
DRAWABLE_STATUSES = frozenset({LotteryStatus.ACTIVE, LotteryStatus.EXPIRED})


class DrawMode(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class LotterySettings:
    """Numeric bounds and policies shared by the store and the engine."""

    min_duration_ms: int = MINUTE_MS
    max_duration_ms: int = 24 * HOUR_MS
    max_winners: int = 10
    max_ticket_price: int = 1000
    max_tickets_per_user: int = 1000
    announcement_grace_ms: int = 10 * MINUTE_MS
    ending_soon_ms: int = 15 * MINUTE_MS
    refund_on_removal: bool = True


@dataclass(frozen=True, slots=True)
class ExternalLocation:
    """Where the live lottery card lives in Discord."""

    guild_id: int | None
    channel_id: int
    message_id: int | None = None


class LotteryItem(TypedDict, total=False):
    """Persisted shape of a lottery row."""

    pk: str
    sk: str
    lottery_id: str
    prize: str
    winner_count: int
    min_participants: int
    duration_ms: int
    start_time: int
    end_time: int
    created_by: str
    ticket_price: int
    max_tickets_per_user: int
    terms: str
    status: str
    draw_mode: str
    participants: dict[str, int]
    total_tickets: int
    winner_list: list[str]
    winner_announced: bool
    refunded: bool
    is_raffle: bool
    guild_id: str
    channel_id: str
    message_id: str


def _optional_int(value: object) -> int | None:
    if value in (None, "", "None"):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):  # pragma: no cover - defensive
        return None


@dataclass(slots=True)
class Lottery:
    lottery_id: str
    prize: str
    winner_count: int
    min_participants: int
    duration_ms: int
    start_time: int
    end_time: int
    created_by: str = ""
    ticket_price: int = 0
    max_tickets_per_user: int = 1
    terms: str = ""
    status: LotteryStatus = LotteryStatus.PENDING
    draw_mode: DrawMode = DrawMode.AUTO
    participants: dict[str, int] = field(default_factory=dict)
    winner_list: list[str] = field(default_factory=list)
    winner_announced: bool = False
    refunded: bool = False
    is_raffle: bool = False
    location: ExternalLocation | None = None

    PK_TEMPLATE: ClassVar[str] = "LOTTERY#%s"
    SK_VALUE: ClassVar[str] = "META"

    @classmethod
    def key(cls, lottery_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % lottery_id, "sk": cls.SK_VALUE}

    @property
    def total_tickets(self) -> int:
        return sum(self.participants.values())

    @property
    def is_paid(self) -> bool:
        return self.ticket_price > 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def remaining_ms(self, now: int) -> int:
        return max(0, self.end_time - now)

    def tickets_for(self, user_id: str) -> int:
        return self.participants.get(user_id, 0)

    def win_probability(self, user_id: str) -> float:
        """Return the single-pick win chance for ``user_id`` as a percentage."""
        total = self.total_tickets
        if total == 0:
            return 0.0
        return self.tickets_for(user_id) / total * 100

    def check_invariants(self) -> None:
        for user_id, tickets in self.participants.items():
            if tickets < 1:
                raise AssertionError(f"{user_id} holds {tickets} tickets")
            if tickets > self.max_tickets_per_user:
                raise AssertionError(
                    f"{user_id} holds {tickets} tickets, cap is "
                    f"{self.max_tickets_per_user}"
                )
        if len(self.winner_list) > self.winner_count:
            raise AssertionError("More winners than winner_count")
        if len(set(self.winner_list)) != len(self.winner_list):
            raise AssertionError("Duplicate winner ids")
        if self.winner_list and self.status != LotteryStatus.ENDED:
            raise AssertionError("Winners recorded on a lottery that has not ended")

    def snapshot(self) -> Lottery:
        """Return a copy that later mutations of this record cannot reach."""
        return replace(
            self,
            participants=dict(self.participants),
            winner_list=list(self.winner_list),
        )

    def to_item(self) -> LotteryItem:
        item: LotteryItem = {
            **self.key(self.lottery_id),  # type: ignore[typeddict-item]
            "lottery_id": self.lottery_id,
            "prize": self.prize,
            "winner_count": self.winner_count,
            "min_participants": self.min_participants,
            "duration_ms": self.duration_ms,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "created_by": self.created_by,
            "ticket_price": self.ticket_price,
            "max_tickets_per_user": self.max_tickets_per_user,
            "terms": self.terms,
            "status": str(self.status),
            "draw_mode": str(self.draw_mode),
            "participants": dict(self.participants),
            "total_tickets": self.total_tickets,
            "winner_list": list(self.winner_list),
            "winner_announced": self.winner_announced,
            "refunded": self.refunded,
            "is_raffle": self.is_raffle,
        }
        if self.location is not None:
            if self.location.guild_id is not None:
                item["guild_id"] = str(self.location.guild_id)
            item["channel_id"] = str(self.location.channel_id)
            if self.location.message_id is not None:
                item["message_id"] = str(self.location.message_id)
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Lottery:
        # boto3 hands numbers back as Decimal
        raw_participants = item.get("participants") or {}
        participants = {
            str(user_id): int(tickets)  # type: ignore[arg-type]
            for user_id, tickets in raw_participants.items()  # type: ignore[union-attr]
        }
        channel_id = _optional_int(item.get("channel_id"))
        location = None
        if channel_id is not None:
            location = ExternalLocation(
                guild_id=_optional_int(item.get("guild_id")),
                channel_id=channel_id,
                message_id=_optional_int(item.get("message_id")),
            )
        winner_count = int(item["winner_count"])  # type: ignore[arg-type]
        return cls(
            lottery_id=str(item["lottery_id"]),
            prize=str(item.get("prize", "")),
            winner_count=winner_count,
            min_participants=int(item.get("min_participants") or winner_count),  # type: ignore[arg-type]
            duration_ms=int(item.get("duration_ms", 0)),  # type: ignore[arg-type]
            start_time=int(item.get("start_time", 0)),  # type: ignore[arg-type]
            end_time=int(item.get("end_time", 0)),  # type: ignore[arg-type]
            created_by=str(item.get("created_by", "")),
            ticket_price=int(item.get("ticket_price", 0)),  # type: ignore[arg-type]
            max_tickets_per_user=int(item.get("max_tickets_per_user", 1)),  # type: ignore[arg-type]
            terms=str(item.get("terms") or ""),
            status=LotteryStatus(str(item.get("status", LotteryStatus.PENDING))),
            draw_mode=DrawMode(str(item.get("draw_mode", DrawMode.AUTO))),
            participants=participants,
            winner_list=[str(w) for w in item.get("winner_list") or []],  # type: ignore[union-attr]
            winner_announced=bool(item.get("winner_announced", False)),
            refunded=bool(item.get("refunded", False)),
            is_raffle=bool(item.get("is_raffle", False)),
            location=location,
        )


__all__ = [
    "MINUTE_MS",
    "HOUR_MS",
    "now_ms",
    "LotteryStatus",
    "TERMINAL_STATUSES",
    "DRAWABLE_STATUSES",
    "DrawMode",
    "LotterySettings",
    "ExternalLocation",
    "LotteryItem",
    "Lottery",
]
