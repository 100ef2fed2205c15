"""Participation history and win records for the ``/an`` dashboard."""

from __future__ import annotations

import logging
import uuid
from collections import Counter, defaultdict
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PersistenceError
from .models import now_ms

log = logging.getLogger("lottery-analytics")

PARTICIPATION_ACTIONS = frozenset({"join", "removed", "refund"})


@dataclass(frozen=True, slots=True)
class ParticipantStats:
    total_participations: int
    unique_lotteries: int
    wins: int
    total_tickets: int
    win_rate: float


@dataclass(frozen=True, slots=True)
class GlobalStats:
    total_participations: int
    unique_participants: int
    total_lotteries: int
    total_winners: int
    total_tickets: int
    average_participation: float


@dataclass(frozen=True, slots=True)
class ActiveParticipant:
    user_id: str
    tickets: int
    wins: int


class AnalyticsRecorder:
    """Append-only event rows grouped under ``USER#<id>``.

    Participation events use ``sk = EVENT#<ts>#<lottery>#<action>#<nonce>``;
    wins use ``sk = WIN#<lottery>`` so a replayed win record overwrites
    itself instead of counting twice.
    """

    PK_TEMPLATE = "USER#%s"

    def __init__(self, table, clock: Callable[[], int] = now_ms) -> None:
        self._table = table
        self._clock = clock

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Analytics table is not configured")

    def track_participation(
        self, lottery_id: str, user_id: str, action: str, tickets: int = 1
    ) -> None:
        self.ensure_table()
        if action not in PARTICIPATION_ACTIONS:
            raise ValueError(f"Unknown participation action: {action}")
        timestamp = self._clock()
        item = {
            "pk": self.PK_TEMPLATE % user_id,
            "sk": f"EVENT#{timestamp:013d}#{lottery_id}#{action}#{uuid.uuid4().hex[:8]}",
            "kind": "event",
            "user_id": user_id,
            "lottery_id": lottery_id,
            "action": action,
            "tickets": tickets,
            "timestamp": timestamp,
        }
        try:
            self._table.put_item(Item=item)
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceError(f"Failed to track {action} for {user_id}") from exc

    def record_winners(self, lottery_id: str, winner_ids: list[str]) -> None:
        self.ensure_table()
        timestamp = self._clock()
        try:
            for winner_id in winner_ids:
                self._table.put_item(
                    Item={
                        "pk": self.PK_TEMPLATE % winner_id,
                        "sk": f"WIN#{lottery_id}",
                        "kind": "win",
                        "user_id": winner_id,
                        "lottery_id": lottery_id,
                        "timestamp": timestamp,
                    }
                )
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceError(f"Failed to record winners for {lottery_id}") from exc
        log.info("Recorded %s winner(s) for lottery %s", len(winner_ids), lottery_id)

    # ----- Reads -----
    def _query_user(self, user_id: str) -> list[dict]:
        self.ensure_table()
        items: list[dict] = []
        kwargs: dict[str, object] = {
            "KeyConditionExpression": Key("pk").eq(self.PK_TEMPLATE % user_id)
        }
        while True:
            try:
                resp = self._table.query(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise PersistenceError(f"Failed to read analytics for {user_id}") from exc
            items.extend(resp.get("Items", []))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _scan_all(self) -> Iterator[dict]:
        self.ensure_table()
        kwargs: dict[str, object] = {}
        while True:
            try:
                resp = self._table.scan(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise PersistenceError("Failed to scan analytics table") from exc
            yield from resp.get("Items", [])
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def participant_stats(self, user_id: str) -> ParticipantStats:
        items = self._query_user(user_id)
        events = [item for item in items if item.get("kind") == "event"]
        wins = sum(1 for item in items if item.get("kind") == "win")
        lotteries = {str(item["lottery_id"]) for item in events}
        tickets = sum(
            int(item.get("tickets", 1)) for item in events if item.get("action") == "join"
        )
        win_rate = wins / len(lotteries) * 100 if lotteries else 0.0
        return ParticipantStats(
            total_participations=len(events),
            unique_lotteries=len(lotteries),
            wins=wins,
            total_tickets=tickets,
            win_rate=win_rate,
        )

    def global_stats(self) -> GlobalStats:
        joins = 0
        tickets = 0
        participants: set[str] = set()
        lotteries: set[str] = set()
        winners = 0
        for item in self._scan_all():
            if item.get("kind") == "win":
                winners += 1
                continue
            if item.get("action") != "join":
                continue
            joins += 1
            tickets += int(item.get("tickets", 1))
            participants.add(str(item["user_id"]))
            lotteries.add(str(item["lottery_id"]))
        return GlobalStats(
            total_participations=joins,
            unique_participants=len(participants),
            total_lotteries=len(lotteries),
            total_winners=winners,
            total_tickets=tickets,
            average_participation=joins / len(lotteries) if lotteries else 0.0,
        )

    def most_active(self, limit: int = 10) -> list[ActiveParticipant]:
        tickets: Counter[str] = Counter()
        wins: defaultdict[str, int] = defaultdict(int)
        for item in self._scan_all():
            user_id = str(item.get("user_id"))
            if item.get("kind") == "win":
                wins[user_id] += 1
            elif item.get("action") == "join":
                tickets[user_id] += int(item.get("tickets", 1))
        return [
            ActiveParticipant(user_id=user_id, tickets=count, wins=wins[user_id])
            for user_id, count in tickets.most_common(limit)
        ]


__all__ = [
    "PARTICIPATION_ACTIONS",
    "ParticipantStats",
    "GlobalStats",
    "ActiveParticipant",
    "AnalyticsRecorder",
]
