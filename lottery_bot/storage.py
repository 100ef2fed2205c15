from __future__ import annotations

import copy
import dataclasses
import logging
from collections.abc import Iterator

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from .errors import InvalidStateError, NotFoundError, PersistenceError, ValidationError
from .models import (
    DrawMode,
    Lottery,
    LotterySettings,
    LotteryStatus,
    TERMINAL_STATUSES,
)
from .validation import validate_lottery

log = logging.getLogger("lottery-store")

_UPDATABLE_FIELDS = frozenset(
    f.name for f in dataclasses.fields(Lottery) if f.name != "lottery_id"
)
_RECONCILE_STATUSES = (LotteryStatus.ACTIVE, LotteryStatus.EXPIRED)
# ended and cancelled records only ever gain these flags
_TERMINAL_FIELDS = frozenset({"winner_announced", "refunded"})


def _refund_pending(lottery: Lottery) -> bool:
    return lottery.is_paid and not lottery.refunded and bool(lottery.participants)


def _coerce(name: str, value: object) -> object:
    if name == "status":
        return LotteryStatus(value)
    if name == "draw_mode":
        return DrawMode(value)
    return value


class LotteryStore:
    """In-memory lottery cache written through to a DynamoDB table."""

    def __init__(self, table, settings: LotterySettings | None = None) -> None:
        self._table = table
        self._settings = settings or LotterySettings()
        self._lotteries: dict[str, Lottery] = {}

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Lottery table is not configured")

    # ----- Cache -----
    def get(self, lottery_id: str) -> Lottery | None:
        return self._lotteries.get(lottery_id)

    def require(self, lottery_id: str) -> Lottery:
        lottery = self._lotteries.get(lottery_id)
        if lottery is None:
            raise NotFoundError(lottery_id)
        return lottery

    def list_by_status(self, status: LotteryStatus | str) -> list[Lottery]:
        wanted = LotteryStatus(status)
        matches = [lot for lot in self._lotteries.values() if lot.status == wanted]
        matches.sort(key=lambda lot: (lot.end_time, lot.lottery_id))
        return matches

    def load(self, lottery: Lottery) -> None:
        """Register a record read back from durable storage."""
        self._lotteries[lottery.lottery_id] = lottery

    # ----- Writes -----
    def insert(self, lottery: Lottery) -> Lottery:
        self.ensure_table()
        validate_lottery(lottery, self._settings)
        lottery.status = LotteryStatus.PENDING
        lottery.winner_list = []
        lottery.winner_announced = False
        try:
            self._table.put_item(
                Item=lottery.to_item(),
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code == "ConditionalCheckFailedException":
                raise PersistenceError(
                    f"Lottery {lottery.lottery_id} already exists"
                ) from exc
            raise PersistenceError(
                f"Failed to store lottery {lottery.lottery_id}"
            ) from exc
        except BotoCoreError as exc:
            raise PersistenceError(
                f"Failed to store lottery {lottery.lottery_id}"
            ) from exc
        self._lotteries[lottery.lottery_id] = lottery
        log.info("Stored pending lottery %s (%s)", lottery.lottery_id, lottery.prize)
        return lottery

    def update(self, lottery_id: str, **fields: object) -> Lottery:
        """Merge ``fields`` into the cached record and write it through.

        The cached record is restored if the invariants fail or the durable
        write raises, so memory never runs ahead of a failed write.
        """
        self.ensure_table()
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown lottery fields: {', '.join(sorted(unknown))}")
        lottery = self.require(lottery_id)
        if lottery.is_terminal and set(fields) - _TERMINAL_FIELDS:
            raise InvalidStateError(lottery_id, lottery.status, "modify")

        previous = {name: copy.copy(getattr(lottery, name)) for name in fields}
        for name, value in fields.items():
            setattr(lottery, name, _coerce(name, value))

        try:
            lottery.check_invariants()
        except AssertionError as exc:
            self._restore(lottery, previous)
            raise ValidationError(str(exc)) from exc

        try:
            self._table.put_item(Item=lottery.to_item())
        except (BotoCoreError, ClientError) as exc:
            self._restore(lottery, previous)
            log.error("Durable write for lottery %s failed: %s", lottery_id, exc)
            raise PersistenceError(f"Failed to update lottery {lottery_id}") from exc
        return lottery

    @staticmethod
    def _restore(lottery: Lottery, previous: dict[str, object]) -> None:
        for name, value in previous.items():
            setattr(lottery, name, value)

    # ----- Durable queries -----
    def _scan(self, **scan_kwargs: object) -> Iterator[dict[str, object]]:
        self.ensure_table()
        while True:
            try:
                resp = self._table.scan(**scan_kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise PersistenceError("Failed to scan lottery table") from exc
            for item in resp.get("Items", []):
                if item.get("sk") == Lottery.SK_VALUE:
                    yield item
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            scan_kwargs["ExclusiveStartKey"] = last_key

    def list_for_reconciliation(self, now: int) -> list[Lottery]:
        """Read every record that a restart may still need to act on."""
        cutoff = now - self._settings.announcement_grace_ms
        filter_expression = Attr("status").is_in(
            [status.value for status in _RECONCILE_STATUSES]
        ) | (
            Attr("status").is_in([LotteryStatus.ENDED.value, LotteryStatus.CANCELLED.value])
            & Attr("end_time").gt(cutoff)
        )

        lotteries: list[Lottery] = []
        for item in self._scan(FilterExpression=filter_expression):
            try:
                lottery = Lottery.from_item(item)
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping malformed lottery item %s: %s", item.get("pk"), exc)
                continue
            if lottery.status in _RECONCILE_STATUSES or (
                lottery.end_time > cutoff
                and (
                    lottery.status == LotteryStatus.ENDED
                    or (lottery.status == LotteryStatus.CANCELLED and _refund_pending(lottery))
                )
            ):
                lotteries.append(lottery)
        lotteries.sort(key=lambda lot: (lot.end_time, lot.lottery_id))
        return lotteries

    def list_terminal_before(self, cutoff: int) -> list[Lottery]:
        filter_expression = Attr("status").is_in(
            [status.value for status in TERMINAL_STATUSES]
        ) & Attr("end_time").lt(cutoff)
        lotteries = []
        for item in self._scan(FilterExpression=filter_expression):
            lottery = Lottery.from_item(item)
            if lottery.is_terminal and lottery.end_time < cutoff:
                lotteries.append(lottery)
        return lotteries

    def delete_terminal_before(self, cutoff: int) -> list[str]:
        """Delete ended or cancelled records whose end time is before ``cutoff``."""
        deleted: list[str] = []
        for lottery in self.list_terminal_before(cutoff):
            try:
                self._table.delete_item(
                    Key=Lottery.key(lottery.lottery_id),
                    ConditionExpression="attribute_exists(pk)",
                )
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code == "ConditionalCheckFailedException":
                    continue
                raise PersistenceError(
                    f"Failed to delete lottery {lottery.lottery_id}"
                ) from exc
            self._lotteries.pop(lottery.lottery_id, None)
            deleted.append(lottery.lottery_id)
        return deleted


__all__ = ["LotteryStore"]
