"""Lottery lifecycle engine.

Owns status transitions, the weighted draw, per-lottery timers and restart
reconciliation. Rendering, balances and analytics are injected collaborators
(see ``lottery_bot.interfaces``); the engine never talks to Discord directly.

Everything runs on one asyncio loop. Store writes are synchronous, so only
``await`` on a collaborator can interleave another event; every coroutine
re-reads the record after such an ``await`` and treats a lottery that is no
longer in the expected status as a normal abort.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from functools import partial

from .errors import InvalidStateError, PersistenceError, ValidationError
from .interfaces import Analytics, Ledger, Messenger
from .models import (
    DRAWABLE_STATUSES,
    DrawMode,
    ExternalLocation,
    Lottery,
    LotterySettings,
    LotteryStatus,
    now_ms,
)
from .scheduler import LotteryScheduler, TimerKind, refresh_interval
from .storage import LotteryStore
from .validation import (
    validate_duration,
    validate_min_participants,
    validate_prize,
    validate_ticket_settings,
    validate_winner_count,
)

log = logging.getLogger("lottery-engine")

END_RETRY_MS = 30_000


class EntryResult(StrEnum):
    JOINED = "joined"
    ALREADY_JOINED = "already_joined"
    TICKET_CAP_REACHED = "ticket_cap_reached"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_ACTIVE = "not_active"
    FAILED = "failed"


@dataclass(slots=True)
class LotteryParams:
    prize: str
    winner_count: int
    duration_ms: int
    created_by: str = ""
    min_participants: int | None = None
    ticket_price: int = 0
    max_tickets_per_user: int = 1
    terms: str = ""


@dataclass(slots=True)
class DrawOutcome:
    lottery: Lottery
    winners: list[str]
    insufficient: bool = False


def select_winners(
    participants: Mapping[str, int], winner_count: int, rng: random.Random
) -> list[str]:
    """Pick up to ``winner_count`` distinct ids, weighted by ticket count.

    Every ticket is one pool entry. Once an id is drawn all of its entries
    leave the pool, so later picks renormalise over the remaining ids.
    """
    pool = [user_id for user_id, tickets in participants.items() for _ in range(tickets)]
    target = min(winner_count, len(participants))
    winners: list[str] = []
    while len(winners) < target and pool:
        winner = pool[rng.randrange(len(pool))]
        winners.append(winner)
        pool = [entry for entry in pool if entry != winner]
    return winners


class LotteryEngine:
    def __init__(
        self,
        store: LotteryStore,
        messenger: Messenger,
        *,
        ledger: Ledger | None = None,
        analytics: Analytics | None = None,
        settings: LotterySettings | None = None,
        scheduler: LotteryScheduler | None = None,
        clock: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._messenger = messenger
        self._ledger = ledger
        self._analytics = analytics
        self._settings = settings or LotterySettings()
        self._clock = clock
        self._scheduler = scheduler or LotteryScheduler(clock)
        self._rng = rng or random.Random()
        self._drawing: set[str] = set()
        self._announcing: set[str] = set()
        self._last_id = 0

    @property
    def settings(self) -> LotterySettings:
        return self._settings

    @property
    def scheduler(self) -> LotteryScheduler:
        return self._scheduler

    def get(self, lottery_id: str) -> Lottery | None:
        return self._store.get(lottery_id)

    def list_by_status(self, status: LotteryStatus | str) -> list[Lottery]:
        return self._store.list_by_status(status)

    # ----- Creation and activation -----
    def _next_id(self) -> str:
        candidate = self._clock()
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return str(candidate)

    def create_lottery(self, params: LotteryParams) -> Lottery:
        prize = validate_prize(params.prize)
        winner_count = validate_winner_count(params.winner_count, self._settings)
        duration_ms = validate_duration(params.duration_ms, self._settings)
        min_participants = validate_min_participants(
            params.min_participants, winner_count
        )
        ticket_price, max_tickets = validate_ticket_settings(
            params.ticket_price, params.max_tickets_per_user, self._settings
        )
        start_time = self._clock()
        lottery = Lottery(
            lottery_id=self._next_id(),
            prize=prize,
            winner_count=winner_count,
            min_participants=min_participants,
            duration_ms=duration_ms,
            start_time=start_time,
            end_time=start_time + duration_ms,
            created_by=params.created_by,
            ticket_price=ticket_price,
            max_tickets_per_user=max_tickets,
            terms=(params.terms or "").strip(),
            is_raffle=ticket_price > 0,
        )
        return self._store.insert(lottery)

    def activate(
        self,
        lottery_id: str,
        draw_mode: DrawMode | str,
        location: ExternalLocation | None = None,
    ) -> Lottery:
        lottery = self._store.require(lottery_id)
        if lottery.status != LotteryStatus.PENDING:
            raise InvalidStateError(lottery_id, lottery.status, "activate")
        # the clock starts at confirmation, not at creation
        start_time = self._clock()
        lottery = self._store.update(
            lottery_id,
            status=LotteryStatus.ACTIVE,
            draw_mode=DrawMode(draw_mode),
            location=location,
            start_time=start_time,
            end_time=start_time + lottery.duration_ms,
        )
        self._arm(lottery)
        log.info(
            "Lottery %s active (%s draw), ends at %s",
            lottery_id,
            lottery.draw_mode,
            lottery.end_time,
        )
        return lottery

    def set_location(self, lottery_id: str, location: ExternalLocation) -> Lottery:
        return self._store.update(lottery_id, location=location)

    def _arm(self, lottery: Lottery) -> None:
        lottery_id = lottery.lottery_id
        now = self._clock()
        self._scheduler.arm(
            lottery_id,
            TimerKind.END,
            lottery.end_time,
            partial(self._on_end_timer, lottery_id),
        )
        self._arm_refresh(lottery, now)
        ending_soon_at = lottery.end_time - self._settings.ending_soon_ms
        if ending_soon_at > now:
            self._scheduler.arm(
                lottery_id,
                TimerKind.ENDING_SOON,
                ending_soon_at,
                partial(self._on_ending_soon, lottery_id),
            )

    def _arm_refresh(self, lottery: Lottery, now: int) -> None:
        fires_at = now + refresh_interval(lottery.remaining_ms(now))
        if fires_at >= lottery.end_time:
            return
        self._scheduler.arm(
            lottery.lottery_id,
            TimerKind.REFRESH,
            fires_at,
            partial(self._on_refresh, lottery.lottery_id),
        )

    # ----- Participants -----
    def add_participant(
        self, lottery_id: str, user_id: str, ticket_count: int = 1
    ) -> EntryResult:
        """Commit ``ticket_count`` tickets for ``user_id``.

        Any currency for the tickets must already be debited; callers refund
        it when this returns anything but ``JOINED`` or raises.
        """
        lottery = self._store.require(lottery_id)
        if (
            lottery.status != LotteryStatus.ACTIVE
            or lottery_id in self._drawing
            or self._clock() >= lottery.end_time
        ):
            return EntryResult.NOT_ACTIVE
        if ticket_count < 1:
            raise ValidationError("At least one ticket is required")

        current = lottery.tickets_for(user_id)
        if not lottery.is_paid:
            if current:
                return EntryResult.ALREADY_JOINED
            ticket_count = 1
        elif current + ticket_count > lottery.max_tickets_per_user:
            return EntryResult.TICKET_CAP_REACHED

        participants = dict(lottery.participants)
        participants[user_id] = current + ticket_count
        self._store.update(lottery_id, participants=participants)
        self._track(lottery_id, user_id, "join", ticket_count)
        return EntryResult.JOINED

    def purchase_tickets(
        self, lottery_id: str, user_id: str, ticket_count: int
    ) -> EntryResult:
        """Debit the ticket cost, then commit the tickets, refunding on failure."""
        lottery = self._store.require(lottery_id)
        if not lottery.is_paid:
            return self.join(lottery_id, user_id)
        if lottery.status != LotteryStatus.ACTIVE:
            return EntryResult.NOT_ACTIVE
        if ticket_count < 1:
            raise ValidationError("At least one ticket is required")
        if lottery.tickets_for(user_id) + ticket_count > lottery.max_tickets_per_user:
            return EntryResult.TICKET_CAP_REACHED
        if self._ledger is None:
            raise RuntimeError("Ticketed lotteries need a skull ledger")

        cost = ticket_count * lottery.ticket_price
        # debit re-checks atomically; this only skips a doomed write
        if not self._ledger.has_sufficient_balance(user_id, cost):
            return EntryResult.INSUFFICIENT_BALANCE
        if not self._ledger.debit(user_id, cost):
            return EntryResult.INSUFFICIENT_BALANCE
        try:
            result = self.add_participant(lottery_id, user_id, ticket_count)
        except PersistenceError:
            log.exception("Failed to commit tickets for %s in %s", user_id, lottery_id)
            result = EntryResult.FAILED
        except Exception:
            self._credit(lottery_id, user_id, cost)
            raise
        if result is not EntryResult.JOINED:
            self._credit(lottery_id, user_id, cost)
        return result

    def join(self, lottery_id: str, user_id: str) -> EntryResult:
        """Free-entry join; one entry per participant."""
        try:
            return self.add_participant(lottery_id, user_id)
        except PersistenceError:
            log.exception("Failed to add %s to %s", user_id, lottery_id)
            return EntryResult.FAILED

    def remove_participant(self, lottery_id: str, user_id: str) -> bool:
        lottery = self._store.require(lottery_id)
        if lottery.status != LotteryStatus.ACTIVE:
            raise InvalidStateError(lottery_id, lottery.status, "remove participants from")
        tickets = lottery.tickets_for(user_id)
        if not tickets:
            return False
        participants = dict(lottery.participants)
        del participants[user_id]
        self._store.update(lottery_id, participants=participants)
        self._track(lottery_id, user_id, "removed", tickets)
        if lottery.is_paid and self._settings.refund_on_removal:
            self._credit(lottery_id, user_id, tickets * lottery.ticket_price)
        return True

    def participant_tickets(self, lottery_id: str, user_id: str) -> int:
        return self._store.require(lottery_id).tickets_for(user_id)

    def win_probability(self, lottery_id: str, user_id: str) -> float:
        return self._store.require(lottery_id).win_probability(user_id)

    # ----- Draw -----
    def draw(self, lottery_id: str) -> list[str]:
        """Run the weighted draw and end the lottery with its winners.

        Returns the existing winners if the lottery was already drawn and an
        empty list, without touching the record, when the pool is too small.
        """
        lottery = self._store.require(lottery_id)
        if lottery.winner_list:
            return list(lottery.winner_list)
        if lottery.status not in DRAWABLE_STATUSES:
            raise InvalidStateError(lottery_id, lottery.status, "draw")
        if len(lottery.participants) < lottery.min_participants:
            return []
        if lottery_id in self._drawing:
            raise InvalidStateError(lottery_id, "drawing", "draw")

        self._drawing.add(lottery_id)
        try:
            winners = select_winners(
                lottery.participants, lottery.winner_count, self._rng
            )
            self._store.update(
                lottery_id, status=LotteryStatus.ENDED, winner_list=winners
            )
        finally:
            self._drawing.discard(lottery_id)
        self._scheduler.disarm(lottery_id)
        log.info(
            "Drew %s winner(s) for lottery %s from %s tickets",
            len(winners),
            lottery_id,
            lottery.total_tickets,
        )
        return winners

    async def finish(self, lottery_id: str) -> DrawOutcome | None:
        """End-of-timer path: expire manual lotteries, draw or fail auto ones."""
        lottery = self._store.get(lottery_id)
        if lottery is None or lottery.status != LotteryStatus.ACTIVE:
            return None
        self._scheduler.disarm(lottery_id)

        if lottery.draw_mode == DrawMode.MANUAL:
            lottery = self._store.update(lottery_id, status=LotteryStatus.EXPIRED)
            log.info("Lottery %s expired, waiting for a manual draw", lottery_id)
            await self._push_card(lottery)
            return None
        return await self._conclude(lottery_id)

    async def manual_draw(self, lottery_id: str) -> DrawOutcome:
        lottery = self._store.require(lottery_id)
        if lottery.draw_mode != DrawMode.MANUAL:
            raise InvalidStateError(lottery_id, "set to auto draw", "manually draw")
        if lottery.status == LotteryStatus.ACTIVE and self._clock() >= lottery.end_time:
            await self.finish(lottery_id)
            lottery = self._store.require(lottery_id)
        if lottery.status != LotteryStatus.EXPIRED:
            raise InvalidStateError(lottery_id, lottery.status, "manually draw")
        return await self._conclude(lottery_id)

    async def _conclude(self, lottery_id: str) -> DrawOutcome:
        lottery = self._store.require(lottery_id)
        if len(lottery.participants) < lottery.min_participants:
            lottery = self._end_without_winners(lottery_id)
            log.info(
                "Lottery %s ended with %s/%s participants",
                lottery_id,
                len(lottery.participants),
                lottery.min_participants,
            )
            await self.announce(lottery_id)
            return DrawOutcome(lottery.snapshot(), [], insufficient=True)

        winners = self.draw(lottery_id)
        self._record_winners(lottery_id, winners)
        await self.announce(lottery_id)
        return DrawOutcome(self._store.require(lottery_id).snapshot(), winners)

    def _end_without_winners(self, lottery_id: str, *, announced: bool = False) -> Lottery:
        self._scheduler.disarm(lottery_id)
        lottery = self._store.update(
            lottery_id,
            status=LotteryStatus.ENDED,
            winner_list=[],
            winner_announced=announced,
        )
        self.refund_participants(lottery_id)
        return lottery

    # ----- Cancellation and refunds -----
    def cancel(self, lottery_id: str) -> Lottery:
        lottery = self._store.require(lottery_id)
        if lottery.is_terminal:
            raise InvalidStateError(lottery_id, lottery.status, "cancel")
        lottery = self._store.update(lottery_id, status=LotteryStatus.CANCELLED)
        self._scheduler.disarm(lottery_id)
        log.info("Lottery %s cancelled", lottery_id)
        self.refund_participants(lottery_id)
        return lottery

    def refund_participants(self, lottery_id: str) -> int:
        """Credit every ticket back; returns how many users were refunded."""
        lottery = self._store.require(lottery_id)
        if not lottery.is_paid or lottery.refunded or self._ledger is None:
            return 0
        refunded = 0
        complete = True
        for user_id, tickets in lottery.participants.items():
            if self._credit(lottery_id, user_id, tickets * lottery.ticket_price):
                refunded += 1
                self._track(lottery_id, user_id, "refund", tickets)
            else:
                complete = False
        if complete:
            try:
                self._store.update(lottery_id, refunded=True)
            except PersistenceError:
                log.exception("Failed to mark lottery %s refunded", lottery_id)
        return refunded

    def _credit(self, lottery_id: str, user_id: str, amount: int) -> bool:
        if self._ledger is None or amount <= 0:
            return True
        try:
            self._ledger.credit(user_id, amount)
        except Exception:  # pylint: disable=broad-except
            log.exception(
                "Failed to refund %s skulls to %s for lottery %s",
                amount,
                user_id,
                lottery_id,
            )
            return False
        return True

    # ----- Announcement -----
    async def announce(self, lottery_id: str) -> bool:
        """Post the result once; ``winner_announced`` guards against replays."""
        lottery = self._store.get(lottery_id)
        if (
            lottery is None
            or lottery.status != LotteryStatus.ENDED
            or lottery.winner_announced
            or lottery_id in self._announcing
        ):
            return False

        self._announcing.add(lottery_id)
        try:
            snapshot = lottery.snapshot()
            try:
                if snapshot.winner_list:
                    await self._messenger.post_announcement(
                        snapshot, list(snapshot.winner_list)
                    )
                else:
                    await self._messenger.post_failure(snapshot)
            except Exception:  # pylint: disable=broad-except
                log.exception(
                    "Announcement for lottery %s failed; retrying on next reconciliation",
                    lottery_id,
                )
                return False

            if self._store.get(lottery_id) is None:
                return False
            try:
                self._store.update(lottery_id, winner_announced=True)
            except PersistenceError:
                log.exception("Failed to persist announcement flag for %s", lottery_id)
                return False
        finally:
            self._announcing.discard(lottery_id)

        await self._push_card(snapshot)
        await self._notify_winners(snapshot)
        return True

    async def _notify_winners(self, lottery: Lottery) -> None:
        if not lottery.winner_list:
            return
        notice = self._messenger.render_winner_notice(lottery)
        for winner_id in lottery.winner_list:
            try:
                await self._messenger.send_direct_notification(winner_id, notice)
            except Exception:  # pylint: disable=broad-except
                log.exception("Failed to DM winner %s of lottery %s", winner_id, lottery.lottery_id)

    async def _push_card(self, lottery: Lottery) -> bool:
        location = lottery.location
        if location is None or location.message_id is None:
            return True
        try:
            card = self._messenger.render_lottery_card(lottery.snapshot())
            return await self._messenger.update_message(location, card)
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to update card for lottery %s", lottery.lottery_id)
            return True

    # ----- Timer callbacks -----
    async def _on_end_timer(self, lottery_id: str) -> None:
        try:
            await self.finish(lottery_id)
        except PersistenceError:
            log.exception("Ending lottery %s failed; retrying", lottery_id)
            lottery = self._store.get(lottery_id)
            if lottery is not None and lottery.status == LotteryStatus.ACTIVE:
                self._scheduler.arm(
                    lottery_id,
                    TimerKind.END,
                    self._clock() + END_RETRY_MS,
                    partial(self._on_end_timer, lottery_id),
                )

    async def _on_refresh(self, lottery_id: str) -> None:
        lottery = self._store.get(lottery_id)
        if lottery is None or lottery.status != LotteryStatus.ACTIVE:
            return
        alive = await self._push_card(lottery)

        lottery = self._store.get(lottery_id)
        if lottery is None or lottery.status != LotteryStatus.ACTIVE:
            return
        if not alive:
            log.warning("Card for lottery %s is gone, ending it without a draw", lottery_id)
            self._end_without_winners(lottery_id, announced=True)
            return
        self._arm_refresh(lottery, self._clock())

    async def _on_ending_soon(self, lottery_id: str) -> None:
        lottery = self._store.get(lottery_id)
        if lottery is None or lottery.status != LotteryStatus.ACTIVE:
            return
        snapshot = lottery.snapshot()
        for user_id in snapshot.participants:
            content = self._messenger.render_ending_soon(snapshot, user_id)
            try:
                await self._messenger.send_direct_notification(user_id, content)
            except Exception:  # pylint: disable=broad-except
                log.exception("Failed to send ending soon notice to %s", user_id)

    # ----- Restart recovery -----
    async def reconcile(self, now: int | None = None) -> list[Lottery]:
        """Rebuild timers and finish overdue work from the durable store.

        Returns the lotteries that are still live (active or expired).
        """
        now = self._clock() if now is None else now
        try:
            records = self._store.list_for_reconciliation(now)
        except PersistenceError:
            log.exception("Failed to read lotteries for reconciliation")
            return []

        for record in records:
            try:
                await self._reconcile_one(record, now)
            except Exception:  # pylint: disable=broad-except
                log.exception("Failed to reconcile lottery %s", record.lottery_id)

        live = self._store.list_by_status(LotteryStatus.ACTIVE)
        live += self._store.list_by_status(LotteryStatus.EXPIRED)
        log.info("Reconciled %s lotteries, %s still live", len(records), len(live))
        return live

    async def _reconcile_one(self, record: Lottery, now: int) -> None:
        lottery_id = record.lottery_id
        # memory is never staler than the store
        lottery = self._store.get(lottery_id)
        if lottery is None:
            self._store.load(record)
            lottery = record

        if lottery.status == LotteryStatus.ACTIVE:
            if lottery.end_time > now:
                self._arm(lottery)
            else:
                # same retry as a live end timer if the write fails
                await self._on_end_timer(lottery_id)
        elif lottery.status == LotteryStatus.EXPIRED:
            self._scheduler.disarm(lottery_id)
        elif lottery.status == LotteryStatus.CANCELLED:
            self.refund_participants(lottery_id)
        elif lottery.status == LotteryStatus.ENDED:
            if not lottery.winner_list:
                self.refund_participants(lottery_id)
            if not lottery.winner_announced:
                await self.announce(lottery_id)

    def shutdown(self) -> None:
        self._scheduler.shutdown()

    # ----- Analytics -----
    def _track(self, lottery_id: str, user_id: str, action: str, tickets: int) -> None:
        if self._analytics is None:
            return
        try:
            self._analytics.track_participation(lottery_id, user_id, action, tickets)
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to track %s for %s in %s", action, user_id, lottery_id)

    def _record_winners(self, lottery_id: str, winners: list[str]) -> None:
        if self._analytics is None or not winners:
            return
        try:
            self._analytics.record_winners(lottery_id, winners)
        except Exception:  # pylint: disable=broad-except
            log.exception("Failed to record winners for %s", lottery_id)


__all__ = [
    "EntryResult",
    "LotteryParams",
    "DrawOutcome",
    "LotteryEngine",
    "select_winners",
]
