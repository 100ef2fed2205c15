from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from .models import HOUR_MS, MINUTE_MS, now_ms

log = logging.getLogger("lottery-scheduler")

TimerCallback = Callable[[], Awaitable[None]]


class TimerKind(StrEnum):
    END = "end"
    ENDING_SOON = "ending_soon"
    REFRESH = "refresh"


def refresh_interval(remaining_ms: int) -> int:
    """Return how long to wait before the next card refresh, in milliseconds."""
    if remaining_ms <= MINUTE_MS:
        return 2_000
    if remaining_ms <= 5 * MINUTE_MS:
        return 5_000
    if remaining_ms <= HOUR_MS:
        return 15_000
    return 30_000


@dataclass(slots=True)
class TimerHandle:
    lottery_id: str
    kind: TimerKind
    fires_at: int
    task: asyncio.Task | None = None
    cancelled: bool = False


class LotteryScheduler:
    """Owns every lottery timer, keyed by lottery id and timer kind.

    Arming a kind that is already armed replaces the old handle. A disarmed
    handle never runs its callback, even if its sleep had already finished.
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._handles: dict[tuple[str, TimerKind], TimerHandle] = {}

    def arm(
        self,
        lottery_id: str,
        kind: TimerKind,
        fires_at: int,
        callback: TimerCallback,
    ) -> TimerHandle:
        self.disarm(lottery_id, kind)
        handle = TimerHandle(lottery_id=lottery_id, kind=kind, fires_at=fires_at)
        delay = max(0, fires_at - self._clock()) / 1000
        handle.task = asyncio.get_running_loop().create_task(
            self._run(handle, delay, callback),
            name=f"lottery-{kind}-{lottery_id}",
        )
        self._handles[(lottery_id, kind)] = handle
        log.debug("Armed %s timer for lottery %s in %.1fs", kind, lottery_id, delay)
        return handle

    async def _run(self, handle: TimerHandle, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        key = (handle.lottery_id, handle.kind)
        if handle.cancelled or self._handles.get(key) is not handle:
            return
        # popped before the callback so it may re-arm its own kind
        self._handles.pop(key, None)
        try:
            await callback()
        except Exception:  # pylint: disable=broad-except
            log.exception(
                "%s timer for lottery %s failed", handle.kind, handle.lottery_id
            )

    def disarm(self, lottery_id: str, kind: TimerKind | None = None) -> int:
        """Cancel one timer kind, or every timer, for ``lottery_id``."""
        kinds = [kind] if kind is not None else list(TimerKind)
        current = asyncio.current_task() if _loop_running() else None
        disarmed = 0
        for timer_kind in kinds:
            handle = self._handles.pop((lottery_id, timer_kind), None)
            if handle is None:
                continue
            handle.cancelled = True
            task = handle.task
            if task is not None and task is not current and not task.done():
                task.cancel()
            disarmed += 1
        return disarmed

    def is_armed(self, lottery_id: str, kind: TimerKind | None = None) -> bool:
        if kind is not None:
            return (lottery_id, kind) in self._handles
        return any(key[0] == lottery_id for key in self._handles)

    def get(self, lottery_id: str, kind: TimerKind) -> TimerHandle | None:
        return self._handles.get((lottery_id, kind))

    def shutdown(self) -> None:
        for lottery_id in {key[0] for key in self._handles}:
            self.disarm(lottery_id)


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


__all__ = ["TimerKind", "TimerHandle", "TimerCallback", "LotteryScheduler", "refresh_interval"]
