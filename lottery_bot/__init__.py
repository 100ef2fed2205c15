"""Lottery core: records, storage, timers and the lifecycle engine."""

from .analytics import AnalyticsRecorder, GlobalStats, ParticipantStats
from .engine import DrawOutcome, EntryResult, LotteryEngine, LotteryParams, select_winners
from .errors import (
    InvalidStateError,
    LotteryError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .models import (
    DrawMode,
    ExternalLocation,
    Lottery,
    LotterySettings,
    LotteryStatus,
    now_ms,
)
from .scheduler import LotteryScheduler, TimerKind, refresh_interval
from .skulls import SkullLedger
from .storage import LotteryStore
from .validation import parse_duration

__all__ = [
    "AnalyticsRecorder",
    "GlobalStats",
    "ParticipantStats",
    "DrawOutcome",
    "EntryResult",
    "LotteryEngine",
    "LotteryParams",
    "select_winners",
    "InvalidStateError",
    "LotteryError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
    "DrawMode",
    "ExternalLocation",
    "Lottery",
    "LotterySettings",
    "LotteryStatus",
    "now_ms",
    "LotteryScheduler",
    "TimerKind",
    "refresh_interval",
    "SkullLedger",
    "LotteryStore",
    "parse_duration",
]
