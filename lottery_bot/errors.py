from __future__ import annotations


class LotteryError(Exception):
    """Base exception for lottery core failures."""


class ValidationError(LotteryError, ValueError):
    """Raised when creation or activation input is outside configured bounds."""


class NotFoundError(LotteryError, LookupError):
    """Raised when a lottery id is unknown to the store."""

    def __init__(self, lottery_id: str) -> None:
        super().__init__(f"Lottery {lottery_id} not found")
        self.lottery_id = lottery_id


class InvalidStateError(LotteryError):
    """Raised when an operation does not fit the lottery's current status."""

    def __init__(self, lottery_id: str, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} lottery {lottery_id} while {status}")
        self.lottery_id = lottery_id
        self.status = status
        self.action = action


class PersistenceError(LotteryError):
    """Raised when a durable write fails."""


__all__ = [
    "LotteryError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "PersistenceError",
]
