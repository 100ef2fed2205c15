"""Collaborator contracts the lifecycle engine calls out to.

The engine owns no rendering and no balances. Discord rendering lives in
``souldraw.messaging``; balances live in ``lottery_bot.skulls``.
"""

from __future__ import annotations

from typing import Protocol

from .models import ExternalLocation, Lottery


class Messenger(Protocol):
    def render_lottery_card(self, lottery: Lottery) -> object: ...

    def render_ending_soon(self, lottery: Lottery, user_id: str) -> object: ...

    def render_winner_notice(self, lottery: Lottery) -> object: ...

    async def update_message(self, location: ExternalLocation, content: object) -> bool:
        """Edit the live card; ``False`` means the message no longer exists."""
        ...

    async def post_announcement(self, lottery: Lottery, winner_ids: list[str]) -> None: ...

    async def post_failure(self, lottery: Lottery) -> None: ...

    async def send_direct_notification(self, user_id: str, content: object) -> bool: ...


class Ledger(Protocol):
    def has_sufficient_balance(self, user_id: str, amount: int) -> bool: ...

    def debit(self, user_id: str, amount: int) -> bool: ...

    def credit(self, user_id: str, amount: int) -> int: ...


class Analytics(Protocol):
    def track_participation(
        self, lottery_id: str, user_id: str, action: str, tickets: int
    ) -> None: ...

    def record_winners(self, lottery_id: str, winner_ids: list[str]) -> None: ...


__all__ = ["Messenger", "Ledger", "Analytics"]
