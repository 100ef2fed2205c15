import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from conftest import FakeInteraction, FakeUser
from lottery_bot.engine import EntryResult, LotteryParams
from lottery_bot.models import MINUTE_MS, DrawMode, ExternalLocation, Lottery, LotteryStatus
from souldraw.views import (
    ConfirmView,
    LotteryInteractions,
    LotteryView,
    TicketView,
    entry_message,
    ticket_options,
)

LOCATION = ExternalLocation(guild_id=1, channel_id=2, message_id=3)


@pytest.fixture
def interactions(engine, ledger, messenger, clock) -> LotteryInteractions:
    return LotteryInteractions(engine, ledger, messenger, clock)


def create(engine, **overrides) -> Lottery:
    values = {"prize": "Nitro", "winner_count": 1, "duration_ms": 30 * MINUTE_MS}
    values.update(overrides)
    return engine.create_lottery(LotteryParams(**values))


def start(engine, **overrides) -> Lottery:
    lottery = create(engine, **overrides)
    return engine.activate(lottery.lottery_id, DrawMode.AUTO, LOCATION)


async def stop(engine) -> None:
    engine.shutdown()
    await asyncio.sleep(0)


def raffle(max_tickets: int = 10, held: int = 0) -> Lottery:
    return Lottery(
        lottery_id="1",
        prize="Nitro",
        winner_count=1,
        min_participants=1,
        duration_ms=MINUTE_MS,
        start_time=0,
        end_time=MINUTE_MS,
        ticket_price=10,
        max_tickets_per_user=max_tickets,
        participants={"100": held} if held else {},
    )


@pytest.mark.parametrize(
    "lottery,balance,expected",
    [
        (raffle(), 1_000, [1, 2, 3, 4, 5, 10]),
        (raffle(), 35, [1, 2, 3]),
        (raffle(max_tickets=3, held=1), 1_000, [1, 2]),
        (raffle(max_tickets=3, held=3), 1_000, []),
        (raffle(), 5, []),
    ],
)
def test_ticket_options(lottery, balance, expected):
    assert ticket_options(lottery, "100", balance) == expected


def test_entry_messages():
    lottery = raffle(max_tickets=3)

    assert entry_message(EntryResult.JOINED, lottery, 2) == (
        "Successfully purchased 2 tickets for 20 skulls!"
    )
    assert "at most 3 tickets" in entry_message(EntryResult.TICKET_CAP_REACHED, lottery)
    assert "Required: 30" in entry_message(EntryResult.INSUFFICIENT_BALANCE, lottery, 3)
    assert entry_message(EntryResult.NOT_ACTIVE, lottery) == "This lottery is not active!"


@pytest.mark.asyncio
async def test_free_join_confirms_by_dm(interactions, engine, messenger):
    lottery = start(engine)
    interaction = FakeInteraction()

    await interactions.join(interaction, lottery.lottery_id)
    await interactions.join(interaction, lottery.lottery_id)

    assert [r["content"] for r in interaction.replies] == [
        "You have joined the lottery!",
        "You are already participating in this lottery!",
    ]
    [(user_id, embed)] = messenger.direct
    assert user_id == "100"
    assert embed.title == "🎟️ Lottery Entry Confirmed!"
    await stop(engine)


@pytest.mark.asyncio
async def test_paid_join_offers_ticket_buttons(interactions, engine, ledger):
    ledger.balances["100"] = 25
    lottery = start(engine, ticket_price=10, max_tickets_per_user=5)
    interaction = FakeInteraction()

    await interactions.join(interaction, lottery.lottery_id)

    [reply] = interaction.replies
    assert isinstance(reply["view"], TicketView)
    assert [item.custom_id for item in reply["view"].children] == [
        f"ticket:{lottery.lottery_id}:1",
        f"ticket:{lottery.lottery_id}:2",
    ]
    await stop(engine)


@pytest.mark.asyncio
async def test_paid_join_without_funds(interactions, engine):
    lottery = start(engine, ticket_price=10, max_tickets_per_user=5)
    interaction = FakeInteraction()

    await interactions.join(interaction, lottery.lottery_id)

    assert "don't have enough skulls" in interaction.replies[0]["content"]
    await stop(engine)


@pytest.mark.asyncio
async def test_buy_purchases_tickets(interactions, engine, ledger, messenger):
    ledger.balances["100"] = 50
    lottery = start(engine, ticket_price=10, max_tickets_per_user=5)
    interaction = FakeInteraction()

    await interactions.buy(interaction, lottery.lottery_id, 2)

    assert interaction.replies[0]["content"] == "Successfully purchased 2 tickets for 20 skulls!"
    assert ledger.balances["100"] == 30
    assert engine.participant_tickets(lottery.lottery_id, "100") == 2
    assert len(messenger.direct) == 1
    await stop(engine)


@pytest.mark.asyncio
async def test_join_inactive_lottery(interactions, engine):
    lottery = create(engine)
    interaction = FakeInteraction()

    await interactions.join(interaction, lottery.lottery_id)
    await interactions.show_participants(interaction, lottery.lottery_id)

    assert [r["content"] for r in interaction.replies] == ["This lottery is not active!"] * 2


@pytest.mark.asyncio
async def test_unexpected_errors_get_generic_reply(interactions, engine, caplog):
    lottery = start(engine)
    engine.join = MagicMock(side_effect=RuntimeError("boom"))
    interaction = FakeInteraction()

    await interactions.join(interaction, lottery.lottery_id)

    assert interaction.replies[0]["content"].startswith("There was an error")
    assert "Join failed" in caplog.text
    await stop(engine)


@pytest.mark.asyncio
async def test_show_participants_lists_entries(interactions, engine):
    lottery = start(engine)
    engine.join(lottery.lottery_id, "alice")
    interaction = FakeInteraction()

    await interactions.show_participants(interaction, lottery.lottery_id)

    embed = interaction.replies[0]["embed"]
    assert embed.fields[0].name == "Participants (1)"
    await stop(engine)


@pytest.mark.asyncio
async def test_lottery_view_buttons_are_persistent(interactions):
    view = LotteryView("42", interactions)

    assert view.timeout is None
    assert view.is_persistent()
    assert view.join_button.custom_id == "join:42"
    assert view.view_button.custom_id == "view:42"


def card_channel(message_id: int = 99, error: Exception | None = None):
    channel = MagicMock()
    channel.id = 2
    channel.send = AsyncMock(return_value=MagicMock(id=message_id), side_effect=error)
    return channel


@pytest.mark.asyncio
async def test_confirm_requires_draw_mode(interactions, engine):
    lottery = create(engine)
    view = ConfirmView(lottery.lottery_id, 100, interactions)
    interaction = FakeInteraction(channel=card_channel())

    await view.confirm_button.callback(interaction)

    assert interaction.replies[0]["content"].startswith("Please select a draw method")
    assert engine.get(lottery.lottery_id).status is LotteryStatus.PENDING


@pytest.mark.asyncio
async def test_confirm_activates_and_posts_card(interactions, engine, messenger):
    messenger.render_lottery_card = lambda lottery: {
        "embed": (lottery.lottery_id, str(lottery.status))
    }
    lottery = create(engine)
    view = ConfirmView(lottery.lottery_id, 100, interactions)
    channel = card_channel()

    await view.manual_button.callback(FakeInteraction(channel=channel))
    interaction = FakeInteraction(channel=channel)
    await view.confirm_button.callback(interaction)

    record = engine.get(lottery.lottery_id)
    assert record.status is LotteryStatus.ACTIVE
    assert record.draw_mode is DrawMode.MANUAL
    assert record.location == ExternalLocation(guild_id=1, channel_id=2, message_id=99)
    assert interaction.response.edits == [
        {"content": "Lottery started successfully!", "embed": None, "view": None}
    ]
    channel.send.assert_awaited_once_with(embed=(lottery.lottery_id, "active"))
    assert view.finished
    await stop(engine)


@pytest.mark.asyncio
async def test_confirm_cancels_when_card_cannot_be_posted(interactions, engine, messenger):
    messenger.render_lottery_card = lambda lottery: {"embed": "card"}
    lottery = create(engine)
    view = ConfirmView(lottery.lottery_id, 100, interactions)
    view.draw_mode = DrawMode.AUTO
    channel = card_channel(error=discord.HTTPException(MagicMock(status=500, reason="x"), "x"))
    interaction = FakeInteraction(channel=channel)

    await view.confirm_button.callback(interaction)

    channel.send.assert_awaited_once_with(embed="card")
    assert engine.get(lottery.lottery_id).status is LotteryStatus.CANCELLED
    assert interaction.followup.messages[0]["content"].startswith("Could not post")
    assert not engine.scheduler.is_armed(lottery.lottery_id)
    await stop(engine)


@pytest.mark.asyncio
async def test_confirm_leaves_lottery_cancelled_during_card_post(interactions, engine, messenger):
    messenger.render_lottery_card = lambda lottery: {"embed": "card"}
    lottery = create(engine)
    view = ConfirmView(lottery.lottery_id, 100, interactions)
    view.draw_mode = DrawMode.AUTO
    channel = card_channel()

    async def cancel_while_sending(**_kwargs):
        engine.cancel(lottery.lottery_id)
        return MagicMock(id=99)

    channel.send = AsyncMock(side_effect=cancel_while_sending)
    interaction = FakeInteraction(channel=channel)

    await view.confirm_button.callback(interaction)

    record = engine.get(lottery.lottery_id)
    assert record.status is LotteryStatus.CANCELLED
    assert record.location == ExternalLocation(guild_id=1, channel_id=2)
    assert interaction.response.edits[0]["content"] == "Lottery started successfully!"
    assert not engine.scheduler.is_armed(lottery.lottery_id)
    await stop(engine)


@pytest.mark.asyncio
async def test_cancel_button_cancels_pending_lottery(interactions, engine):
    lottery = create(engine)
    view = ConfirmView(lottery.lottery_id, 100, interactions)
    interaction = FakeInteraction()

    await view.cancel_button.callback(interaction)

    assert engine.get(lottery.lottery_id).status is LotteryStatus.CANCELLED
    assert interaction.response.edits[0]["content"] == "Lottery cancelled."


@pytest.mark.asyncio
async def test_only_creator_may_use_confirm_buttons(interactions, engine):
    lottery = create(engine)
    view = ConfirmView(lottery.lottery_id, 100, interactions)
    stranger = FakeInteraction(user=FakeUser(200))

    assert await view.interaction_check(stranger) is False
    assert await view.interaction_check(FakeInteraction()) is True
    assert stranger.replies[0]["content"] == "Only the lottery creator may use these buttons."
