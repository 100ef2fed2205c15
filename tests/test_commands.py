import asyncio

import pytest

from conftest import FakeInteraction, FakeTable, FakeUser
from lottery_bot.analytics import AnalyticsRecorder
from lottery_bot.engine import LotteryParams
from lottery_bot.models import MINUTE_MS, DrawMode, ExternalLocation, LotteryStatus
from lottery_bot.skulls import SkullLedger
from souldraw import commands
from souldraw.config import RoleConfig
from souldraw.views import ConfirmView, LotteryInteractions

LOCATION = ExternalLocation(guild_id=1, channel_id=2, message_id=3)
ROLES = RoleConfig(admin_role_ids=(1,), moderator_role_ids=(2,))


@pytest.fixture
def skulls() -> SkullLedger:
    ledger = SkullLedger(FakeTable("skulls"))
    ledger.credit("100", 50)
    return ledger


@pytest.fixture
def ctx(engine, messenger, ledger, clock, skulls) -> commands.CommandContext:
    return commands.CommandContext(
        engine=engine,
        messenger=messenger,
        interactions=LotteryInteractions(engine, ledger, messenger, clock),
        ledger=skulls,
        analytics=None,
        roles=ROLES,
        clock=clock,
    )


def start(engine, draw_mode=DrawMode.AUTO, **overrides):
    values = {"prize": "Nitro", "winner_count": 1, "duration_ms": 30 * MINUTE_MS}
    values.update(overrides)
    lottery = engine.create_lottery(LotteryParams(**values))
    return engine.activate(lottery.lottery_id, draw_mode, LOCATION)


async def stop(engine) -> None:
    engine.shutdown()
    await asyncio.sleep(0)


def contents(interaction) -> list[object]:
    return [reply["content"] for reply in interaction.replies]


@pytest.mark.asyncio
async def test_start_lottery_shows_confirmation(ctx, engine):
    interaction = FakeInteraction()

    await commands.start_lottery(ctx, interaction, time="1h", prize="Nitro", winners=2)

    [reply] = interaction.replies
    assert reply["embed"].title == "🎲 Confirm SoulDraw"
    assert isinstance(reply["view"], ConfirmView)
    assert reply["ephemeral"] is True
    [pending] = engine.list_by_status(LotteryStatus.PENDING)
    assert pending.created_by == "100"
    assert pending.min_participants == 2


@pytest.mark.asyncio
async def test_start_raffle_records_ticket_settings(ctx, engine):
    await commands.start_lottery(
        ctx,
        FakeInteraction(),
        time="30m",
        prize="Nitro",
        winners=1,
        ticket_price=10,
        max_tickets=4,
    )

    [pending] = engine.list_by_status(LotteryStatus.PENDING)
    assert pending.ticket_price == 10
    assert pending.max_tickets_per_user == 4


@pytest.mark.asyncio
async def test_start_lottery_reports_bad_input(ctx, engine):
    interaction = FakeInteraction()

    await commands.start_lottery(ctx, interaction, time="soon", prize="Nitro", winners=1)

    assert contents(interaction)[0].startswith("Invalid duration")
    assert engine.list_by_status(LotteryStatus.PENDING) == []


@pytest.mark.asyncio
async def test_draw_lottery_reports_winners(ctx, engine, clock):
    lottery = start(engine, draw_mode=DrawMode.MANUAL)
    engine.join(lottery.lottery_id, "555")
    clock.now = lottery.end_time
    await engine.finish(lottery.lottery_id)
    interaction = FakeInteraction()

    await commands.draw_lottery(ctx, interaction, f" {lottery.lottery_id} ")

    assert contents(interaction) == [f"Winners drawn for `{lottery.lottery_id}`: <@555>"]


@pytest.mark.asyncio
async def test_draw_lottery_reports_insufficient_entries(ctx, engine, clock):
    lottery = start(engine, draw_mode=DrawMode.MANUAL, min_participants=2)
    clock.now = lottery.end_time + 1

    interaction = FakeInteraction()
    await commands.draw_lottery(ctx, interaction, lottery.lottery_id)

    assert "ended without winners: 0/2" in contents(interaction)[0]


@pytest.mark.asyncio
async def test_draw_lottery_rejects_auto_lottery(ctx, engine):
    lottery = start(engine)
    interaction = FakeInteraction()

    await commands.draw_lottery(ctx, interaction, lottery.lottery_id)

    assert "auto draw" in contents(interaction)[0]
    await stop(engine)


@pytest.mark.asyncio
async def test_cancel_lottery_announces_refund(ctx, engine, ledger, messenger):
    lottery = start(engine, ticket_price=10, max_tickets_per_user=2)
    engine.purchase_tickets(lottery.lottery_id, "alice", 2)
    interaction = FakeInteraction()

    await commands.cancel_lottery(ctx, interaction, lottery.lottery_id)

    [reply] = interaction.replies
    assert "has been cancelled" in reply["content"]
    assert "refunded" in reply["content"]
    assert "ephemeral" not in reply
    assert ledger.balances["alice"] == 100
    assert messenger.card_updates[-1] == (LOCATION, ("card", lottery.lottery_id, "cancelled"))


@pytest.mark.asyncio
async def test_cancel_unknown_lottery(ctx):
    interaction = FakeInteraction()

    await commands.cancel_lottery(ctx, interaction, "nope")

    assert contents(interaction) == ["Lottery nope not found"]


@pytest.mark.asyncio
async def test_remove_participant_notifies_user(ctx, engine, ledger, messenger):
    ledger.balances["555"] = 100
    lottery = start(engine, ticket_price=10, max_tickets_per_user=2)
    engine.purchase_tickets(lottery.lottery_id, "555", 1)
    engine.purchase_tickets(lottery.lottery_id, "alice", 1)
    interaction = FakeInteraction()

    await commands.remove_participant(ctx, interaction, lottery.lottery_id, FakeUser(555))

    assert contents(interaction) == [
        f"Removed <@555> from lottery `{lottery.lottery_id}`."
    ]
    [(user_id, message)] = messenger.direct
    assert user_id == "555"
    assert "10 skulls were refunded" in message
    assert ledger.balances["555"] == 100
    assert messenger.card_updates
    await stop(engine)


@pytest.mark.asyncio
async def test_remove_missing_participant(ctx, engine):
    lottery = start(engine)
    interaction = FakeInteraction()

    await commands.remove_participant(ctx, interaction, lottery.lottery_id, FakeUser(300))

    assert contents(interaction) == ["<@300> is not participating in this lottery."]
    await stop(engine)


@pytest.mark.asyncio
async def test_show_status_lists_live_lotteries(ctx, engine):
    interaction = FakeInteraction()
    await commands.show_status(ctx, interaction)
    assert contents(interaction) == ["There are no active lotteries."]

    start(engine)
    start(engine)
    interaction = FakeInteraction()
    await commands.show_status(ctx, interaction)

    assert len(interaction.replies[0]["embeds"]) == 2
    await stop(engine)


@pytest.mark.asyncio
async def test_show_analytics(ctx):
    interaction = FakeInteraction()
    await commands.show_analytics(ctx, interaction)
    assert contents(interaction) == ["Analytics are not configured."]

    recorder = AnalyticsRecorder(FakeTable("analytics"))
    recorder.track_participation("L1", "555", "join", 2)
    ctx.analytics = recorder

    interaction = FakeInteraction()
    await commands.show_analytics(ctx, interaction)
    assert interaction.replies[0]["embed"].title == "📊 SoulDraw Analytics Dashboard"

    interaction = FakeInteraction()
    await commands.show_analytics(ctx, interaction, FakeUser(555))
    assert "Tickets bought: 2" in interaction.replies[0]["embed"].fields[0].value


@pytest.mark.asyncio
async def test_show_help_matches_permissions(ctx):
    interaction = FakeInteraction(user=FakeUser(100, roles=(2,)))

    await commands.show_help(ctx, interaction)

    description = interaction.replies[0]["embed"].description
    assert "/st" in description
    assert "/cnl" not in description


@pytest.mark.asyncio
async def test_skulls_balance_and_gift(ctx, skulls, messenger):
    interaction = FakeInteraction()
    await commands.skulls_balance(ctx, interaction)
    assert "**50**" in interaction.replies[0]["embed"].description

    interaction = FakeInteraction()
    await commands.skulls_gift(ctx, interaction, FakeUser(200), 20)

    assert contents(interaction) == ["Successfully gifted 20 skulls to <@200>!"]
    assert skulls.get_balance("100") == 30
    assert skulls.get_balance("200") == 20
    assert messenger.direct[0][0] == "200"

    interaction = FakeInteraction()
    await commands.skulls_gift(ctx, interaction, FakeUser(200), 500)
    assert contents(interaction) == ["You don't have enough skulls! Your balance: 30"]


@pytest.mark.asyncio
async def test_gift_to_self_is_rejected(ctx):
    interaction = FakeInteraction()

    await commands.skulls_gift(ctx, interaction, FakeUser(100), 5)

    assert contents(interaction) == ["You cannot gift skulls to yourself"]


@pytest.mark.asyncio
async def test_skulls_adjust_requires_admin(ctx, skulls, messenger):
    moderator = FakeInteraction(user=FakeUser(100, roles=(2,)))
    await commands.skulls_adjust(ctx, moderator, FakeUser(200), 10, add=True)
    assert contents(moderator) == ["You do not have permission to use this command!"]

    admin = FakeInteraction(user=FakeUser(100, roles=(1,)))
    await commands.skulls_adjust(ctx, admin, FakeUser(200), 10, add=True)
    assert contents(admin) == ["Added 10 skulls to <@200>. New balance: 10 skulls"]

    admin = FakeInteraction(user=FakeUser(100, roles=(1,)))
    await commands.skulls_adjust(ctx, admin, FakeUser(200), 25, add=False)
    assert contents(admin) == ["<@200> does not have enough skulls! Current balance: 10"]

    admin = FakeInteraction(user=FakeUser(100, roles=(1,)))
    await commands.skulls_adjust(ctx, admin, FakeUser(200), 4, add=False)
    assert contents(admin) == ["Removed 4 skulls from <@200>. New balance: 6 skulls"]
    assert messenger.direct[-1] == (
        "200",
        "An admin has removed 4 skulls from your balance. Your new balance is 6 skulls.",
    )


@pytest.mark.asyncio
async def test_unexpected_errors_are_logged(ctx, caplog):
    ctx.ledger = None
    interaction = FakeInteraction()

    await commands.skulls_balance(ctx, interaction)

    assert contents(interaction) == [commands.GENERIC_ERROR]
    assert "Command skulls_balance failed" in caplog.text
