from __future__ import annotations

import copy
import random
import types

import pytest
from botocore.exceptions import ClientError

from lottery_bot.engine import LotteryEngine
from lottery_bot.models import LotterySettings
from lottery_bot.storage import LotteryStore

START_MS = 1_700_000_000_000


def client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeTable:
    """In-memory stand-in for a boto3 DynamoDB ``Table`` resource.

    Scans ignore ``FilterExpression`` and return every item, so callers that
    re-check filters client side see the same result as against DynamoDB.
    """

    def __init__(self, name: str = "fake-table", page_size: int | None = None) -> None:
        self.name = name
        self.items: dict[tuple[str, str], dict[str, object]] = {}
        self.page_size = page_size
        self.fail_next: dict[str, ClientError] = {}
        self.calls: list[str] = []
        self.meta = types.SimpleNamespace(
            client=types.SimpleNamespace(transact_write_items=self.transact_write_items)
        )

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        error = self.fail_next.pop(operation, None)
        if error is not None:
            raise error

    def get_item(self, *, Key):
        self._maybe_fail("get_item")
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, *, Item, ConditionExpression=None):
        self._maybe_fail("put_item")
        key = (Item["pk"], Item["sk"])
        if ConditionExpression == "attribute_not_exists(pk)" and key in self.items:
            raise client_error("ConditionalCheckFailedException")
        self.items[key] = copy.deepcopy(Item)

    def delete_item(self, *, Key, ConditionExpression=None):
        self._maybe_fail("delete_item")
        key = (Key["pk"], Key["sk"])
        if ConditionExpression and key not in self.items:
            raise client_error("ConditionalCheckFailedException", "DeleteItem")
        self.items.pop(key, None)

    def _check_update(self, key, condition, values) -> None:
        if not condition:
            return
        item = self.items.get(key)
        if item is None or "balance" not in item or item["balance"] < values[":amount"]:
            raise client_error("ConditionalCheckFailedException", "UpdateItem")

    def _apply_update(self, key, values) -> dict[str, object]:
        item = self.items.setdefault(key, {"pk": key[0], "sk": key[1]})
        if ":user" in values:
            item["user_id"] = values[":user"]
        delta = values[":negative"] if ":negative" in values else values[":amount"]
        item["balance"] = item.get("balance", 0) + delta
        return {"balance": item["balance"]}

    def update_item(
        self,
        *,
        Key,
        UpdateExpression,
        ExpressionAttributeValues,
        ConditionExpression=None,
        ReturnValues=None,
    ):
        del UpdateExpression, ReturnValues
        self._maybe_fail("update_item")
        key = (Key["pk"], Key["sk"])
        self._check_update(key, ConditionExpression, ExpressionAttributeValues)
        return {"Attributes": self._apply_update(key, ExpressionAttributeValues)}

    def transact_write_items(self, *, TransactItems):
        self._maybe_fail("transact_write_items")
        updates = [entry["Update"] for entry in TransactItems]
        for update in updates:
            key = (update["Key"]["pk"], update["Key"]["sk"])
            try:
                self._check_update(
                    key,
                    update.get("ConditionExpression"),
                    update["ExpressionAttributeValues"],
                )
            except ClientError:
                raise client_error("TransactionCanceledException", "TransactWriteItems")
        for update in updates:
            key = (update["Key"]["pk"], update["Key"]["sk"])
            self._apply_update(key, update["ExpressionAttributeValues"])
        return {}

    def _page(self, items, kwargs):
        start = int(kwargs.get("ExclusiveStartKey", {}).get("offset", 0))
        if self.page_size is None:
            return {"Items": items[start:]}
        end = start + self.page_size
        resp = {"Items": items[start:end]}
        if end < len(items):
            resp["LastEvaluatedKey"] = {"offset": end}
        return resp

    def scan(self, **kwargs):
        self._maybe_fail("scan")
        items = [copy.deepcopy(self.items[key]) for key in sorted(self.items)]
        return self._page(items, kwargs)

    def query(self, *, KeyConditionExpression, **kwargs):
        self._maybe_fail("query")
        pk_value = KeyConditionExpression._values[1]  # type: ignore[attr-defined]
        items = [
            copy.deepcopy(self.items[key]) for key in sorted(self.items) if key[0] == pk_value
        ]
        return self._page(items, kwargs)


class FakeClock:
    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingMessenger:
    def __init__(self) -> None:
        self.card_updates: list[tuple[object, object]] = []
        self.announcements: list[tuple[str, list[str]]] = []
        self.failures: list[str] = []
        self.direct: list[tuple[str, object]] = []
        self.update_result = True
        self.announce_error: Exception | None = None

    def render_lottery_card(self, lottery):
        return ("card", lottery.lottery_id, str(lottery.status))

    def render_ending_soon(self, lottery, user_id):
        return ("ending_soon", lottery.lottery_id, user_id)

    def render_winner_notice(self, lottery):
        return ("winner", lottery.lottery_id)

    async def update_message(self, location, content):
        self.card_updates.append((location, content))
        return self.update_result

    async def post_announcement(self, lottery, winner_ids):
        if self.announce_error is not None:
            raise self.announce_error
        self.announcements.append((lottery.lottery_id, list(winner_ids)))

    async def post_failure(self, lottery):
        if self.announce_error is not None:
            raise self.announce_error
        self.failures.append(lottery.lottery_id)

    async def send_direct_notification(self, user_id, content):
        self.direct.append((user_id, content))
        return True


class FakeLedger:
    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self.balances = dict(balances or {})
        self.credits: list[tuple[str, int]] = []
        self.fail_credit_for: set[str] = set()

    def get_balance(self, user_id):
        return self.balances.get(user_id, 0)

    def has_sufficient_balance(self, user_id, amount):
        return self.balances.get(user_id, 0) >= amount

    def debit(self, user_id, amount):
        if self.balances.get(user_id, 0) < amount:
            return False
        self.balances[user_id] -= amount
        return True

    def credit(self, user_id, amount):
        if user_id in self.fail_credit_for:
            raise RuntimeError("ledger unavailable")
        self.credits.append((user_id, amount))
        self.balances[user_id] = self.balances.get(user_id, 0) + amount
        return self.balances[user_id]


class FakeResponse:
    def __init__(self) -> None:
        self.messages: list[dict[str, object]] = []
        self.edits: list[dict[str, object]] = []
        self._done = False

    async def send_message(self, content=None, **kwargs) -> None:
        self.messages.append({"content": content, **kwargs})
        self._done = True

    async def edit_message(self, **kwargs) -> None:
        self.edits.append(kwargs)
        self._done = True

    async def defer(self, **_kwargs) -> None:
        self._done = True

    def is_done(self) -> bool:
        return self._done


class FakeFollowup:
    def __init__(self) -> None:
        self.messages: list[dict[str, object]] = []

    async def send(self, content=None, **kwargs) -> None:
        self.messages.append({"content": content, **kwargs})


class FakeUser:
    def __init__(self, user_id: int, *, roles=(), administrator: bool = False) -> None:
        self.id = user_id
        self.mention = f"<@{user_id}>"
        self.roles = [types.SimpleNamespace(id=role_id) for role_id in roles]
        self.guild_permissions = types.SimpleNamespace(administrator=administrator)


class FakeInteraction:
    def __init__(self, user: FakeUser | None = None, channel=None, guild_id: int | None = 1) -> None:
        self.user = user or FakeUser(100)
        self.response = FakeResponse()
        self.followup = FakeFollowup()
        self.channel = channel
        self.guild = types.SimpleNamespace(id=guild_id) if guild_id is not None else None

    @property
    def replies(self) -> list[dict[str, object]]:
        return self.response.messages + self.followup.messages


class FakeAnalytics:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, str, int]] = []
        self.winners: list[tuple[str, list[str]]] = []

    def track_participation(self, lottery_id, user_id, action, tickets):
        self.events.append((lottery_id, user_id, action, tickets))

    def record_winners(self, lottery_id, winner_ids):
        self.winners.append((lottery_id, list(winner_ids)))


@pytest.fixture
def fake_table() -> FakeTable:
    return FakeTable("lotteries")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> LotterySettings:
    return LotterySettings()


@pytest.fixture
def store(fake_table, settings) -> LotteryStore:
    return LotteryStore(fake_table, settings)


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger({"alice": 100, "bob": 100, "carol": 100})


@pytest.fixture
def analytics() -> FakeAnalytics:
    return FakeAnalytics()


@pytest.fixture
def engine(store, messenger, ledger, analytics, settings, clock) -> LotteryEngine:
    return LotteryEngine(
        store,
        messenger,
        ledger=ledger,
        analytics=analytics,
        settings=settings,
        clock=clock,
        rng=random.Random(1234),
    )


@pytest.fixture
def table_factory():
    return FakeTable
