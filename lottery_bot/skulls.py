from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from .errors import PersistenceError, ValidationError

log = logging.getLogger("skull-ledger")

_TRANSACTION_CANCELLED = "TransactionCanceledException"
_CONDITION_FAILED = "ConditionalCheckFailedException"


def _error_code(exc: ClientError) -> str | None:
    return exc.response.get("Error", {}).get("Code")


def _require_positive(amount: int) -> int:
    if amount <= 0:
        raise ValidationError("Amount must be a positive number of skulls")
    return amount


class SkullLedger:
    """Skull balances kept as one DynamoDB row per user.

    Every balance change is a single ``ADD`` update, so concurrent credits
    and debits never lose a write. Debits are conditional on the balance
    covering the amount.
    """

    PK_TEMPLATE = "USER#%s"
    SK_VALUE = "BALANCE"

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Skulls table is not configured")

    @classmethod
    def key(cls, user_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % user_id, "sk": cls.SK_VALUE}

    def get_balance(self, user_id: str) -> int:
        self.ensure_table()
        try:
            resp = self._table.get_item(Key=self.key(user_id))
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceError(f"Failed to read balance for {user_id}") from exc
        item = resp.get("Item")
        if not item:
            return 0
        return int(item.get("balance", 0))

    def has_sufficient_balance(self, user_id: str, amount: int) -> bool:
        if amount <= 0:
            return True
        return self.get_balance(user_id) >= amount

    def credit(self, user_id: str, amount: int) -> int:
        """Add ``amount`` skulls and return the new balance."""
        self.ensure_table()
        _require_positive(amount)
        try:
            resp = self._table.update_item(
                Key=self.key(user_id),
                UpdateExpression="SET user_id = :user ADD balance :amount",
                ExpressionAttributeValues={":user": user_id, ":amount": amount},
                ReturnValues="UPDATED_NEW",
            )
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceError(f"Failed to credit {user_id}") from exc
        balance = int(resp.get("Attributes", {}).get("balance", amount))
        log.info("Credited %s skulls to %s (balance %s)", amount, user_id, balance)
        return balance

    def debit(self, user_id: str, amount: int) -> bool:
        """Remove ``amount`` skulls; ``False`` when the balance is short."""
        self.ensure_table()
        _require_positive(amount)
        try:
            self._table.update_item(
                Key=self.key(user_id),
                UpdateExpression="ADD balance :negative",
                ConditionExpression="attribute_exists(balance) AND balance >= :amount",
                ExpressionAttributeValues={":negative": -amount, ":amount": amount},
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                return False
            raise PersistenceError(f"Failed to debit {user_id}") from exc
        except BotoCoreError as exc:
            raise PersistenceError(f"Failed to debit {user_id}") from exc
        log.info("Debited %s skulls from %s", amount, user_id)
        return True

    def transfer(self, from_id: str, to_id: str, amount: int) -> bool:
        """Move skulls between users in one transaction."""
        self.ensure_table()
        _require_positive(amount)
        if from_id == to_id:
            raise ValidationError("You cannot gift skulls to yourself")
        table_name = self._table.name
        # the resource client serialises plain Python values
        try:
            self._table.meta.client.transact_write_items(
                TransactItems=[
                    {
                        "Update": {
                            "TableName": table_name,
                            "Key": self.key(from_id),
                            "UpdateExpression": "ADD balance :negative",
                            "ConditionExpression": (
                                "attribute_exists(balance) AND balance >= :amount"
                            ),
                            "ExpressionAttributeValues": {
                                ":negative": -amount,
                                ":amount": amount,
                            },
                        }
                    },
                    {
                        "Update": {
                            "TableName": table_name,
                            "Key": self.key(to_id),
                            "UpdateExpression": "SET user_id = :user ADD balance :amount",
                            "ExpressionAttributeValues": {
                                ":user": to_id,
                                ":amount": amount,
                            },
                        }
                    },
                ]
            )
        except ClientError as exc:
            if _error_code(exc) in (_TRANSACTION_CANCELLED, _CONDITION_FAILED):
                return False
            raise PersistenceError(f"Failed to transfer skulls from {from_id}") from exc
        except BotoCoreError as exc:
            raise PersistenceError(f"Failed to transfer skulls from {from_id}") from exc
        log.info("Transferred %s skulls from %s to %s", amount, from_id, to_id)
        return True


__all__ = ["SkullLedger"]
