"""
Transaction Recording Module

Append-only history of completed ledger movements. Deposits and withdrawals
produce one record; a transfer produces a debit record for the sender and a
credit record for the recipient. Records are written only after the balance
change they describe has been persisted.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger, log_action


logger = get_logger("pocket_bank.transactions")


class TransactionType(Enum):
    """Kinds of ledger movement"""
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"


class TransactionDirection(Enum):
    """Which way money moved for the owning account"""
    CREDIT = "credit"  # Money in
    DEBIT = "debit"    # Money out


class TransactionStatus(Enum):
    # Only completed movements are recorded
    COMPLETED = "completed"


@dataclass(frozen=True)
class Counterparty:
    """The other side of a transfer as seen by one party"""
    email: str
    account_number: str


@dataclass
class TransactionRecord(StorageRecord):
    """Completed movement on one account; never updated once stored"""
    account_id: str
    transaction_type: TransactionType
    amount: Decimal
    direction: TransactionDirection
    counterparty_email: Optional[str] = None
    counterparty_account_number: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        for name, enum_type in (('transaction_type', TransactionType),
                                ('direction', TransactionDirection),
                                ('status', TransactionStatus)):
            value = getattr(self, name)
            if not isinstance(value, enum_type):
                setattr(self, name, enum_type(value))

        if self.amount <= 0:
            raise ValueError("Transaction amount must be positive")

        is_transfer = self.transaction_type == TransactionType.TRANSFER
        has_counterparty = bool(self.counterparty_email or self.counterparty_account_number)
        if is_transfer != has_counterparty:
            raise ValueError("Counterparty is required for transfers and only for transfers")

    @property
    def recipient(self) -> Optional[str]:
        """Counterparty shown in history: email, falling back to account number"""
        return self.counterparty_email or self.counterparty_account_number

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.transaction_type.value,
            "amount": self.amount,
            "recipient": self.recipient,
            "direction": self.direction.value,
            "status": self.status.value,
            "date": self.created_at.isoformat(),
        }


class TransactionRecorder:
    """Writes and reads transaction records"""

    def __init__(self, storage: StorageInterface, table_name: str = "transactions"):
        self.storage = storage
        self.table_name = table_name

    def record(
        self,
        account_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        direction: TransactionDirection,
        counterparty: Optional[Counterparty] = None
    ) -> TransactionRecord:
        """
        Append a completed record for ``account_id``.

        Args:
            account_id: Account the record belongs to
            transaction_type: deposit, withdraw or transfer
            amount: Positive amount moved
            direction: credit (money in) or debit (money out)
            counterparty: Other party, required for transfers

        Returns:
            The stored TransactionRecord
        """
        now = datetime.now(timezone.utc)
        record = TransactionRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            transaction_type=transaction_type,
            amount=amount,
            direction=direction,
            counterparty_email=counterparty.email if counterparty else None,
            counterparty_account_number=counterparty.account_number if counterparty else None,
        )
        self.storage.insert(self.table_name, record.id, record.to_dict())

        log_action(
            logger, "info", f"Recorded {transaction_type.value} of {amount}",
            user_id=account_id, action=f"record_{transaction_type.value}",
            resource="transaction", extra={"transaction_id": record.id}
        )
        return record

    def get_account_transactions(
        self,
        account_id: str,
        limit: Optional[int] = None
    ) -> List[TransactionRecord]:
        """
        Records belonging to an account, newest first.

        Records with identical timestamps are returned most recently
        inserted first.
        """
        records = [
            TransactionRecord.from_dict(data)
            for data in self.storage.find(self.table_name, {'account_id': account_id})
        ]
        records.sort(key=lambda r: r.created_at)
        records.reverse()

        if limit:
            records = records[:limit]
        return records

    def count(self) -> int:
        return self.storage.count(self.table_name)
