"""
Account Records Module

Defines the customer account document and the repository the services use to
read and persist it. Each account owns its balance and running totals.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .storage import StorageInterface, StorageRecord
from .errors import DuplicateEmailError, DuplicateKeyError


class AccountType(Enum):
    """Account product categories offered at registration"""
    SAVINGS = "savings"
    CURRENT = "current"


@dataclass
class Account(StorageRecord):
    """
    Customer account with its balance and lifetime totals.

    ``version`` increases by one on every successful save and is used for
    optimistic concurrency.
    """
    name: str
    email: str
    phone: str
    account_type: AccountType
    account_number: str
    password_hash: str
    password_salt: str
    balance: Decimal = Decimal('0')
    total_deposited: Decimal = Decimal('0')
    total_withdrawn: Decimal = Decimal('0')
    version: int = 1

    def __post_init__(self):
        for name in ('balance', 'total_deposited', 'total_withdrawn'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                setattr(self, name, Decimal(str(value)))
        if not isinstance(self.account_type, AccountType):
            self.account_type = AccountType(self.account_type)

        if self.balance < 0:
            raise ValueError("Account balance cannot be negative")
        if self.total_deposited < 0 or self.total_withdrawn < 0:
            raise ValueError("Account totals cannot be negative")

    def public_view(self) -> Dict[str, Any]:
        """Projection safe to return to clients (no credential fields)"""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "accountType": self.account_type.value,
            "accountNumber": self.account_number,
            "balance": self.balance,
            "totalDeposited": self.total_deposited,
            "totalWithdrawn": self.total_withdrawn,
        }


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountRepository:
    """
    Loads and stores Account documents.

    Email and account number are unique across the table; the storage
    backend enforces the constraint on insert.
    """

    UNIQUE_KEYS = ('email', 'account_number')

    def __init__(self, storage: StorageInterface, table_name: str = "accounts"):
        self.storage = storage
        self.table_name = table_name

    def get(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.table_name, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def get_by_email(self, email: str) -> Optional[Account]:
        data = self.storage.find_one(self.table_name, {'email': normalize_email(email)})
        if data:
            return Account.from_dict(data)
        return None

    def get_by_account_number(self, account_number: str) -> Optional[Account]:
        data = self.storage.find_one(self.table_name, {'account_number': account_number})
        if data:
            return Account.from_dict(data)
        return None

    def account_number_exists(self, account_number: str) -> bool:
        return self.storage.find_one(self.table_name, {'account_number': account_number}) is not None

    def find_by_email_or_account_number(self, key: str) -> Optional[Account]:
        """Resolve a transfer recipient: case-insensitive email, else exact account number"""
        return self.get_by_email(key) or self.get_by_account_number(key)

    def add(self, account: Account) -> None:
        """Insert a new account, enforcing unique email and account number"""
        try:
            self.storage.insert(
                self.table_name, account.id, account.to_dict(), unique_keys=self.UNIQUE_KEYS
            )
        except DuplicateKeyError as exc:
            if exc.key == 'email':
                raise DuplicateEmailError() from exc
            raise

    def save(self, account: Account) -> Account:
        """
        Persist changes to an existing account.

        The write only succeeds if the stored version still matches the one
        the caller loaded; the account's version is bumped on success.
        """
        expected = account.version
        account.version = expected + 1
        account.updated_at = datetime.now(timezone.utc)
        try:
            self.storage.save(
                self.table_name, account.id, account.to_dict(), expected_version=expected
            )
        except Exception:
            account.version = expected
            raise
        return account
