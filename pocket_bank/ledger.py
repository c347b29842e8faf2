"""
Account Ledger Module

Balance mutation rules for deposits, withdrawals and peer-to-peer transfers.
Every mutation loads one account document, changes its balance and running
totals, saves it under optimistic concurrency and only then writes the
matching transaction record(s).

A transfer touches two documents one after the other. There is no
cross-document transaction: if the recipient's save fails after the sender's
succeeded, the sender's change is reversed by a compensating save and the
transfer is reported as failed. If the compensation also fails the ledger is
left unbalanced and a critical log entry names both accounts.
"""

from decimal import Context, Decimal, Inexact, InvalidOperation, Overflow, ROUND_HALF_UP
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .accounts import Account, AccountRepository
from .audit import AuditTrail, AuditEventType
from .errors import (
    InsufficientFundsError, InternalError, NotFoundError, PocketBankError,
    RecipientNotFoundError, SelfTransferError, ValidationError,
)
from .logging_config import get_logger, log_action
from .transactions import (
    Counterparty, TransactionDirection, TransactionRecord, TransactionRecorder,
    TransactionType,
)


logger = get_logger("pocket_bank.ledger")

AMOUNT_QUANTUM = Decimal('0.01')

INVALID_AMOUNT_MESSAGE = "Please enter a valid positive amount"
INVALID_TRANSFER_MESSAGE = "Please provide recipient and valid amount"
BALANCE_LIMIT_MESSAGE = "Amount exceeds the maximum supported balance"

# Balance arithmetic must be exact; a result needing more digits is refused
MONEY_CONTEXT = Context(
    prec=28, rounding=ROUND_HALF_UP, traps=[InvalidOperation, Inexact, Overflow]
)


def parse_amount(value: Any, message: str = INVALID_AMOUNT_MESSAGE) -> Decimal:
    """
    Convert a client-supplied amount to a positive Decimal with cent precision.

    Accepts ints, floats, Decimals and numeric strings. Rejects missing,
    boolean, non-numeric, NaN/infinite and non-positive values, including
    values that round to zero.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(message)
    if isinstance(value, str):
        text = value.strip()
    elif isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        raise ValidationError(message)

    try:
        amount = Decimal(text)
        if not amount.is_finite():
            raise ValidationError(message)
        amount = amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(message)

    if amount <= 0:
        raise ValidationError(message)
    return amount


def exact_add(left: Decimal, right: Decimal) -> Decimal:
    """Add two money values, refusing results that would have to be rounded"""
    try:
        return MONEY_CONTEXT.add(left, right)
    except (Inexact, Overflow):
        raise ValidationError(BALANCE_LIMIT_MESSAGE)


def exact_subtract(left: Decimal, right: Decimal) -> Decimal:
    try:
        return MONEY_CONTEXT.subtract(left, right)
    except (Inexact, Overflow):
        raise ValidationError(BALANCE_LIMIT_MESSAGE)


@dataclass
class LedgerResult:
    """Balances of the acting account after a mutation"""
    account_id: str
    balance: Decimal
    total_deposited: Decimal
    total_withdrawn: Decimal
    transactions: List[TransactionRecord] = field(default_factory=list)


class AccountLedger:
    """
    Applies deposits, withdrawals and transfers to accounts
    """

    def __init__(
        self,
        accounts: AccountRepository,
        recorder: TransactionRecorder,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.accounts = accounts
        self.recorder = recorder
        self.audit_trail = audit_trail

    def _load(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account

    @staticmethod
    def _result(account: Account, records: List[TransactionRecord]) -> LedgerResult:
        return LedgerResult(
            account_id=account.id,
            balance=account.balance,
            total_deposited=account.total_deposited,
            total_withdrawn=account.total_withdrawn,
            transactions=records,
        )

    def deposit(self, account_id: str, amount: Any) -> LedgerResult:
        """
        Credit an account.

        Raises:
            ValidationError: amount is not a finite positive number, or the new
                balance could not be represented exactly
        """
        value = parse_amount(amount)
        account = self._load(account_id)

        balance = exact_add(account.balance, value)
        total_deposited = exact_add(account.total_deposited, value)
        account.balance = balance
        account.total_deposited = total_deposited
        self.accounts.save(account)

        record = self.recorder.record(
            account.id, TransactionType.DEPOSIT, value, TransactionDirection.CREDIT
        )
        log_action(
            logger, "info", f"Deposit of {value} completed",
            user_id=account.id, action="deposit", resource="account",
            extra={"balance": account.balance}
        )
        return self._result(account, [record])

    def withdraw(self, account_id: str, amount: Any) -> LedgerResult:
        """
        Debit an account. Withdrawing the entire balance is allowed.

        Raises:
            ValidationError: amount is not a finite positive number
            InsufficientFundsError: amount exceeds the balance
        """
        value = parse_amount(amount)
        account = self._load(account_id)

        if account.balance < value:
            log_action(
                logger, "warning", "Withdrawal rejected: insufficient balance",
                user_id=account.id, action="withdraw_rejected", resource="account"
            )
            raise InsufficientFundsError()

        balance = exact_subtract(account.balance, value)
        total_withdrawn = exact_add(account.total_withdrawn, value)
        account.balance = balance
        account.total_withdrawn = total_withdrawn
        self.accounts.save(account)

        record = self.recorder.record(
            account.id, TransactionType.WITHDRAW, value, TransactionDirection.DEBIT
        )
        log_action(
            logger, "info", f"Withdrawal of {value} completed",
            user_id=account.id, action="withdraw", resource="account",
            extra={"balance": account.balance}
        )
        return self._result(account, [record])

    def transfer(self, sender_id: str, recipient_key: Any, amount: Any) -> LedgerResult:
        """
        Move money from the sender to the account matching ``recipient_key``
        (email, case-insensitive, or exact account number).

        Raises:
            ValidationError: missing recipient or invalid amount, or a balance
                would exceed the supported precision
            InsufficientFundsError: amount exceeds the sender's balance
            RecipientNotFoundError: no account matches ``recipient_key``
            SelfTransferError: the recipient is the sender
            InternalError: the recipient could not be credited
        """
        if not isinstance(recipient_key, str) or not recipient_key.strip():
            raise ValidationError(INVALID_TRANSFER_MESSAGE)
        value = parse_amount(amount, INVALID_TRANSFER_MESSAGE)

        sender = self._load(sender_id)
        if sender.balance < value:
            raise InsufficientFundsError()

        recipient = self.accounts.find_by_email_or_account_number(recipient_key.strip())
        if not recipient:
            raise RecipientNotFoundError()
        if recipient.id == sender.id:
            raise SelfTransferError()

        # Both legs are computed before either is written
        sender_balance = exact_subtract(sender.balance, value)
        sender_withdrawn = exact_add(sender.total_withdrawn, value)
        recipient_balance = exact_add(recipient.balance, value)
        recipient_deposited = exact_add(recipient.total_deposited, value)

        sender.balance = sender_balance
        sender.total_withdrawn = sender_withdrawn
        self.accounts.save(sender)

        recipient.balance = recipient_balance
        recipient.total_deposited = recipient_deposited
        try:
            self.accounts.save(recipient)
        except Exception as exc:
            self._compensate_sender(sender, recipient, value)
            if isinstance(exc, PocketBankError) and not isinstance(exc, InternalError):
                raise
            raise InternalError("Transfer failed, no money was moved") from exc

        sent = self.recorder.record(
            sender.id, TransactionType.TRANSFER, value, TransactionDirection.DEBIT,
            Counterparty(email=recipient.email, account_number=recipient.account_number)
        )
        received = self.recorder.record(
            recipient.id, TransactionType.TRANSFER, value, TransactionDirection.CREDIT,
            Counterparty(email=sender.email, account_number=sender.account_number)
        )
        log_action(
            logger, "info", f"Transfer of {value} completed",
            user_id=sender.id, action="transfer", resource="account",
            extra={"recipient_id": recipient.id, "balance": sender.balance}
        )
        return self._result(sender, [sent, received])

    def _compensate_sender(self, sender: Account, recipient: Account, value: Decimal) -> None:
        """Undo the sender side of a transfer whose credit leg failed"""
        sender.balance += value
        sender.total_withdrawn -= value
        try:
            self.accounts.save(sender)
        except Exception:
            logger.critical(
                "Ledger inconsistent: sender %s debited %s but recipient %s not credited",
                sender.id, value, recipient.id, exc_info=True
            )
            return

        log_action(
            logger, "error", f"Transfer of {value} failed, sender debit reversed",
            user_id=sender.id, action="transfer_compensated", resource="account",
            extra={"recipient_id": recipient.id}
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.TRANSFER_COMPENSATED, "account", sender.id,
                {"recipient_id": recipient.id, "amount": value},
                user_id=sender.id
            )
