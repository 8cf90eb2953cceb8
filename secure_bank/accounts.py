"""
Account Ledger Module

In-memory registry of bank accounts and their transaction logs. Enforces
the business rules (positive amounts, sufficient funds, no activity on
closed accounts) but no authorization; the secured service layer in
``service`` decides who may call what.

Locking:
- each account has its own lock, held across the whole
  read-check-mutate sequence so concurrent callers never lose an update
- the registry lock guards the account table, the owner index and the
  lock table; it is never requested while an account lock is held
- ``clear`` takes the registry lock and then every account lock, so it
  waits for in-flight mutations and no mutation can write after it
"""

import itertools
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, Iterator, List, Optional

from .audit import AuditEventType, AuditTrail
from .currency import AmountLike, Currency, Money, to_decimal
from .exceptions import (
    AccountNotFoundError, InactiveAccountError, InvalidAmountError, NotEnoughFundsError
)
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Kinds of entries in an account's transaction log"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CLOSURE = "closure"  # Pays out the remaining balance


@dataclass(frozen=True)
class Account:
    """
    Snapshot of a bank account. ``owner`` is the holder's name;
    ``created_by`` is the principal that opened it and who alone may move
    its funds.
    """
    id: int
    owner: str
    created_by: str
    balance: Money
    created_at: datetime
    updated_at: datetime
    active: bool = True


@dataclass(frozen=True)
class AccountTransaction:
    """Immutable entry of an account's transaction log"""
    id: int
    account_id: int
    tx_type: TransactionType
    amount: Money
    balance_after: Money
    created_by: str
    created_at: datetime


class AccountLedger:
    """
    Registry of accounts with deposit, withdrawal and closing rules
    """

    def __init__(
        self,
        audit_trail: Optional[AuditTrail] = None,
        currency: Currency = Currency.USD
    ):
        self.audit_trail = audit_trail
        self.currency = currency
        self.logger = get_logger("secure_bank.accounts")

        self._registry_lock = threading.Lock()
        self._accounts: Dict[int, Account] = {}
        self._transactions: Dict[int, List[AccountTransaction]] = {}
        self._owner_index: Dict[str, List[int]] = {}
        self._account_locks: Dict[int, threading.Lock] = {}

        # Ids survive clear() so they are never reused
        self._id_lock = threading.Lock()
        self._account_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)

    # Lifecycle operations

    def create_account(self, owner: str, created_by: str) -> int:
        """Open an empty, active account and return its id"""
        if not owner or not owner.strip():
            raise ValueError("Account owner name cannot be empty")

        now = datetime.now(timezone.utc)
        with self._registry_lock:
            account_id = self._next_id(self._account_ids)
            self._accounts[account_id] = Account(
                id=account_id,
                owner=owner,
                created_by=created_by,
                balance=Money.zero(self.currency),
                created_at=now,
                updated_at=now,
            )
            self._transactions[account_id] = []
            self._owner_index.setdefault(owner, []).append(account_id)
            self._account_locks[account_id] = threading.Lock()

        log_action(
            self.logger, "info", f"Account {account_id} created for '{owner}'",
            user_id=created_by, action="create_account", resource=f"account:{account_id}"
        )
        self._audit(AuditEventType.ACCOUNT_CREATED, account_id, created_by, {"owner": owner})

        return account_id

    def deposit(self, account_id: int, amount: AmountLike, created_by: str) -> Decimal:
        """Credit an active account; returns the new balance"""
        money = self._validate_amount(amount)

        with self._locked(account_id) as account:
            if not account.active:
                raise InactiveAccountError(account_id)
            tx = self._apply(account, TransactionType.DEPOSIT, money,
                             account.balance + money, created_by)

        log_action(
            self.logger, "info", f"Deposited {money.to_string()} into account {account_id}",
            user_id=created_by, action="deposit", resource=f"account:{account_id}",
            extra={"transaction_id": tx.id, "balance": str(tx.balance_after.amount)}
        )
        self._audit(
            AuditEventType.FUNDS_DEPOSITED, account_id, created_by,
            {"amount": money.amount, "balance": tx.balance_after.amount, "transaction_id": tx.id}
        )
        return tx.balance_after.amount

    def withdraw(self, account_id: int, amount: AmountLike, created_by: str) -> Decimal:
        """Debit an active account; returns the new balance"""
        money = self._validate_amount(amount)

        with self._locked(account_id) as account:
            if not account.active:
                raise InactiveAccountError(account_id)
            if money > account.balance:
                log_action(
                    self.logger, "info",
                    f"Withdrawal of {money.to_string()} refused for account {account_id}",
                    user_id=created_by, action="withdraw", resource=f"account:{account_id}",
                    extra={"balance": str(account.balance.amount)}
                )
                raise NotEnoughFundsError(account_id, money.amount, account.balance.amount)
            tx = self._apply(account, TransactionType.WITHDRAWAL, money,
                             account.balance - money, created_by)

        log_action(
            self.logger, "info", f"Withdrew {money.to_string()} from account {account_id}",
            user_id=created_by, action="withdraw", resource=f"account:{account_id}",
            extra={"transaction_id": tx.id, "balance": str(tx.balance_after.amount)}
        )
        self._audit(
            AuditEventType.FUNDS_WITHDRAWN, account_id, created_by,
            {"amount": money.amount, "balance": tx.balance_after.amount, "transaction_id": tx.id}
        )
        return tx.balance_after.amount

    def close(self, account_id: int, created_by: str) -> Decimal:
        """Deactivate an account, pay out its balance and return that balance"""
        with self._locked(account_id) as account:
            if not account.active:
                raise InactiveAccountError(account_id)
            closing_balance = account.balance
            tx = self._apply(account, TransactionType.CLOSURE, closing_balance,
                             Money.zero(self.currency), created_by, active=False)

        log_action(
            self.logger, "info", f"Account {account_id} closed",
            user_id=created_by, action="close_account", resource=f"account:{account_id}",
            extra={"transaction_id": tx.id, "closing_balance": str(closing_balance.amount)}
        )
        self._audit(
            AuditEventType.ACCOUNT_CLOSED, account_id, created_by,
            {"closing_balance": closing_balance.amount, "transaction_id": tx.id}
        )
        return closing_balance.amount

    def clear(self) -> None:
        """Drop every account and transaction once in-flight mutations finish"""
        with self._registry_lock:
            locks = list(self._account_locks.values())
            for lock in locks:
                lock.acquire()
            try:
                self._accounts.clear()
                self._transactions.clear()
                self._owner_index.clear()
                self._account_locks.clear()
            finally:
                for lock in locks:
                    lock.release()

    # Read accessors

    def get_account(self, account_id: int) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_owner(self, account_id: int) -> str:
        return self.get_account(account_id).owner

    def is_active(self, account_id: int) -> bool:
        return self.get_account(account_id).active

    def get_balance(self, account_id: int) -> Decimal:
        return self.get_account(account_id).balance.amount

    def get_transactions(self, account_id: int) -> List[AccountTransaction]:
        """Transaction log of an account, oldest first"""
        transactions = self._transactions.get(account_id)
        if transactions is None:
            raise AccountNotFoundError(account_id)
        return list(transactions)

    def find_account_ids_by_owner(self, owner: str) -> List[int]:
        with self._registry_lock:
            return sorted(self._owner_index.get(owner, ()))

    def count_accounts(self) -> int:
        return len(self._accounts)

    # Private helper methods

    @contextmanager
    def _locked(self, account_id: int) -> Iterator[Account]:
        """Hold the account's lock and yield its current snapshot"""
        with self._registry_lock:
            lock = self._account_locks.get(account_id)
        if lock is None:
            raise AccountNotFoundError(account_id)
        with lock:
            # clear() may have dropped the account while we were waiting
            if self._account_locks.get(account_id) is not lock:
                raise AccountNotFoundError(account_id)
            yield self._accounts[account_id]

    def _next_id(self, counter: Iterator[int]) -> int:
        with self._id_lock:
            return next(counter)

    def _validate_amount(self, amount: AmountLike) -> Money:
        try:
            value = to_decimal(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidAmountError(f"Invalid amount: {amount!r}")

        if not value.is_finite():
            raise InvalidAmountError(f"Amount must be finite, got {amount!r}")

        # Rounded HALF_UP to the currency precision before the sign check
        try:
            money = Money(value, self.currency)
        except InvalidOperation:
            raise InvalidAmountError(f"Amount out of range: {amount!r}")
        if not money.is_positive():
            raise InvalidAmountError(f"Amount must be positive, got {amount!r}")
        return money

    def _apply(self, account: Account, tx_type: TransactionType, amount: Money,
               new_balance: Money, created_by: str, active: bool = True) -> AccountTransaction:
        """Record a log entry and the account's new state; caller holds the account lock"""
        now = datetime.now(timezone.utc)
        tx = AccountTransaction(
            id=self._next_id(self._transaction_ids),
            account_id=account.id,
            tx_type=tx_type,
            amount=amount,
            balance_after=new_balance,
            created_by=created_by,
            created_at=now,
        )
        self._transactions[account.id].append(tx)
        self._accounts[account.id] = replace(
            account, balance=new_balance, active=active, updated_at=now
        )
        return tx

    def _audit(self, event_type: AuditEventType, account_id: int, user_id: str, metadata: Dict) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(event_type, "account", str(account_id), metadata, user_id=user_id)
