"""
Transaction Ledger

Append-only record of every balance movement per account. Entries are
immutable once written: the ledger exposes no update or delete operation.
Each entry stores the balance the account had at the instant it was
committed, so replaying an account's entries in order reproduces its
current balance.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .currency import Money, Currency
from .storage import StorageInterface


class TransactionKind(Enum):
    """Kinds of ledger entries"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    LOAN_DISBURSEMENT = "loan_disbursement"

    @property
    def is_credit(self) -> bool:
        return self in (
            TransactionKind.DEPOSIT,
            TransactionKind.TRANSFER_IN,
            TransactionKind.LOAN_DISBURSEMENT
        )


@dataclass(frozen=True)
class Transaction:
    """
    Ledger entry. ``id`` is a monotonic insertion sequence shared by all
    accounts and breaks ties between entries with the same timestamp.
    """
    id: int
    account_id: str
    kind: TransactionKind
    amount: Money
    balance_after: Money
    created_at: datetime
    counterparty_account_id: Optional[str] = None
    description: str = ""

    @property
    def signed_amount(self) -> Money:
        """Amount as it affects the balance: credits positive, debits negative"""
        return self.amount if self.kind.is_credit else -self.amount

    @property
    def sort_key(self) -> tuple:
        return (self.created_at, self.id)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'account_id': self.account_id,
            'kind': self.kind.value,
            'amount': str(self.amount.amount),
            'balance_after': str(self.balance_after.amount),
            'currency': self.amount.currency.code,
            'counterparty_account_id': self.counterparty_account_id,
            'description': self.description,
            'created_at': self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        currency = Currency[data['currency']]
        return cls(
            id=int(data['id']),
            account_id=data['account_id'],
            kind=TransactionKind(data['kind']),
            amount=Money(Decimal(data['amount']), currency),
            balance_after=Money(Decimal(data['balance_after']), currency),
            created_at=datetime.fromisoformat(data['created_at']),
            counterparty_account_id=data.get('counterparty_account_id'),
            description=data.get('description', '')
        )


class Ledger:
    """
    Ledger store. Appends must happen inside the same atomic unit as the
    paired balance change.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def append(
        self,
        account_id: str,
        kind: TransactionKind,
        amount: Money,
        balance_after: Money,
        counterparty_account_id: Optional[str] = None,
        description: str = ""
    ) -> Transaction:
        """
        Append an entry, assigning its id and timestamp

        Raises:
            ValueError: If amount is not positive or balance_after is negative
        """
        if not amount.is_positive():
            raise ValueError("Ledger amounts must be positive")
        if balance_after.is_negative():
            raise ValueError("Ledger balance cannot be negative")

        entry = Transaction(
            id=self.storage.next_sequence(self.table_name),
            account_id=account_id,
            kind=kind,
            amount=amount,
            balance_after=balance_after,
            created_at=datetime.now(timezone.utc),
            counterparty_account_id=counterparty_account_id,
            description=description
        )
        self.storage.save(self.table_name, str(entry.id), entry.to_dict())
        return entry

    def get_entries(self, account_id: str) -> List[Transaction]:
        """All entries for an account, oldest first"""
        entries = [
            Transaction.from_dict(data)
            for data in self.storage.find(self.table_name, {"account_id": account_id})
        ]
        entries.sort(key=lambda entry: entry.sort_key)
        return entries

    def list_recent(self, account_id: str, limit: int, offset: int = 0) -> List[Transaction]:
        """Page of entries for an account, newest first"""
        entries = self.get_entries(account_id)
        entries.reverse()
        return entries[offset:offset + limit]

    def count_for(self, account_id: str) -> int:
        return self.storage.count(self.table_name, {"account_id": account_id})

    def replay_balance(self, account_id: str, currency: Currency = Currency.INR) -> Money:
        """
        Balance derived from the ledger alone: the signed amounts of all
        entries accumulated in creation order
        """
        balance = Money.zero(currency)
        for entry in self.get_entries(account_id):
            balance = balance + entry.signed_amount
        return balance
