"""
Test suite for the transaction ledger

Entries are append-only, ordered by creation time with the insertion
sequence as tie-breaker, and replay to the account balance.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from svbank.currency import Money, Currency
from svbank.storage import InMemoryStorage
from svbank.ledger import Ledger, Transaction, TransactionKind


class TestTransactionKind:

    def test_credit_kinds(self):
        assert TransactionKind.DEPOSIT.is_credit
        assert TransactionKind.TRANSFER_IN.is_credit
        assert TransactionKind.LOAN_DISBURSEMENT.is_credit
        assert not TransactionKind.WITHDRAWAL.is_credit
        assert not TransactionKind.TRANSFER_OUT.is_credit


class TestTransaction:
    """Test ledger entry value object"""

    def test_signed_amount(self):
        now = datetime.now(timezone.utc)
        debit = Transaction(
            id=1, account_id="a", kind=TransactionKind.WITHDRAWAL,
            amount=Money(Decimal('40.00')), balance_after=Money(Decimal('60.00')),
            created_at=now
        )
        assert debit.signed_amount == Money(Decimal('-40.00'))

    def test_dict_conversion(self):
        now = datetime.now(timezone.utc)
        entry = Transaction(
            id=7, account_id="a", kind=TransactionKind.TRANSFER_OUT,
            amount=Money(Decimal('5.50'), Currency.USD), balance_after=Money(Decimal('4.50'), Currency.USD),
            created_at=now, counterparty_account_id="b", description="Transfer to SV00000002"
        )
        data = entry.to_dict()
        assert data["amount"] == "5.50"
        assert data["currency"] == "USD"
        assert Transaction.from_dict(data) == entry


class TestLedger:
    """Test ledger store operations"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.ledger = Ledger(self.storage)

    def append(self, kind, amount, balance_after, account_id="acc"):
        return self.ledger.append(
            account_id=account_id,
            kind=kind,
            amount=Money(Decimal(amount)),
            balance_after=Money(Decimal(balance_after))
        )

    def test_append_assigns_monotonic_ids(self):
        first = self.append(TransactionKind.DEPOSIT, "100.00", "100.00")
        second = self.append(TransactionKind.WITHDRAWAL, "30.00", "70.00")
        other = self.append(TransactionKind.DEPOSIT, "5.00", "5.00", account_id="other")

        assert first.id < second.id < other.id
        assert first.created_at <= second.created_at

    def test_append_rejects_non_positive_amount(self):
        with pytest.raises(ValueError):
            self.append(TransactionKind.DEPOSIT, "0.00", "10.00")

    def test_append_rejects_negative_balance(self):
        with pytest.raises(ValueError):
            self.append(TransactionKind.WITHDRAWAL, "10.00", "-10.00")

    def test_entries_oldest_first_and_recent_newest_first(self):
        entries = [
            self.append(TransactionKind.DEPOSIT, "100.00", "100.00"),
            self.append(TransactionKind.DEPOSIT, "50.00", "150.00"),
            self.append(TransactionKind.WITHDRAWAL, "20.00", "130.00"),
        ]

        assert self.ledger.get_entries("acc") == entries
        assert self.ledger.list_recent("acc", 2) == [entries[2], entries[1]]
        assert self.ledger.list_recent("acc", 2, offset=2) == [entries[0]]
        assert self.ledger.list_recent("acc", 10, offset=5) == []

    def test_same_timestamp_ordered_by_id(self):
        now = datetime.now(timezone.utc).isoformat()
        for entry_id in (3, 1, 2):
            self.storage.save("transactions", str(entry_id), {
                "id": entry_id, "account_id": "acc", "kind": "deposit",
                "amount": "1.00", "balance_after": f"{entry_id}.00", "currency": "INR",
                "counterparty_account_id": None, "description": "", "created_at": now
            })

        assert [entry.id for entry in self.ledger.get_entries("acc")] == [1, 2, 3]

    def test_count_for(self):
        self.append(TransactionKind.DEPOSIT, "1.00", "1.00")
        self.append(TransactionKind.DEPOSIT, "1.00", "2.00")
        self.append(TransactionKind.DEPOSIT, "1.00", "1.00", account_id="other")

        assert self.ledger.count_for("acc") == 2
        assert self.ledger.count_for("nobody") == 0

    def test_replay_balance(self):
        self.append(TransactionKind.DEPOSIT, "100.00", "100.00")
        self.append(TransactionKind.TRANSFER_IN, "25.50", "125.50")
        self.append(TransactionKind.WITHDRAWAL, "20.00", "105.50")
        self.append(TransactionKind.TRANSFER_OUT, "5.50", "100.00")
        self.append(TransactionKind.LOAN_DISBURSEMENT, "1000.00", "1100.00")

        assert self.ledger.replay_balance("acc") == Money(Decimal('1100.00'))
        assert self.ledger.replay_balance("empty") == Money.zero()

    def test_no_update_or_delete_api(self):
        assert not hasattr(self.ledger, "update")
        assert not hasattr(self.ledger, "delete")
