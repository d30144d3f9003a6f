"""
Test suite for the transaction engine

Tests deposits, withdrawals and transfers, their all-or-nothing behaviour,
transaction history paging and the ledger replay invariant.
"""

import logging
import pytest
from decimal import Decimal

from svbank.config import SVBankConfig
from svbank.currency import Money, Currency
from svbank.storage import InMemoryStorage
from svbank.ledger import TransactionKind
from svbank.system import BankingSystem
from svbank.errors import (
    InvalidAmount, InsufficientFunds, NotFound, RecipientNotFound, InvalidRecipient
)


class FailingStorage(InMemoryStorage):
    """In-memory backend that crashes when a given ledger entry kind is written"""

    def __init__(self):
        super().__init__()
        self.fail_kind = None

    def save(self, table, record_id, data):
        if table == "transactions" and data.get("kind") == self.fail_kind:
            raise RuntimeError("simulated crash between ledger writes")
        super().save(table, record_id, data)


class TestTransactionEngine:
    """Test money movements on a single bank"""

    def setup_method(self):
        self.storage = FailingStorage()
        self.system = BankingSystem(self.storage, SVBankConfig())
        self.engine = self.system.transaction_engine
        self.ledger = self.system.ledger

        self.alice = self.system.user_directory.create_user("alice", "Alice")
        self.bob = self.system.user_directory.create_user("bob", "Bob")
        self.account_a = self.system.open_account(self.alice.id, Money(Decimal('1000.00')))
        self.account_b = self.system.open_account(self.bob.id, Money(Decimal('300.00')))

    def balance(self, account):
        return self.system.account_manager.get_balance(account.id)

    def assert_ledger_matches(self, *accounts):
        for account in accounts:
            assert self.ledger.replay_balance(account.id) == self.balance(account)

    def test_account_numbers(self):
        assert self.account_a.account_number == "SV00000001"
        assert self.account_b.account_number == "SV00000002"

    def test_deposit(self):
        result = self.engine.deposit(self.account_a.id, "250.00")

        assert result.balance == Money(Decimal('1250.00'))
        latest = result.transactions[0]
        assert latest.kind == TransactionKind.DEPOSIT
        assert latest.amount == Money(Decimal('250.00'))
        assert latest.balance_after == Money(Decimal('1250.00'))
        self.assert_ledger_matches(self.account_a)

    def test_deposit_accepts_numbers(self):
        assert self.engine.deposit(self.account_a.id, 0.1).balance == Money(Decimal('1000.10'))
        assert self.engine.deposit(self.account_a.id, 5).balance == Money(Decimal('1005.10'))

    @pytest.mark.parametrize("amount", ["0", "-10", "abc", "NaN", "Infinity", None, True, "10.001"])
    def test_invalid_amounts_change_nothing(self, amount):
        entries_before = self.ledger.count_for(self.account_a.id)

        with pytest.raises(InvalidAmount):
            self.engine.deposit(self.account_a.id, amount)
        with pytest.raises(InvalidAmount):
            self.engine.withdraw(self.account_a.id, amount)

        assert self.balance(self.account_a) == Money(Decimal('1000.00'))
        assert self.ledger.count_for(self.account_a.id) == entries_before

    def test_amount_above_limit(self):
        with pytest.raises(InvalidAmount, match="limit"):
            self.engine.deposit(self.account_a.id, "1000000.01")

    def test_unknown_account(self):
        with pytest.raises(NotFound):
            self.engine.deposit("missing", "10.00")

    def test_withdraw(self):
        result = self.engine.withdraw(self.account_a.id, "400.00")

        assert result.balance == Money(Decimal('600.00'))
        assert result.transactions[0].kind == TransactionKind.WITHDRAWAL
        self.assert_ledger_matches(self.account_a)

    def test_withdraw_entire_balance(self):
        assert self.engine.withdraw(self.account_a.id, "1000.00").balance.is_zero()

    def test_insufficient_funds_changes_nothing(self):
        entries_before = self.ledger.get_entries(self.account_a.id)

        with pytest.raises(InsufficientFunds):
            self.engine.withdraw(self.account_a.id, "1000.01")

        assert self.balance(self.account_a) == Money(Decimal('1000.00'))
        assert self.ledger.get_entries(self.account_a.id) == entries_before

    def test_transfer(self):
        result = self.engine.transfer(self.account_a.id, "SV00000002", "500.00")

        assert result.balance == Money(Decimal('500.00'))
        assert self.balance(self.account_b) == Money(Decimal('800.00'))

        sent = self.ledger.list_recent(self.account_a.id, 1)[0]
        received = self.ledger.list_recent(self.account_b.id, 1)[0]
        assert sent.kind == TransactionKind.TRANSFER_OUT
        assert sent.counterparty_account_id == self.account_b.id
        assert sent.description == "Transfer to SV00000002"
        assert received.kind == TransactionKind.TRANSFER_IN
        assert received.counterparty_account_id == self.account_a.id
        assert received.description == "Transfer from SV00000001"
        self.assert_ledger_matches(self.account_a, self.account_b)

    def test_transfer_recipient_number_is_trimmed(self):
        self.engine.transfer(self.account_a.id, "  SV00000002 ", "1.00")
        assert self.balance(self.account_b) == Money(Decimal('301.00'))

    def test_transfer_unknown_recipient(self):
        with pytest.raises(RecipientNotFound):
            self.engine.transfer(self.account_a.id, "SV99999999", "10.00")

        # RecipientNotFound is a NotFound
        with pytest.raises(NotFound):
            self.engine.transfer(self.account_a.id, "", "10.00")

    def test_transfer_to_self(self):
        with pytest.raises(InvalidRecipient):
            self.engine.transfer(self.account_a.id, self.account_a.account_number, "10.00")
        assert self.balance(self.account_a) == Money(Decimal('1000.00'))

    def test_transfer_to_other_currency(self):
        dollars = self.system.account_manager.open_account(
            self.bob.id, opening_balance=Money(Decimal('1.00'), Currency.USD), currency=Currency.USD
        )
        with pytest.raises(InvalidRecipient):
            self.engine.transfer(self.account_a.id, dollars.account_number, "10.00")

    def test_transfer_insufficient_funds_writes_nothing(self):
        with pytest.raises(InsufficientFunds):
            self.engine.transfer(self.account_b.id, "SV00000001", "300.01")

        assert self.balance(self.account_a) == Money(Decimal('1000.00'))
        assert self.balance(self.account_b) == Money(Decimal('300.00'))
        assert self.ledger.count_for(self.account_a.id) == 1
        assert self.ledger.count_for(self.account_b.id) == 1

    def test_transfer_crash_between_ledger_writes_writes_nothing(self):
        """A transfer produces both entries or neither"""
        self.storage.fail_kind = TransactionKind.TRANSFER_IN.value

        with pytest.raises(RuntimeError):
            self.engine.transfer(self.account_a.id, "SV00000002", "500.00")

        self.storage.fail_kind = None
        assert self.balance(self.account_a) == Money(Decimal('1000.00'))
        assert self.balance(self.account_b) == Money(Decimal('300.00'))
        for account in (self.account_a, self.account_b):
            kinds = [entry.kind for entry in self.ledger.get_entries(account.id)]
            assert kinds == [TransactionKind.DEPOSIT]
        assert self.system.audit_trail.verify_integrity()["valid"]

        # The bank keeps working after the failed unit
        self.engine.transfer(self.account_a.id, "SV00000002", "500.00")
        assert self.balance(self.account_b) == Money(Decimal('800.00'))

    def test_scenario(self):
        """Deposit, rejected withdrawal, then transfer"""
        assert self.engine.deposit(self.account_a.id, "250.00").balance == Money(Decimal('1250.00'))

        with pytest.raises(InsufficientFunds):
            self.engine.withdraw(self.account_a.id, "2000.00")
        assert self.balance(self.account_a) == Money(Decimal('1250.00'))

        result = self.engine.transfer(self.account_a.id, "SV00000002", "500.00")
        assert result.balance == Money(Decimal('750.00'))
        assert self.balance(self.account_b) == Money(Decimal('800.00'))
        assert result.transactions[0].balance_after == Money(Decimal('750.00'))
        assert self.ledger.list_recent(self.account_b.id, 1)[0].balance_after == Money(Decimal('800.00'))
        self.assert_ledger_matches(self.account_a, self.account_b)

    def test_recent_transactions_limited(self):
        for _ in range(12):
            self.engine.deposit(self.account_a.id, "1.00")

        result = self.engine.deposit(self.account_a.id, "1.00")
        assert len(result.transactions) == 10
        assert result.transactions[0].balance_after == Money(Decimal('1013.00'))


class TestTransactionHistory:
    """Test paging through the ledger"""

    def setup_method(self):
        self.system = BankingSystem(InMemoryStorage(), SVBankConfig())
        self.engine = self.system.transaction_engine
        self.user = self.system.register_customer("meera", "Meera Nair")
        self.account = self.system.account_manager.get_primary_account(self.user.id)
        for amount in range(1, 35):
            self.engine.deposit(self.account.id, str(amount))

    def test_default_page(self):
        page = self.engine.list_transactions(self.account.id)

        assert page.page == 1
        assert page.limit == 30
        assert page.total_count == 35  # opening deposit + 34
        assert len(page.transactions) == 30
        assert page.transactions[0].amount == Money(Decimal('34'))

    def test_second_page(self):
        page = self.engine.list_transactions(self.account.id, page=2, page_size=30)

        assert len(page.transactions) == 5
        assert page.transactions[-1].description == "Opening deposit"

    def test_pages_do_not_overlap(self):
        first = self.engine.list_transactions(self.account.id, page=1, page_size=10)
        second = self.engine.list_transactions(self.account.id, page=2, page_size=10)

        assert not {e.id for e in first.transactions} & {e.id for e in second.transactions}
        assert first.transactions[-1].id > second.transactions[0].id

    @pytest.mark.parametrize("page,page_size,expected_page,expected_limit", [
        (0, 0, 1, 30),
        (-3, -1, 1, 30),
        ("abc", "xyz", 1, 30),
        (None, None, 1, 30),
        ("2", "5", 2, 5),
        (1, 1000, 1, 100),
    ])
    def test_paging_parameters_clamped(self, page, page_size, expected_page, expected_limit):
        result = self.engine.list_transactions(self.account.id, page=page, page_size=page_size)

        assert result.page == expected_page
        assert result.limit == expected_limit

    def test_listing_is_read_only(self):
        first = self.engine.list_transactions(self.account.id, page=1, page_size=50)
        second = self.engine.list_transactions(self.account.id, page=1, page_size=50)

        assert first == second

    def test_page_past_end(self):
        assert self.engine.list_transactions(self.account.id, page=99).transactions == []

    def test_unknown_account(self):
        with pytest.raises(NotFound):
            self.engine.list_transactions("missing")

    def test_account_summary(self):
        summary = self.engine.get_account_summary(self.account.id)

        assert summary.owner_name == "Meera Nair"
        assert summary.account_number == self.account.account_number
        assert summary.account_type == "Savings"
        assert summary.balance == Money(Decimal('695.00'))  # 100 + 1..34
        assert len(summary.transactions) == 10


class TestTransactionLogging:
    """Committed and rejected movements are logged"""

    def setup_method(self):
        self.system = BankingSystem(InMemoryStorage(), SVBankConfig())
        self.user = self.system.register_customer("kiran", "Kiran")
        self.account = self.system.account_manager.get_primary_account(self.user.id)

    def test_committed_movement_logged_at_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="svbank"):
            self.system.transaction_engine.deposit(self.account.id, "10.00")

        records = [r for r in caplog.records if r.name == "svbank.transactions"]
        assert records[-1].levelno == logging.INFO
        assert records[-1].getMessage() == "deposit committed"
        assert records[-1].resource == f"account:{self.account.id}"

    def test_rejected_movement_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="svbank"):
            with pytest.raises(InsufficientFunds):
                self.system.transaction_engine.withdraw(self.account.id, "500.00")

        records = [r for r in caplog.records if r.name == "svbank.transactions"]
        assert records[-1].levelno == logging.WARNING
        assert records[-1].getMessage() == "withdraw failed: InsufficientFunds"
        assert records[-1].error == "InsufficientFunds"

    def test_invalid_amount_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="svbank"):
            with pytest.raises(InvalidAmount):
                self.system.transaction_engine.deposit(self.account.id, "-5")

        records = [r for r in caplog.records if r.name == "svbank.transactions"]
        assert records[-1].levelno == logging.WARNING
        assert records[-1].getMessage() == "deposit failed: InvalidAmount"
        assert records[-1].extra == {"amount": "-5"}

    def test_unknown_account_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="svbank"):
            with pytest.raises(NotFound):
                self.system.transaction_engine.withdraw("missing", "1.00")

        records = [r for r in caplog.records if r.name == "svbank.transactions"]
        assert records[-1].levelno == logging.WARNING
        assert records[-1].resource == "account:missing"

    def test_unknown_recipient_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="svbank"):
            with pytest.raises(RecipientNotFound):
                self.system.transaction_engine.transfer(self.account.id, "SV99999999", "1.00")

        records = [r for r in caplog.records if r.name == "svbank.transactions"]
        assert records[-1].levelno == logging.WARNING
        assert records[-1].getMessage() == "transfer failed: RecipientNotFound"
        assert records[-1].extra == {"amount": "INR 1.00"}

    def test_self_transfer_logged_at_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="svbank"):
            with pytest.raises(InvalidRecipient):
                self.system.transaction_engine.transfer(
                    self.account.id, self.account.account_number, "1.00"
                )

        records = [r for r in caplog.records if r.name == "svbank.transactions"]
        assert records[-1].levelno == logging.WARNING
