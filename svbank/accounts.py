"""
Account Management Module

Manages customer accounts and their balances. A balance is only ever
changed through ``adjust_balance`` inside an atomic unit, paired with the
ledger entry that records the change.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import Ledger, TransactionKind
from .errors import NotFound, InsufficientFunds


@dataclass
class Account(StorageRecord):
    """
    Bank account owned by exactly one user
    """
    account_number: str
    owner_id: str
    account_type: str
    currency: Currency
    balance: Money

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")
        if self.balance.is_negative():
            raise ValueError("Account balance cannot be negative")


class AccountManager:
    """
    Account store: account lifecycle and balance mutation
    """

    ACCOUNT_NUMBER_PREFIX = "SV"

    def __init__(self, storage: StorageInterface, ledger: Ledger, audit_trail: AuditTrail):
        self.storage = storage
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.accounts_table = "accounts"

    def open_account(
        self,
        owner_id: str,
        account_type: str = "Savings",
        opening_balance: Optional[Money] = None,
        currency: Currency = Currency.INR
    ) -> Account:
        """
        Open an account and fund it with its opening balance

        The opening balance is recorded as a deposit entry so the ledger
        accounts for every unit of the balance from the start.

        Args:
            owner_id: ID of the owning user
            account_type: Display type, e.g. "Savings"
            opening_balance: Initial funds (zero if not provided)
            currency: Account currency

        Returns:
            Created Account object
        """
        if opening_balance is None:
            opening_balance = Money.zero(currency)
        if opening_balance.is_negative():
            raise ValueError("Opening balance cannot be negative")

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number="",
            owner_id=owner_id,
            account_type=account_type,
            currency=currency,
            balance=opening_balance
        )

        with self.storage.atomic():
            account.account_number = self._generate_account_number()
            self._save_account(account)

            if opening_balance.is_positive():
                self.ledger.append(
                    account_id=account.id,
                    kind=TransactionKind.DEPOSIT,
                    amount=opening_balance,
                    balance_after=opening_balance,
                    description="Opening deposit"
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_OPENED,
                entity_type="account",
                entity_id=account.id,
                user_id=owner_id,
                metadata={
                    "account_number": account.account_number,
                    "account_type": account_type,
                    "opening_balance": opening_balance.amount
                }
            )

        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise NotFound("Account not found")
        return account

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by its public account number"""
        accounts = self.storage.find(self.accounts_table, {"account_number": account_number})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def get_owner_accounts(self, owner_id: str) -> List[Account]:
        """All accounts of a user, oldest first"""
        accounts = [
            self._account_from_dict(data)
            for data in self.storage.find(self.accounts_table, {"owner_id": owner_id})
        ]
        accounts.sort(key=lambda account: account.created_at)
        return accounts

    def get_primary_account(self, owner_id: str) -> Account:
        """
        The account used when an operation is addressed to a user rather
        than to an account: the user's oldest account

        Raises:
            NotFound: If the user has no account
        """
        accounts = self.get_owner_accounts(owner_id)
        if not accounts:
            raise NotFound("No account found for this user")
        return accounts[0]

    def get_balance(self, account_id: str) -> Money:
        return self.require_account(account_id).balance

    def adjust_balance(self, account_id: str, delta: Money) -> Money:
        """
        Apply a signed change to an account balance

        Must run inside an atomic unit while holding the account's lock.

        Args:
            account_id: Account to change
            delta: Positive to credit, negative to debit

        Returns:
            The new balance

        Raises:
            NotFound: If the account does not exist
            InsufficientFunds: If the balance would become negative
        """
        account = self.require_account(account_id)
        new_balance = account.balance + delta

        if new_balance.is_negative():
            raise InsufficientFunds("Insufficient funds")

        account.balance = new_balance
        account.updated_at = datetime.now(timezone.utc)
        self._save_account(account)

        self.audit_trail.log_event(
            event_type=(AuditEventType.BALANCE_CREDITED if delta.is_positive()
                        else AuditEventType.BALANCE_DEBITED),
            entity_type="account",
            entity_id=account_id,
            metadata={
                "delta": delta.amount,
                "balance": new_balance.amount
            }
        )

        return new_balance

    def _generate_account_number(self) -> str:
        """Sequential public account number, e.g. SV00000001"""
        while True:
            number = f"{self.ACCOUNT_NUMBER_PREFIX}{self.storage.next_sequence('account_number'):08d}"
            if not self.storage.find(self.accounts_table, {"account_number": number}):
                return number

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        return {
            'id': account.id,
            'created_at': account.created_at.isoformat(),
            'updated_at': account.updated_at.isoformat(),
            'account_number': account.account_number,
            'owner_id': account.owner_id,
            'account_type': account.account_type,
            'currency': account.currency.code,
            'balance': str(account.balance.amount)
        }

    def _account_from_dict(self, data: Dict) -> Account:
        currency = Currency[data['currency']]
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            owner_id=data['owner_id'],
            account_type=data['account_type'],
            currency=currency,
            balance=Money(Decimal(data['balance']), currency)
        )
