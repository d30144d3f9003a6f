"""
Transaction Processing Module

Deposits, withdrawals and transfers. Every operation validates its input
before touching storage, then runs as one atomic unit under the keyed
lock(s) of the accounts it changes: the balance update and its ledger
entry (two of each for a transfer) become visible together or not at all.
"""

from decimal import Decimal
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, List, Optional

from .currency import Money, parse_amount
from .storage import StorageInterface
from .locking import KeyedLockManager, account_key
from .ledger import Ledger, Transaction, TransactionKind
from .accounts import AccountManager, Account
from .users import UserDirectory
from .errors import BankingError, RecipientNotFound, InvalidRecipient
from .logging_config import get_logger, log_action, log_rejection, resource_name


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of a money movement: new balance and most recent entries"""
    balance: Money
    transactions: List[Transaction]


@dataclass(frozen=True)
class TransactionPage:
    transactions: List[Transaction]
    total_count: int
    page: int
    limit: int


@dataclass(frozen=True)
class AccountSummary:
    account_id: str
    account_number: str
    account_type: str
    owner_name: str
    balance: Money
    transactions: List[Transaction]


def _positive_int(value: Any, default: int) -> int:
    """Coerce a paging parameter; anything unusable falls back to default"""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


class TransactionEngine:
    """
    Applies money movements against the account store and the ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        ledger: Ledger,
        locks: KeyedLockManager,
        user_directory: Optional[UserDirectory] = None,
        recent_limit: int = 10,
        default_page_size: int = 30,
        max_page_size: int = 100,
        max_transaction_amount: Optional[Decimal] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.ledger = ledger
        self.locks = locks
        self.user_directory = user_directory
        self.recent_limit = recent_limit
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.max_transaction_amount = max_transaction_amount
        self.logger = get_logger("svbank.transactions")

    def deposit(self, account_id: str, amount: Any) -> TransactionResult:
        """
        Credit an account

        Raises:
            InvalidAmount: If amount is not a finite positive value
            NotFound: If the account does not exist
        """
        with self._logged("deposit", account_id, amount) as extra:
            account = self._load_account(account_id)
            money = self._validate_amount(amount, account)
            extra["amount"] = money.to_string()

            with self.locks.hold(account_key(account_id)), self.storage.atomic():
                balance = self.account_manager.adjust_balance(account_id, money)
                self.ledger.append(
                    account_id=account_id,
                    kind=TransactionKind.DEPOSIT,
                    amount=money,
                    balance_after=balance
                )

        return self._result(account_id, balance)

    def withdraw(self, account_id: str, amount: Any) -> TransactionResult:
        """
        Debit an account

        Raises:
            InvalidAmount: If amount is not a finite positive value
            NotFound: If the account does not exist
            InsufficientFunds: If amount exceeds the current balance
        """
        with self._logged("withdraw", account_id, amount) as extra:
            account = self._load_account(account_id)
            money = self._validate_amount(amount, account)
            extra["amount"] = money.to_string()

            with self.locks.hold(account_key(account_id)), self.storage.atomic():
                balance = self.account_manager.adjust_balance(account_id, -money)
                self.ledger.append(
                    account_id=account_id,
                    kind=TransactionKind.WITHDRAWAL,
                    amount=money,
                    balance_after=balance
                )

        return self._result(account_id, balance)

    def transfer(self, from_account_id: str, to_account_number: str, amount: Any) -> TransactionResult:
        """
        Move funds to the account with the given public account number

        Raises:
            InvalidAmount: If amount is not a finite positive value
            NotFound: If the sending account does not exist
            RecipientNotFound: If no account has to_account_number
            InvalidRecipient: If the recipient is the sending account
            InsufficientFunds: If amount exceeds the sender's balance
        """
        with self._logged("transfer", from_account_id, amount) as extra:
            sender = self._load_account(from_account_id)
            money = self._validate_amount(amount, sender)
            extra["amount"] = money.to_string()

            with self.storage.translate_errors():
                recipient = self.account_manager.get_account_by_number((to_account_number or "").strip())
            if not recipient:
                raise RecipientNotFound("Recipient account not found")
            if recipient.id == sender.id:
                raise InvalidRecipient("Cannot transfer to the same account")
            if recipient.currency != sender.currency:
                raise InvalidRecipient("Recipient account uses a different currency")
            extra["counterparty_account_id"] = recipient.id

            with self.locks.hold(account_key(sender.id), account_key(recipient.id)), \
                    self.storage.atomic():
                sender_balance = self.account_manager.adjust_balance(sender.id, -money)
                recipient_balance = self.account_manager.adjust_balance(recipient.id, money)
                self.ledger.append(
                    account_id=sender.id,
                    kind=TransactionKind.TRANSFER_OUT,
                    amount=money,
                    balance_after=sender_balance,
                    counterparty_account_id=recipient.id,
                    description=f"Transfer to {recipient.account_number}"
                )
                self.ledger.append(
                    account_id=recipient.id,
                    kind=TransactionKind.TRANSFER_IN,
                    amount=money,
                    balance_after=recipient_balance,
                    counterparty_account_id=sender.id,
                    description=f"Transfer from {sender.account_number}"
                )

        return self._result(sender.id, sender_balance)

    def credit(
        self,
        account_id: str,
        amount: Money,
        kind: TransactionKind,
        description: str = ""
    ) -> Transaction:
        """
        Credit inside the caller's atomic unit.

        The caller must already hold the account's lock and an open unit;
        used by workflows that change other records in the same unit.
        """
        balance = self.account_manager.adjust_balance(account_id, amount)
        return self.ledger.append(
            account_id=account_id,
            kind=kind,
            amount=amount,
            balance_after=balance,
            description=description
        )

    def list_transactions(self, account_id: str, page: Any = 1, page_size: Any = None) -> TransactionPage:
        """
        Page through an account's ledger, newest first

        page and page_size fall back to their defaults when missing or not
        positive; page_size is capped at max_page_size.
        """
        page = _positive_int(page, 1)
        limit = min(_positive_int(page_size, self.default_page_size), self.max_page_size)

        with self.storage.translate_errors():
            self.account_manager.require_account(account_id)
            entries = self.ledger.list_recent(account_id, limit, (page - 1) * limit)
            total = self.ledger.count_for(account_id)

        return TransactionPage(transactions=entries, total_count=total, page=page, limit=limit)

    def get_account_summary(self, account_id: str) -> AccountSummary:
        """Account details with its most recent entries"""
        with self.storage.translate_errors():
            account = self._load_account(account_id)
            owner_name = ""
            if self.user_directory:
                owner = self.user_directory.get_user(account.owner_id)
                owner_name = owner.name if owner else ""
            recent = self.ledger.list_recent(account_id, self.recent_limit)

        return AccountSummary(
            account_id=account.id,
            account_number=account.account_number,
            account_type=account.account_type,
            owner_name=owner_name,
            balance=account.balance,
            transactions=recent
        )

    def _validate_amount(self, amount: Any, account: Account) -> Money:
        return parse_amount(amount, account.currency, self.max_transaction_amount)

    def _result(self, account_id: str, balance: Money) -> TransactionResult:
        with self.storage.translate_errors():
            recent = self.ledger.list_recent(account_id, self.recent_limit)
        return TransactionResult(balance=balance, transactions=recent)

    def _load_account(self, account_id: str) -> Account:
        with self.storage.translate_errors():
            return self.account_manager.require_account(account_id)

    @contextmanager
    def _logged(self, action: str, account_id: str, amount: Any):
        """
        Log the outcome of one money movement, validation included

        Yields the structured fields; the body replaces the raw amount with
        the parsed one once it validates.
        """
        extra = {"amount": str(amount)}
        resource = resource_name("account", account_id)
        try:
            yield extra
        except BankingError as e:
            log_rejection(self.logger, action, e, resource=resource, extra=extra)
            raise
        except Exception:
            self.logger.error(f"{action} aborted on {resource}", exc_info=True)
            raise
        log_action(self.logger, "info", f"{action} committed",
                   action=action, resource=resource, extra=extra)
