"""
Banking system wiring

Builds every component around one injected storage handle. Nothing here is
process-global: tests and the API each construct their own system.
"""

from decimal import Decimal
from typing import Optional

from .config import SVBankConfig, get_config
from .currency import Currency, Money
from .storage import StorageInterface, create_storage
from .locking import KeyedLockManager
from .audit import AuditTrail
from .ledger import Ledger
from .accounts import AccountManager, Account
from .users import UserDirectory, User, UserRole
from .transactions import TransactionEngine
from .loans import LoanWorkflow
from .logging_config import get_logger, log_action, resource_name


logger = get_logger("svbank.system")


class BankingSystem:
    """Transaction core with all components initialized"""

    def __init__(self, storage: StorageInterface, settings: Optional[SVBankConfig] = None):
        self.settings = settings or get_config()
        self.storage = storage
        self.currency = Currency[self.settings.default_currency]

        self.locks = KeyedLockManager()
        self.audit_trail = AuditTrail(self.storage)
        self.ledger = Ledger(self.storage)
        self.user_directory = UserDirectory(self.storage, self.audit_trail)
        self.account_manager = AccountManager(self.storage, self.ledger, self.audit_trail)
        self.transaction_engine = TransactionEngine(
            self.storage, self.account_manager, self.ledger, self.locks,
            user_directory=self.user_directory,
            recent_limit=self.settings.recent_transactions_limit,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
            max_transaction_amount=Decimal(self.settings.max_transaction_amount)
        )
        self.loan_workflow = LoanWorkflow(
            self.storage, self.account_manager, self.transaction_engine,
            self.user_directory, self.audit_trail, self.locks
        )

    @classmethod
    def from_config(cls, settings: Optional[SVBankConfig] = None) -> 'BankingSystem':
        """Build a system on the storage backend named by the configuration"""
        settings = settings or get_config()
        storage = create_storage(
            backend=settings.storage_backend,
            database_path=settings.database_path,
            timeout=settings.sqlite_timeout_seconds
        )
        return cls(storage, settings)

    def register_customer(self, username: str, name: str) -> User:
        """
        Create a customer with a funded default account

        Mirrors registration: the new account gets the configured type and
        opening balance.
        """
        with self.storage.atomic():
            user = self.user_directory.create_user(username, name, UserRole.CUSTOMER)
            self.open_account(user.id)

        log_action(logger, "info", "Customer registered",
                   user_id=user.id, action="register_customer", resource=resource_name("user", user.id))
        return user

    def register_staff(self, username: str, name: str) -> User:
        return self.user_directory.create_user(username, name, UserRole.STAFF)

    def open_account(self, owner_id: str, opening_balance: Optional[Money] = None) -> Account:
        if opening_balance is None:
            opening_balance = Money(Decimal(self.settings.opening_balance), self.currency)
        return self.account_manager.open_account(
            owner_id=owner_id,
            account_type=self.settings.default_account_type,
            opening_balance=opening_balance,
            currency=self.currency
        )

    def close(self) -> None:
        self.storage.close()
