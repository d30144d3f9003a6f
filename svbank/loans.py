"""
Loan Module

Loan applications and the staff approval workflow. A loan starts pending
and is approved or rejected exactly once. Approval disburses the principal
into the borrower's account in the same atomic unit as the status change.
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import uuid

from .currency import Money, Currency, parse_amount, to_decimal
from .storage import StorageInterface, StorageRecord
from .locking import KeyedLockManager, account_key, loan_key
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .ledger import TransactionKind
from .transactions import TransactionEngine
from .users import UserDirectory
from .errors import (
    BankingError, InvalidAmount, InvalidLoanTerms, InvalidAction, NotFound, AlreadyProcessed
)
from .logging_config import get_logger, log_action, log_rejection, resource_name


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"
    APPROVED = "approved"   # Terminal, principal disbursed
    REJECTED = "rejected"   # Terminal


class LoanAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


MAX_INTEREST_RATE = Decimal('100')
AMORTIZATION_PRECISION = 28


def calculate_monthly_payment(principal: Money, annual_rate: Decimal, months: int) -> Money:
    """
    Equal monthly installment repaying principal plus interest

    Standard loan payment formula: P * [r(1+r)^n] / [(1+r)^n - 1]
    where r is the monthly rate (annual percent / 100 / 12) and n the
    number of monthly payments.
    """
    if months < 1:
        raise InvalidLoanTerms("Loan must run for at least one month")

    # Amortization factors need more digits than the calling thread may carry
    with localcontext() as ctx:
        ctx.prec = AMORTIZATION_PRECISION
        monthly_rate = annual_rate / Decimal('100') / Decimal('12')
        if monthly_rate == 0:
            payment = principal.amount / Decimal(months)
        else:
            factor = (Decimal('1') + monthly_rate) ** months
            payment = principal.amount * monthly_rate * factor / (factor - Decimal('1'))
        payment = payment.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return Money(payment, principal.currency)


def months_until(due_date: date, today: date) -> int:
    """Whole months between today and due_date"""
    months = (due_date.year - today.year) * 12 + (due_date.month - today.month)
    if due_date.day < today.day:
        months -= 1
    return months


@dataclass
class LoanApplication:
    """
    Validated loan request. Exactly one of duration_months or due_date
    defines the term.
    """
    borrower_id: str
    loan_type: str
    principal: Any
    interest_rate: Any
    duration_months: Optional[int] = None
    due_date: Optional[date] = None
    currency: Currency = Currency.INR

    def __post_init__(self):
        if not self.loan_type or not str(self.loan_type).strip():
            raise InvalidLoanTerms("Loan type is required")
        self.loan_type = str(self.loan_type).strip().lower()

        self.principal = parse_amount(self.principal, self.currency)

        try:
            rate = to_decimal(self.interest_rate)
        except InvalidAmount:
            raise InvalidLoanTerms("Interest rate must be a number")
        if rate <= 0 or rate > MAX_INTEREST_RATE:
            raise InvalidLoanTerms("Interest rate must be greater than 0 and at most 100")
        self.interest_rate = rate

        if (self.duration_months is None) == (self.due_date is None):
            raise InvalidLoanTerms("Provide either a duration in months or a due date")

        if self.duration_months is not None:
            if isinstance(self.duration_months, bool) or not isinstance(self.duration_months, int):
                raise InvalidLoanTerms("Duration must be a whole number of months")
            if self.duration_months < 1:
                raise InvalidLoanTerms("Duration must be at least one month")
        elif self.due_date <= date.today():
            raise InvalidLoanTerms("Due date must be in the future")

    @property
    def term_months(self) -> int:
        if self.duration_months is not None:
            return self.duration_months
        return max(months_until(self.due_date, date.today()), 1)


@dataclass
class Loan(StorageRecord):
    """Loan with its terms and approval status"""
    borrower_id: str
    loan_type: str
    principal: Money
    interest_rate: Decimal
    monthly_payment: Money
    duration_months: Optional[int] = None
    due_date: Optional[date] = None
    status: LoanStatus = LoanStatus.PENDING
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    disbursement_account_id: Optional[str] = None
    disbursement_transaction_id: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status == LoanStatus.PENDING


@dataclass(frozen=True)
class PendingLoan:
    """Entry of the staff processing queue"""
    loan: Loan
    borrower_name: str


class LoanWorkflow:
    """
    Manages loan applications and their one-time approval or rejection
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        transaction_engine: TransactionEngine,
        user_directory: UserDirectory,
        audit_trail: AuditTrail,
        locks: KeyedLockManager
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.transaction_engine = transaction_engine
        self.user_directory = user_directory
        self.audit_trail = audit_trail
        self.locks = locks
        self.loans_table = "loans"
        self.logger = get_logger("svbank.loans")

    def apply_for_loan(self, application: LoanApplication) -> Loan:
        """
        Record a loan application in the pending state

        Raises:
            NotFound: If the borrower does not exist
        """
        with self.storage.translate_errors():
            self.user_directory.require_user(application.borrower_id)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=application.borrower_id,
            loan_type=application.loan_type,
            principal=application.principal,
            interest_rate=application.interest_rate,
            monthly_payment=calculate_monthly_payment(
                application.principal, application.interest_rate, application.term_months
            ),
            duration_months=application.duration_months,
            due_date=application.due_date
        )

        with self.storage.atomic():
            self._save_loan(loan)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_APPLIED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=loan.borrower_id,
                metadata={
                    "loan_type": loan.loan_type,
                    "principal": loan.principal.amount,
                    "interest_rate": loan.interest_rate,
                    "monthly_payment": loan.monthly_payment.amount
                }
            )

        log_action(self.logger, "info", "Loan application received",
                   user_id=loan.borrower_id, action="apply_for_loan",
                   resource=resource_name("loan", loan.id),
                   extra={"principal": loan.principal.to_string(), "loan_type": loan.loan_type})
        return loan

    def process_loan(
        self,
        loan_id: str,
        staff_id: str,
        action: Union[LoanAction, str]
    ) -> List[PendingLoan]:
        """
        Approve or reject a pending loan

        Approval credits the principal to the borrower's primary account and
        appends a loan_disbursement entry in the same atomic unit as the
        status change.

        Returns:
            The remaining pending queue

        Raises:
            InvalidAction: If action is not approve or reject
            NotFound: If the loan, or on approval the borrower's account, is missing
            AlreadyProcessed: If the loan is no longer pending
        """
        try:
            action = self._parse_action(action)

            with self.storage.translate_errors():
                loan = self.require_loan(loan_id)
                if not loan.is_pending:
                    raise AlreadyProcessed(f"Loan has already been {loan.status.value}")

                keys = [loan_key(loan_id)]
                account = None
                if action == LoanAction.APPROVE:
                    account = self.account_manager.get_primary_account(loan.borrower_id)
                    if account.currency != loan.principal.currency:
                        raise InvalidLoanTerms("Loan currency does not match the borrower's account")
                    keys.append(account_key(account.id))

            with self.locks.hold(*keys), self.storage.atomic():
                # Re-read under the lock: a concurrent call may have processed it
                loan = self.require_loan(loan_id)
                if not loan.is_pending:
                    raise AlreadyProcessed(f"Loan has already been {loan.status.value}")

                now = datetime.now(timezone.utc)
                loan.processed_by = staff_id
                loan.processed_at = now
                loan.updated_at = now

                if action == LoanAction.APPROVE:
                    entry = self.transaction_engine.credit(
                        account_id=account.id,
                        amount=loan.principal,
                        kind=TransactionKind.LOAN_DISBURSEMENT,
                        description=f"{loan.loan_type.capitalize()} loan disbursement"
                    )
                    loan.status = LoanStatus.APPROVED
                    loan.disbursement_account_id = account.id
                    loan.disbursement_transaction_id = entry.id
                    event_type = AuditEventType.LOAN_APPROVED
                else:
                    loan.status = LoanStatus.REJECTED
                    event_type = AuditEventType.LOAN_REJECTED

                self._save_loan(loan)
                self.audit_trail.log_event(
                    event_type=event_type,
                    entity_type="loan",
                    entity_id=loan.id,
                    user_id=staff_id,
                    metadata={
                        "principal": loan.principal.amount,
                        "disbursement_account_id": loan.disbursement_account_id
                    }
                )
        except BankingError as e:
            log_rejection(self.logger, "process_loan", e, user_id=staff_id,
                          resource=resource_name("loan", loan_id))
            raise

        log_action(self.logger, "info", f"Loan {loan.status.value}",
                   user_id=staff_id, action="process_loan",
                   resource=resource_name("loan", loan_id),
                   extra={"principal": loan.principal.to_string()})
        return self.list_pending()

    def list_pending(self) -> List[PendingLoan]:
        """Pending loans, oldest first, with borrower display names"""
        with self.storage.translate_errors():
            loans = [
                self._loan_from_dict(data)
                for data in self.storage.find(self.loans_table, {"status": LoanStatus.PENDING.value})
            ]
            # Stable sort: equal timestamps keep insertion order
            loans.sort(key=lambda loan: loan.created_at)
            borrowers = self.user_directory.get_users([loan.borrower_id for loan in loans])

        return [
            PendingLoan(
                loan=loan,
                borrower_name=borrowers[loan.borrower_id].name if loan.borrower_id in borrowers else ""
            )
            for loan in loans
        ]

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return self._loan_from_dict(loan_dict)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFound("Loan not found")
        return loan

    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        """All loans of a borrower, newest first"""
        with self.storage.translate_errors():
            loans = [
                self._loan_from_dict(data)
                for data in self.storage.find(self.loans_table, {"borrower_id": borrower_id})
            ]
        loans.sort(key=lambda loan: loan.created_at)
        loans.reverse()
        return loans

    def _parse_action(self, action: Union[LoanAction, str]) -> LoanAction:
        if isinstance(action, LoanAction):
            return action
        try:
            return LoanAction(str(action).strip().lower())
        except ValueError:
            raise InvalidAction("Action must be 'approve' or 'reject'")

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def _loan_to_dict(self, loan: Loan) -> Dict:
        return {
            'id': loan.id,
            'created_at': loan.created_at.isoformat(),
            'updated_at': loan.updated_at.isoformat(),
            'borrower_id': loan.borrower_id,
            'loan_type': loan.loan_type,
            'principal': str(loan.principal.amount),
            'currency': loan.principal.currency.code,
            'interest_rate': str(loan.interest_rate),
            'monthly_payment': str(loan.monthly_payment.amount),
            'duration_months': loan.duration_months,
            'due_date': loan.due_date.isoformat() if loan.due_date else None,
            'status': loan.status.value,
            'processed_by': loan.processed_by,
            'processed_at': loan.processed_at.isoformat() if loan.processed_at else None,
            'disbursement_account_id': loan.disbursement_account_id,
            'disbursement_transaction_id': loan.disbursement_transaction_id
        }

    def _loan_from_dict(self, data: Dict) -> Loan:
        currency = Currency[data['currency']]
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            loan_type=data['loan_type'],
            principal=Money(Decimal(data['principal']), currency),
            interest_rate=Decimal(data['interest_rate']),
            monthly_payment=Money(Decimal(data['monthly_payment']), currency),
            duration_months=data.get('duration_months'),
            due_date=date.fromisoformat(data['due_date']) if data.get('due_date') else None,
            status=LoanStatus(data['status']),
            processed_by=data.get('processed_by'),
            processed_at=datetime.fromisoformat(data['processed_at']) if data.get('processed_at') else None,
            disbursement_account_id=data.get('disbursement_account_id'),
            disbursement_transaction_id=data.get('disbursement_transaction_id')
        )
