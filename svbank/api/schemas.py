"""
Pydantic schemas for API requests and responses

Amounts travel as decimal strings. JSON numbers are accepted on input and
converted through their string form before validation in the engine.
"""

from datetime import date
from typing import Annotated, Any, Dict, List, Optional
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from ..currency import Money
from ..ledger import Transaction
from ..loans import Loan, PendingLoan
from ..transactions import TransactionResult, TransactionPage, AccountSummary


def _number_as_string(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


DecimalString = Annotated[str, BeforeValidator(_number_as_string)]


class TransactionRequest(BaseModel):
    type: str = Field(..., description="deposit or withdraw")
    amount: DecimalString = Field(..., description="Decimal amount")


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recipient_account_number: str = Field(..., alias="recipientAccountNumber")
    amount: DecimalString = Field(..., description="Decimal amount")


class LoanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loan_type: str = Field(..., alias="loanType", description="e.g. personal, home, education")
    principal_amount: DecimalString = Field(..., alias="principalAmount")
    interest_rate: DecimalString = Field(..., alias="interestRate", description="Annual rate in percent")
    duration_months: Optional[int] = Field(None, alias="durationMonths")
    due_date: Optional[date] = Field(None, alias="dueDate")


class ProcessLoanRequest(BaseModel):
    action: str = Field(..., description="approve or reject")


def money_value(money: Money) -> str:
    return str(money.amount)


def transaction_response(entry: Transaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "type": entry.kind.value,
        "amount": money_value(entry.amount),
        "balanceAfter": money_value(entry.balance_after),
        "description": entry.description,
        "date": entry.created_at.isoformat()
    }


def transactions_response(entries: List[Transaction]) -> List[Dict[str, Any]]:
    return [transaction_response(entry) for entry in entries]


def result_response(result: TransactionResult) -> Dict[str, Any]:
    return {
        "success": True,
        "balance": money_value(result.balance),
        "transactions": transactions_response(result.transactions)
    }


def page_response(page: TransactionPage) -> Dict[str, Any]:
    return {
        "transactions": transactions_response(page.transactions),
        "totalCount": page.total_count,
        "page": page.page,
        "limit": page.limit
    }


def profile_response(summary: AccountSummary) -> Dict[str, Any]:
    return {
        "name": summary.owner_name,
        "accountNumber": summary.account_number,
        "accountType": summary.account_type,
        "balance": money_value(summary.balance),
        "currency": summary.balance.currency.code,
        "transactions": transactions_response(summary.transactions)
    }


def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "loanType": loan.loan_type,
        "principalAmount": money_value(loan.principal),
        "interestRate": str(loan.interest_rate),
        "monthlyPayment": money_value(loan.monthly_payment),
        "durationMonths": loan.duration_months,
        "dueDate": loan.due_date.isoformat() if loan.due_date else None,
        "status": loan.status.value,
        "createdAt": loan.created_at.isoformat()
    }


def pending_loans_response(pending: List[PendingLoan]) -> Dict[str, Any]:
    loans = []
    for item in pending:
        entry = loan_response(item.loan)
        entry["userName"] = item.borrower_name
        loans.append(entry)
    return {"pendingLoans": loans}
