"""
Loan endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, Caller, get_banking_system, get_current_caller, require_staff
from .schemas import LoanRequest, ProcessLoanRequest, loan_response, pending_loans_response
from ..loans import LoanApplication


router = APIRouter()
staff_router = APIRouter()


@router.post("/loans", status_code=status.HTTP_201_CREATED)
def apply_for_loan(
    request: LoanRequest,
    caller: Caller = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Submit a loan application for staff review"""
    application = LoanApplication(
        borrower_id=caller.user_id,
        loan_type=request.loan_type,
        principal=request.principal_amount,
        interest_rate=request.interest_rate,
        duration_months=request.duration_months,
        due_date=request.due_date,
        currency=system.currency
    )
    loan = system.loan_workflow.apply_for_loan(application)

    return {
        "loanId": loan.id,
        "monthlyPayment": str(loan.monthly_payment.amount),
        "status": loan.status.value,
        "message": "Loan application submitted successfully"
    }


@router.get("/loans")
def list_my_loans(
    caller: Caller = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """The caller's loans, newest first"""
    loans = system.loan_workflow.get_borrower_loans(caller.user_id)
    return {"loans": [loan_response(loan) for loan in loans]}


@staff_router.get("/loans/pending")
def list_pending_loans(
    staff: Caller = Depends(require_staff),
    system: BankingSystem = Depends(get_banking_system)
):
    """Pending applications, oldest first"""
    return pending_loans_response(system.loan_workflow.list_pending())


@staff_router.post("/loans/{loan_id}/process")
def process_loan(
    loan_id: str,
    request: ProcessLoanRequest,
    staff: Caller = Depends(require_staff),
    system: BankingSystem = Depends(get_banking_system)
):
    """Approve or reject a pending loan"""
    pending = system.loan_workflow.process_loan(loan_id, staff.user_id, request.action)
    return pending_loans_response(pending)
