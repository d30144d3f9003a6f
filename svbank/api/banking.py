"""
Customer account endpoints: profile, deposit/withdraw, transfer and history
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from .auth import BankingSystem, Caller, get_banking_system, get_current_caller
from .schemas import (
    TransactionRequest, TransferRequest,
    result_response, page_response, profile_response
)
from ..errors import InvalidAction


router = APIRouter()


def primary_account_id(system: BankingSystem, caller: Caller) -> str:
    with system.storage.translate_errors():
        return system.account_manager.get_primary_account(caller.user_id).id


@router.get("/profile")
def get_profile(
    caller: Caller = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Account summary with the most recent transactions"""
    summary = system.transaction_engine.get_account_summary(primary_account_id(system, caller))
    return profile_response(summary)


@router.post("/transaction")
def post_transaction(
    request: TransactionRequest,
    caller: Caller = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit to or withdraw from the caller's account"""
    engine = system.transaction_engine
    if request.type == "deposit":
        operation = engine.deposit
    elif request.type == "withdraw":
        operation = engine.withdraw
    else:
        raise InvalidAction("Transaction type must be 'deposit' or 'withdraw'")

    result = operation(primary_account_id(system, caller), request.amount)
    return result_response(result)


@router.post("/transfer")
def post_transfer(
    request: TransferRequest,
    caller: Caller = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfer to another account by its account number"""
    result = system.transaction_engine.transfer(
        primary_account_id(system, caller),
        request.recipient_account_number,
        request.amount
    )
    return result_response(result)


@router.get("/transactions")
def get_transactions(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    caller: Caller = Depends(get_current_caller),
    system: BankingSystem = Depends(get_banking_system)
):
    """Paged transaction history, newest first"""
    result = system.transaction_engine.list_transactions(
        primary_account_id(system, caller), page=page, page_size=limit
    )
    return page_response(result)
