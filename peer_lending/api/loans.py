"""
Loan lifecycle endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import get_current_user, get_lending_system
from .schemas import (
    CreateLoanRequest, ApproveLoanRequest, RepaymentRequest,
    loan_response
)
from ..currency import Currency
from ..errors import Unauthorized
from ..system import LendingSystem
from ..users import User


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def request_loan(
    request: CreateLoanRequest,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Request a loan from a networked Loaner"""
    loan = await system.loan_manager.request_loan(
        loanee_id=user.id,
        loaner_id=request.loaner_id,
        amount=request.amount,
        due_date=request.due_date,
        currency=Currency.from_code(request.currency) if request.currency else None,
        notes=request.notes
    )
    return loan_response(loan)


@router.get("")
async def list_loans(
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    loans = await system.queries.loans_for(user.id)
    return {"loans": [loan_response(loan) for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = await system.loan_manager.require_loan(loan_id)
    if not user.is_admin and user.id not in (loan.loaner_id, loan.loanee_id):
        raise Unauthorized("Not a party to this loan")
    return loan_response(loan)


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    request: ApproveLoanRequest,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Attach proof of disbursement and set the interest rate"""
    loan = await system.loan_manager.approve(
        loan_id, user.id, request.proof_of_disbursement, request.interest_rate
    )
    return loan_response(loan)


@router.post("/{loan_id}/confirm-receipt")
async def confirm_receipt(
    loan_id: str,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = await system.loan_manager.confirm_receipt(loan_id, user.id)
    return loan_response(loan)


@router.post("/{loan_id}/repayment")
async def submit_repayment(
    loan_id: str,
    request: Optional[RepaymentRequest] = None,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = await system.loan_manager.submit_repayment(
        loan_id, user.id, request.proof_of_repayment if request else None
    )
    return loan_response(loan)


@router.post("/{loan_id}/clear")
async def clear_loan(
    loan_id: str,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = await system.loan_manager.clear(loan_id, user.id)
    return loan_response(loan)


@router.post("/{loan_id}/rescind")
async def rescind_loan(
    loan_id: str,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = await system.loan_manager.rescind(loan_id, user.id)
    return loan_response(loan)


@router.post("/{loan_id}/default")
async def default_loan(
    loan_id: str,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Mark a loan past its due date as defaulted (the loan's Loaner only)"""
    loan = await system.loan_manager.mark_defaulted(loan_id, user.id)
    return loan_response(loan)
