"""
Profile endpoints for the signed-in user
"""

from fastapi import APIRouter, Depends

from .deps import get_current_user, get_lending_system
from .schemas import UpdateProfileRequest, AcceptingLoansRequest, user_response
from ..currency import Currency
from ..system import LendingSystem
from ..users import User


router = APIRouter()


@router.patch("/me")
async def update_profile(
    request: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    updated = await system.user_manager.update_profile(
        user.id,
        name=request.name,
        phone=request.phone,
        currency=Currency.from_code(request.currency) if request.currency else None,
        bank_account=request.bank_account.to_bank_account() if request.bank_account else None
    )
    return user_response(updated)


@router.put("/me/accepting-loans")
async def set_accepting_loans(
    request: AcceptingLoansRequest,
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Pause or resume new loan requests (Loaners only)"""
    updated = await system.user_manager.set_accepting_loans(user.id, request.accepting)
    return user_response(updated)
