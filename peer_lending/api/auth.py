"""
Registration and login endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import get_current_user, get_lending_system, issue_token
from .schemas import RegisterRequest, LoginRequest, user_response
from ..auth import RegistrationProfile
from ..currency import Currency
from ..system import LendingSystem
from ..users import User, UserRole


router = APIRouter()


def _token_response(user: User, system: LendingSystem) -> dict:
    return {
        "access_token": issue_token(user, system.config),
        "token_type": "bearer",
        "user": user_response(user)
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create an account and sign it in"""
    user = await system.auth.register(RegistrationProfile(
        name=request.name,
        email=request.email,
        password=request.password,
        role=UserRole(request.role),
        phone=request.phone,
        currency=Currency.from_code(request.currency) if request.currency else None,
        bank_account=request.bank_account.to_bank_account() if request.bank_account else None
    ))
    return _token_response(user, system)


@router.post("/login")
async def login(
    request: LoginRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    user = await system.auth.authenticate(request.email, request.password)
    return _token_response(user, system)


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return user_response(user)
