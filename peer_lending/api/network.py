"""
Network endpoints
"""

from fastapi import APIRouter, Depends

from .deps import get_current_user, get_lending_system
from .schemas import user_response
from ..system import LendingSystem
from ..users import User


router = APIRouter()


@router.get("/members")
async def list_members(
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    members = await system.queries.network_members_for(user.id)
    return {"members": [user_response(m) for m in members]}


@router.get("/lenders")
async def list_available_lenders(
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    """Networked Loaners that currently accept requests"""
    lenders = await system.queries.available_lenders_for(user.id)
    return {"lenders": [user_response(m) for m in lenders]}
