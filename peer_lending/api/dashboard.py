"""
Dashboard endpoint
"""

from fastapi import APIRouter, Depends

from .deps import get_current_user, get_lending_system
from ..system import LendingSystem
from ..users import User


router = APIRouter()


@router.get("")
async def get_dashboard(
    user: User = Depends(get_current_user),
    system: LendingSystem = Depends(get_lending_system)
):
    summary = await system.queries.dashboard_summary(user.id)
    return summary.to_dict()
