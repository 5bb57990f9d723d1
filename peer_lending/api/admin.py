"""
Administrative endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .deps import get_lending_system, require_admin
from .schemas import DefaultOverdueRequest
from ..system import LendingSystem
from ..users import User


router = APIRouter()


@router.post("/loans/default-overdue")
async def default_overdue_loans(
    request: Optional[DefaultOverdueRequest] = None,
    admin: User = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    """Default every open loan past its due date"""
    as_of = request.as_of if request else None
    loans = await system.loan_manager.default_overdue_loans(as_of)
    return {
        "count": len(loans),
        "loan_ids": [loan.id for loan in loans]
    }


@router.get("/audit/integrity")
async def verify_audit_integrity(
    admin: User = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    return await system.audit_trail.verify_integrity()
