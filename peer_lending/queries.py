"""
Query and Projection Module

Role-scoped read views over loans and network members, plus the status
display mapping used by every presentation layer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, assert_never

from .currency import Money
from .loans import Loan, LoanManager, LoanStatus
from .errors import Unauthorized
from .network import NetworkGraph
from .users import User, UserManager, UserRole


def status_label(status: LoanStatus) -> str:
    """Human readable status text"""
    match status:
        case LoanStatus.REQUESTED:
            return "Requested"
        case LoanStatus.APPROVED_PENDING_CONFIRMATION:
            return "Disbursement Sent - Waiting Confirmation"
        case LoanStatus.ACTIVE:
            return "Active"
        case LoanStatus.REPAYMENT_SUBMITTED:
            return "Repayment Review"
        case LoanStatus.CLEARED:
            return "Cleared"
        case LoanStatus.RESCINDED:
            return "Rescinded"
        case LoanStatus.DEFAULTED:
            return "Defaulted"
        case _:
            assert_never(status)


def status_color(status: LoanStatus) -> str:
    """Badge color name for a status"""
    match status:
        case LoanStatus.REQUESTED:
            return "yellow"
        case LoanStatus.APPROVED_PENDING_CONFIRMATION | LoanStatus.REPAYMENT_SUBMITTED:
            return "blue"
        case LoanStatus.ACTIVE:
            return "green"
        case LoanStatus.CLEARED:
            return "gray"
        case LoanStatus.RESCINDED | LoanStatus.DEFAULTED:
            return "red"
        case _:
            assert_never(status)


@dataclass
class DashboardSummary:
    """Headline figures for a user's dashboard"""
    user_id: str
    role: UserRole
    active_value: Dict[str, Money] = field(default_factory=dict)   # by currency code
    active_count: int = 0
    pending_requests: int = 0
    pending_confirmations: int = 0
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "active_value": {code: m.to_dict() for code, m in self.active_value.items()},
            "active_count": self.active_count,
            "pending_requests": self.pending_requests,
            "pending_confirmations": self.pending_confirmations
        }


class LoanQueries:
    """
    Read-only projections scoped by the caller's role
    """
    
    def __init__(self, user_manager: UserManager, loan_manager: LoanManager,
                 network: NetworkGraph):
        self.user_manager = user_manager
        self.loan_manager = loan_manager
        self.network = network
    
    async def loans_for(self, user_id: str, role: Optional[UserRole] = None) -> List[Loan]:
        """
        Loans visible to a user, newest request first
        
        Admins see every loan, Loaners the loans they were asked for, Loanees
        the loans they requested.
        """
        user = await self.user_manager.require_user(user_id)
        if role is not None and role != user.role:
            raise Unauthorized(f"User {user_id} does not hold role {role.value}")
        
        match user.role:
            case UserRole.ADMIN:
                loans = await self.loan_manager.list_loans()
            case UserRole.LOANER:
                loans = await self.loan_manager.list_loans({"loaner_id": user_id})
            case UserRole.LOANEE:
                loans = await self.loan_manager.list_loans({"loanee_id": user_id})
            case _:
                assert_never(user.role)
        
        loans.sort(key=lambda loan: loan.request_date, reverse=True)
        return loans
    
    async def network_members_for(self, user_id: str) -> List[User]:
        return await self.network.members_of(user_id)
    
    async def available_lenders_for(self, loanee_id: str) -> List[User]:
        """Networked Loaners currently accepting requests"""
        return [
            member for member in await self.network.members_of(loanee_id)
            if member.is_loaner and member.is_accepting_loans
        ]
    
    async def dashboard_summary(self, user_id: str) -> DashboardSummary:
        user = await self.user_manager.require_user(user_id)
        summary = DashboardSummary(user_id=user.id, role=user.role)
        
        for loan in await self.loans_for(user_id):
            if loan.status in (LoanStatus.ACTIVE, LoanStatus.REPAYMENT_SUBMITTED):
                code = loan.currency.code
                total = summary.active_value.get(code, Money.zero(loan.currency))
                summary.active_value[code] = total + loan.amount
                summary.active_count += 1
            elif loan.status == LoanStatus.REQUESTED:
                summary.pending_requests += 1
            elif loan.status == LoanStatus.APPROVED_PENDING_CONFIRMATION:
                summary.pending_confirmations += 1
        
        return summary
