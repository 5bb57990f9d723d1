"""
Tests for role-scoped projections and status display mapping
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from peer_lending.currency import Currency, Money
from peer_lending.errors import NotFound, Unauthorized
from peer_lending.loans import LoanStatus
from peer_lending.queries import status_color, status_label
from peer_lending.users import UserRole


def due_in(days: int):
    return datetime.now(timezone.utc).date() + timedelta(days=days)


class TestStatusDisplay:
    
    def test_every_status_has_label_and_color(self):
        for status in LoanStatus:
            assert status_label(status)
            assert status_color(status) in {"yellow", "blue", "green", "gray", "red"}
    
    def test_known_labels(self):
        assert status_label(LoanStatus.APPROVED_PENDING_CONFIRMATION) == "Disbursement Sent - Waiting Confirmation"
        assert status_label(LoanStatus.REPAYMENT_SUBMITTED) == "Repayment Review"
        assert status_color(LoanStatus.ACTIVE) == "green"
        assert status_color(LoanStatus.DEFAULTED) == "red"


class TestLoansFor:
    """Test role scoping of loan lists"""
    
    @pytest.mark.asyncio
    async def test_scoped_by_role_newest_first(self, system, connected, register_user):
        loaner, loanee = connected
        other_loanee = await register_user("Other", "other@test.com", UserRole.LOANEE)
        await system.network.connect(loaner.id, other_loanee.id)
        admin = await system.user_manager.create_user("Admin", "admin@test.com", UserRole.ADMIN)
        
        first = await system.loan_manager.request_loan(loanee.id, loaner.id, "100", due_in(5))
        second = await system.loan_manager.request_loan(loanee.id, loaner.id, "200", due_in(5))
        third = await system.loan_manager.request_loan(other_loanee.id, loaner.id, "300", due_in(5))
        
        assert [l.id for l in await system.queries.loans_for(loanee.id)] == [second.id, first.id]
        assert [l.id for l in await system.queries.loans_for(other_loanee.id)] == [third.id]
        assert [l.id for l in await system.queries.loans_for(loaner.id, UserRole.LOANER)] == [
            third.id, second.id, first.id
        ]
        assert len(await system.queries.loans_for(admin.id)) == 3
    
    @pytest.mark.asyncio
    async def test_role_mismatch(self, system, loanee):
        with pytest.raises(Unauthorized):
            await system.queries.loans_for(loanee.id, UserRole.ADMIN)
    
    @pytest.mark.asyncio
    async def test_missing_user(self, system):
        with pytest.raises(NotFound):
            await system.queries.loans_for("ghost")


class TestNetworkProjections:
    
    @pytest.mark.asyncio
    async def test_available_lenders(self, system, connected, register_user):
        loaner, loanee = connected
        paused = await register_user("Paused Lender", "paused@test.com", UserRole.LOANER)
        await system.network.connect(paused.id, loanee.id)
        await system.user_manager.set_accepting_loans(paused.id, False)
        
        members = await system.queries.network_members_for(loanee.id)
        lenders = await system.queries.available_lenders_for(loanee.id)
        
        assert {m.id for m in members} == {loaner.id, paused.id}
        assert [l.id for l in lenders] == [loaner.id]


class TestDashboardSummary:
    
    @pytest.mark.asyncio
    async def test_summary_counts(self, system, connected):
        loaner, loanee = connected
        manager = system.loan_manager
        
        active = await manager.request_loan(loanee.id, loaner.id, "1000", due_in(5))
        await manager.approve(active.id, loaner.id, "p1")
        await manager.confirm_receipt(active.id, loanee.id)
        
        review = await manager.request_loan(loanee.id, loaner.id, "500", due_in(5))
        await manager.approve(review.id, loaner.id, "p1")
        await manager.confirm_receipt(review.id, loanee.id)
        await manager.submit_repayment(review.id, loanee.id)
        
        cedi = await manager.request_loan(loanee.id, loaner.id, "50", due_in(5), currency=Currency.GHS)
        await manager.approve(cedi.id, loaner.id, "p1")
        await manager.confirm_receipt(cedi.id, loanee.id)
        
        awaiting = await manager.request_loan(loanee.id, loaner.id, "700", due_in(5))
        await manager.approve(awaiting.id, loaner.id, "p1")
        await manager.request_loan(loanee.id, loaner.id, "900", due_in(5))
        
        summary = await system.queries.dashboard_summary(loaner.id)
        
        assert summary.active_count == 3
        assert summary.active_value["NGN"] == Money(Decimal('1500'), Currency.NGN)
        assert summary.active_value["GHS"] == Money(Decimal('50'), Currency.GHS)
        assert summary.pending_requests == 1
        assert summary.pending_confirmations == 1
        assert summary.to_dict()["active_value"]["NGN"] == {"amount": "1500.00", "currency": "NGN"}
