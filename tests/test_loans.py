"""
Test suite for the loan lifecycle state machine

Covers request guards, every transition with its party and source-state
checks, defaulting, conditional writes and the audit/event side effects.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta, timezone

from peer_lending.audit import AuditEventType
from peer_lending.currency import Currency, Money
from peer_lending.errors import (
    InvalidAmount, InvalidDueDate, InvalidTransition, LenderUnavailable,
    MissingProof, NotFound, Unauthorized
)
from peer_lending.events import DomainEvent
from peer_lending.loans import (
    Approve, Clear, ConfirmReceipt, LoanStatus, MarkDefaulted, Rescind, SubmitRepayment
)
from peer_lending.users import UserRole


def due_in(days: int) -> date:
    return datetime.now(timezone.utc).date() + timedelta(days=days)


@pytest.fixture
def request_loan(system, connected):
    """Factory for a REQUESTED loan between the connected pair"""
    loaner, loanee = connected
    
    async def _request(amount="5000", days=7, **kwargs):
        return await system.loan_manager.request_loan(
            loanee.id, loaner.id, amount, due_in(days), **kwargs
        )
    return _request


async def activate(system, loan, loaner, loanee):
    await system.loan_manager.approve(loan.id, loaner.id, "p1", Decimal('10'))
    return await system.loan_manager.confirm_receipt(loan.id, loanee.id)


class TestRequestLoan:
    """Test the guards on loan creation"""
    
    @pytest.mark.asyncio
    async def test_request_creates_requested_loan(self, system, connected, request_loan):
        loaner, loanee = connected
        
        loan = await request_loan(notes="School fees")
        
        assert loan.status == LoanStatus.REQUESTED
        assert loan.amount == Money(Decimal('5000'), Currency.NGN)
        assert loan.interest_rate == Decimal('0')
        assert loan.loaner_name == "John Lender"
        assert loan.loanee_name == "Jane Borrower"
        assert loan.request_date.date() == due_in(0)
        assert loan.notes == "School fees"
        
        stored = await system.loan_manager.require_loan(loan.id)
        assert stored.status == LoanStatus.REQUESTED
        assert stored.due_date == due_in(7)
    
    @pytest.mark.asyncio
    async def test_currency_defaults_to_loanee_currency(self, system, connected, request_loan):
        loaner, loanee = connected
        await system.user_manager.update_profile(loanee.id, currency=Currency.GHS)
        
        assert (await request_loan()).currency == Currency.GHS
        assert (await request_loan(currency=Currency.NGN)).currency == Currency.NGN
    
    @pytest.mark.asyncio
    async def test_not_networked_is_unauthorized(self, system, loaner, loanee):
        with pytest.raises(Unauthorized):
            await system.loan_manager.request_loan(loanee.id, loaner.id, "5000", due_in(7))
    
    @pytest.mark.asyncio
    async def test_unauthorized_checked_before_amount(self, system, loaner, loanee):
        with pytest.raises(Unauthorized):
            await system.loan_manager.request_loan(loanee.id, loaner.id, "-1", due_in(-1))
    
    @pytest.mark.asyncio
    async def test_roles_must_match(self, system, connected):
        loaner, loanee = connected
        with pytest.raises(Unauthorized):
            await system.loan_manager.request_loan(loaner.id, loanee.id, "5000", due_in(7))
    
    @pytest.mark.asyncio
    async def test_missing_users(self, system, loanee):
        with pytest.raises(NotFound):
            await system.loan_manager.request_loan(loanee.id, "ghost", "5000", due_in(7))
    
    @pytest.mark.asyncio
    async def test_lender_unavailable(self, system, connected, request_loan):
        loaner, loanee = connected
        await system.user_manager.set_accepting_loans(loaner.id, False)
        
        with pytest.raises(LenderUnavailable):
            await request_loan()
        
        assert await system.loan_manager.list_loans() == []
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-100", "abc", "0.001", "NaN", "Infinity", "-Infinity", "sNaN"])
    async def test_invalid_amount(self, request_loan, amount):
        with pytest.raises(InvalidAmount):
            await request_loan(amount=amount)
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, -3])
    async def test_invalid_due_date(self, request_loan, days):
        with pytest.raises(InvalidDueDate):
            await request_loan(days=days)


class TestLifecycle:
    """Test the happy path and every transition guard"""
    
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, system, connected, request_loan):
        """Request, approve, confirm, repay, clear"""
        loaner, loanee = connected
        loan = await request_loan()
        
        loan = await system.loan_manager.approve(loan.id, loaner.id, "p1", Decimal('10'))
        assert loan.status == LoanStatus.APPROVED_PENDING_CONFIRMATION
        assert loan.approval_date is not None
        assert loan.interest_rate == Decimal('10')
        
        loan = await system.loan_manager.confirm_receipt(loan.id, loanee.id)
        assert loan.status == LoanStatus.ACTIVE
        
        loan = await system.loan_manager.submit_repayment(loan.id, loanee.id, "p2")
        assert loan.status == LoanStatus.REPAYMENT_SUBMITTED
        
        loan = await system.loan_manager.clear(loan.id, loaner.id)
        assert loan.status == LoanStatus.CLEARED
        assert loan.cleared_date is not None
        
        loans = await system.loan_manager.list_loans()
        assert len(loans) == 1
        stored = loans[0]
        assert stored.status == LoanStatus.CLEARED
        assert stored.is_terminal
        assert stored.proof_of_disbursement == "p1"
        assert stored.proof_of_repayment == "p2"
        assert [h["status"] for h in stored.history] == [
            "REQUESTED", "APPROVED_PENDING_CONFIRMATION", "ACTIVE",
            "REPAYMENT_SUBMITTED", "CLEARED"
        ]
    
    @pytest.mark.asyncio
    async def test_approve_by_loanee_is_unauthorized(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(Unauthorized):
            await system.loan_manager.approve(loan.id, loanee.id, "p1", 10)
        
        assert (await system.loan_manager.require_loan(loan.id)).status == LoanStatus.REQUESTED
    
    @pytest.mark.asyncio
    async def test_approve_requires_proof(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(MissingProof):
            await system.loan_manager.approve(loan.id, loaner.id, None)
        with pytest.raises(MissingProof):
            await system.loan_manager.approve(loan.id, loaner.id, "")
        
        assert (await system.loan_manager.require_loan(loan.id)).status == LoanStatus.REQUESTED
    
    @pytest.mark.asyncio
    async def test_approve_rejects_negative_rate(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(InvalidAmount):
            await system.loan_manager.approve(loan.id, loaner.id, "p1", "-5")
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate", ["NaN", "Infinity", Decimal("NaN")])
    async def test_approve_rejects_non_finite_rate(self, system, connected, request_loan, rate):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(InvalidAmount):
            await system.loan_manager.approve(loan.id, loaner.id, "p1", rate)
        with pytest.raises(InvalidAmount):
            await system.loan_manager.apply(loan.id, loaner.id, Approve("p1", Decimal(str(rate))))
        
        assert (await system.loan_manager.require_loan(loan.id)).status == LoanStatus.REQUESTED
    
    @pytest.mark.asyncio
    async def test_approve_twice(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        await system.loan_manager.approve(loan.id, loaner.id, "p1")
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.approve(loan.id, loaner.id, "p1")
    
    @pytest.mark.asyncio
    async def test_confirm_receipt_guards(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.confirm_receipt(loan.id, loanee.id)
        
        await system.loan_manager.approve(loan.id, loaner.id, "p1")
        with pytest.raises(Unauthorized):
            await system.loan_manager.confirm_receipt(loan.id, loaner.id)
    
    @pytest.mark.asyncio
    async def test_repayment_proof_optional(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(), loaner, loanee)
        
        loan = await system.loan_manager.submit_repayment(loan.id, loanee.id)
        
        assert loan.status == LoanStatus.REPAYMENT_SUBMITTED
        assert loan.proof_of_repayment is None
    
    @pytest.mark.asyncio
    async def test_clear_directly_from_active(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(), loaner, loanee)
        
        loan = await system.loan_manager.clear(loan.id, loaner.id)
        
        assert loan.status == LoanStatus.CLEARED
    
    @pytest.mark.asyncio
    async def test_clear_guards(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.clear(loan.id, loaner.id)
        
        await activate(system, loan, loaner, loanee)
        with pytest.raises(Unauthorized):
            await system.loan_manager.clear(loan.id, loanee.id)
    
    @pytest.mark.asyncio
    async def test_rescind(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        
        with pytest.raises(Unauthorized):
            await system.loan_manager.rescind(loan.id, loanee.id)
        
        loan = await system.loan_manager.rescind(loan.id, loaner.id)
        assert loan.status == LoanStatus.RESCINDED
    
    @pytest.mark.asyncio
    async def test_rescind_after_approval(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        await system.loan_manager.approve(loan.id, loaner.id, "p1")
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.rescind(loan.id, loaner.id)
    
    @pytest.mark.asyncio
    async def test_terminal_states_have_no_exits(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await request_loan()
        await system.loan_manager.rescind(loan.id, loaner.id)
        
        loaner_commands = [Approve("p1"), Rescind(), Clear(), MarkDefaulted()]
        loanee_commands = [ConfirmReceipt(), SubmitRepayment("p2")]
        
        for command in loaner_commands:
            with pytest.raises(InvalidTransition):
                await system.loan_manager.apply(loan.id, loaner.id, command)
        for command in loanee_commands:
            with pytest.raises(InvalidTransition):
                await system.loan_manager.apply(loan.id, loanee.id, command)
        
        assert (await system.loan_manager.require_loan(loan.id)).status == LoanStatus.RESCINDED
    
    @pytest.mark.asyncio
    async def test_missing_loan(self, system, loaner):
        with pytest.raises(NotFound):
            await system.loan_manager.approve("missing", loaner.id, "p1")
    
    @pytest.mark.asyncio
    async def test_outsider_is_unauthorized(self, system, request_loan, register_user):
        outsider = await register_user("Other Lender", "other@test.com", UserRole.LOANER)
        loan = await request_loan()
        
        with pytest.raises(Unauthorized):
            await system.loan_manager.approve(loan.id, outsider.id, "p1")


def travel_to(monkeypatch, day: date) -> None:
    """Pretend today (UTC) is ``day`` for overdue checks"""
    monkeypatch.setattr("peer_lending.loans._today", lambda: day)


class TestDefaulting:
    """Test DEFAULTED transitions"""
    
    @pytest.mark.asyncio
    async def test_not_overdue(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(days=7), loaner, loanee)
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.mark_defaulted(loan.id, loaner.id)
    
    @pytest.mark.asyncio
    async def test_loaner_marks_overdue_loan(self, system, connected, request_loan, monkeypatch):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(days=7), loaner, loanee)
        travel_to(monkeypatch, due_in(8))
        
        loan = await system.loan_manager.mark_defaulted(loan.id, loaner.id)
        
        assert loan.status == LoanStatus.DEFAULTED
        assert loan.defaulted_date is not None
    
    @pytest.mark.asyncio
    async def test_due_date_itself_is_not_overdue(self, system, connected, request_loan, monkeypatch):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(days=7), loaner, loanee)
        travel_to(monkeypatch, due_in(7))
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.mark_defaulted(loan.id, loaner.id)
    
    @pytest.mark.asyncio
    async def test_loanee_cannot_default(self, system, connected, request_loan, monkeypatch):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(days=7), loaner, loanee)
        travel_to(monkeypatch, due_in(8))
        
        with pytest.raises(Unauthorized):
            await system.loan_manager.mark_defaulted(loan.id, loanee.id)
    
    @pytest.mark.asyncio
    async def test_sweep_defaults_only_open_overdue_loans(self, system, connected, request_loan,
                                                          monkeypatch):
        loaner, loanee = connected
        overdue = await activate(system, await request_loan(days=2), loaner, loanee)
        in_review = await activate(system, await request_loan(days=3), loaner, loanee)
        await system.loan_manager.submit_repayment(in_review.id, loanee.id, "p2")
        requested = await request_loan(days=2)
        not_due = await activate(system, await request_loan(days=30), loaner, loanee)
        travel_to(monkeypatch, due_in(10))
        
        defaulted = await system.loan_manager.default_overdue_loans()
        
        assert {loan.id for loan in defaulted} == {overdue.id, in_review.id}
        assert (await system.loan_manager.require_loan(requested.id)).status == LoanStatus.REQUESTED
        assert (await system.loan_manager.require_loan(not_due.id)).status == LoanStatus.ACTIVE
        history = (await system.loan_manager.require_loan(overdue.id)).history
        assert history[-1]["actor_id"] is None
    
    @pytest.mark.asyncio
    async def test_sweep_cannot_look_ahead(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(days=2), loaner, loanee)
        
        assert await system.loan_manager.default_overdue_loans(as_of=due_in(365)) == []
        assert (await system.loan_manager.require_loan(loan.id)).status == LoanStatus.ACTIVE
    
    @pytest.mark.asyncio
    async def test_sweep_can_look_back(self, system, connected, request_loan, monkeypatch):
        loaner, loanee = connected
        early = await activate(system, await request_loan(days=2), loaner, loanee)
        late = await activate(system, await request_loan(days=8), loaner, loanee)
        travel_to(monkeypatch, due_in(10))
        
        defaulted = await system.loan_manager.default_overdue_loans(as_of=due_in(5))
        
        assert [loan.id for loan in defaulted] == [early.id]
        assert (await system.loan_manager.require_loan(late.id)).status == LoanStatus.ACTIVE


class TestConcurrencyAndSideEffects:
    
    @pytest.mark.asyncio
    async def test_stale_conditional_write(self, system, connected, request_loan, monkeypatch):
        """A transition that lost a race fails instead of overwriting"""
        loaner, loanee = connected
        loan = await request_loan()
        original_save_if = system.storage.save_if
        
        async def racing_save_if(table, record_id, data, expected):
            # Another actor rescinds between our read and our write
            await system.storage.save(table, record_id, {**data, "status": "RESCINDED"})
            return await original_save_if(table, record_id, data, expected)
        
        monkeypatch.setattr(system.storage, "save_if", racing_save_if)
        
        with pytest.raises(InvalidTransition):
            await system.loan_manager.approve(loan.id, loaner.id, "p1")
        
        events = await system.audit_trail.get_events_for_entity("loan", loan.id)
        assert AuditEventType.LOAN_APPROVED not in [e.event_type for e in events]
    
    @pytest.mark.asyncio
    async def test_audit_chain_after_lifecycle(self, system, connected, request_loan):
        loaner, loanee = connected
        loan = await activate(system, await request_loan(), loaner, loanee)
        await system.loan_manager.clear(loan.id, loaner.id)
        
        events = await system.audit_trail.get_events_for_entity("loan", loan.id)
        
        assert [e.event_type for e in events] == [
            AuditEventType.LOAN_REQUESTED, AuditEventType.LOAN_APPROVED,
            AuditEventType.LOAN_RECEIPT_CONFIRMED, AuditEventType.LOAN_CLEARED
        ]
        assert (await system.audit_trail.verify_integrity())["valid"] is True
    
    @pytest.mark.asyncio
    async def test_transitions_publish_events(self, system, connected, request_loan):
        loaner, loanee = connected
        received = []
        system.events.subscribe_all(received.append)
        
        loan = await request_loan()
        await system.loan_manager.rescind(loan.id, loaner.id)
        
        loan_events = [e.event_type for e in received if e.entity_type == "loan"]
        assert loan_events == [DomainEvent.LOAN_REQUESTED, DomainEvent.LOAN_RESCINDED]
