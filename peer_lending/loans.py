"""
Loan Lifecycle Module

The request -> disbursement -> confirmation -> repayment -> clearing state
machine for peer loans. Every transition is a typed command checked against
the loan's current status and the acting party before it is persisted with a
conditional write on the expected status.

    REQUESTED --approve--> APPROVED_PENDING_CONFIRMATION --confirm--> ACTIVE
    REQUESTED --rescind--> RESCINDED
    ACTIVE --submit repayment--> REPAYMENT_SUBMITTED
    ACTIVE | REPAYMENT_SUBMITTED --clear--> CLEARED
    ACTIVE | REPAYMENT_SUBMITTED (overdue) --mark defaulted--> DEFAULTED
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Union
from enum import Enum
import uuid

from .async_storage import AsyncStorageInterface
from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency, to_decimal
from .errors import (
    Unauthorized, InvalidTransition, InvalidAmount, InvalidDueDate,
    LenderUnavailable, MissingProof, NotFound
)
from .events import EventDispatcher, EventPublisherMixin, DomainEvent
from .logging_config import get_logger, log_action
from .storage import StorageRecord
from .users import UserManager


class LoanStatus(Enum):
    """Loan lifecycle states"""
    REQUESTED = "REQUESTED"
    APPROVED_PENDING_CONFIRMATION = "APPROVED_PENDING_CONFIRMATION"
    ACTIVE = "ACTIVE"
    REPAYMENT_SUBMITTED = "REPAYMENT_SUBMITTED"
    CLEARED = "CLEARED"          # terminal
    RESCINDED = "RESCINDED"      # terminal
    DEFAULTED = "DEFAULTED"      # terminal


TERMINAL_STATES = frozenset({LoanStatus.CLEARED, LoanStatus.RESCINDED, LoanStatus.DEFAULTED})
OPEN_STATES = frozenset({LoanStatus.ACTIVE, LoanStatus.REPAYMENT_SUBMITTED})


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _finite_decimal(value: Union[Decimal, int, str], label: str) -> Decimal:
    """Parse a user-supplied number; NaN and Infinity are rejected"""
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid {label}: {value}")
    if not number.is_finite():
        raise InvalidAmount(f"Invalid {label}: {value}")
    return number


@dataclass
class Loan(StorageRecord):
    """Peer loan between one Loanee and one Loaner"""
    loanee_id: str
    loanee_name: str
    loaner_id: str
    loaner_name: str
    amount: Money
    request_date: datetime
    due_date: date
    status: LoanStatus = LoanStatus.REQUESTED
    interest_rate: Decimal = Decimal('0')     # annual percent, set at approval
    proof_of_disbursement: Optional[str] = None
    proof_of_repayment: Optional[str] = None
    approval_date: Optional[datetime] = None
    cleared_date: Optional[datetime] = None
    defaulted_date: Optional[datetime] = None
    notes: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
    
    @property
    def currency(self) -> Currency:
        return self.amount.currency
    
    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES
    
    def is_overdue(self, as_of: Optional[date] = None) -> bool:
        """Open (ACTIVE or REPAYMENT_SUBMITTED) and past its due date"""
        return self.status in OPEN_STATES and (as_of or _today()) > self.due_date
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        data['amount'] = Money.from_dict(data['amount'])
        data['status'] = LoanStatus(data['status'])
        data['interest_rate'] = Decimal(data.get('interest_rate') or '0')
        data['request_date'] = datetime.fromisoformat(data['request_date'])
        data['due_date'] = date.fromisoformat(data['due_date'])
        for key in ('approval_date', 'cleared_date', 'defaulted_date'):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        data['history'] = list(data.get('history') or [])
        return super().from_dict(data)


# Typed commands, one per transition

@dataclass(frozen=True)
class Approve:
    proof_of_disbursement: Optional[str]
    interest_rate: Decimal = Decimal('0')


@dataclass(frozen=True)
class ConfirmReceipt:
    pass


@dataclass(frozen=True)
class SubmitRepayment:
    proof_of_repayment: Optional[str] = None


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class Rescind:
    pass


@dataclass(frozen=True)
class MarkDefaulted:
    pass


LoanCommand = Union[Approve, ConfirmReceipt, SubmitRepayment, Clear, Rescind, MarkDefaulted]


@dataclass(frozen=True)
class Transition:
    """Who may issue a command, from which states, and where it leads"""
    party: str                       # "loaner" or "loanee"
    sources: FrozenSet[LoanStatus]
    target: LoanStatus
    audit_event: AuditEventType
    domain_event: DomainEvent


TRANSITIONS: Dict[type, Transition] = {
    Approve: Transition(
        "loaner", frozenset({LoanStatus.REQUESTED}),
        LoanStatus.APPROVED_PENDING_CONFIRMATION,
        AuditEventType.LOAN_APPROVED, DomainEvent.LOAN_APPROVED
    ),
    Rescind: Transition(
        "loaner", frozenset({LoanStatus.REQUESTED}),
        LoanStatus.RESCINDED,
        AuditEventType.LOAN_RESCINDED, DomainEvent.LOAN_RESCINDED
    ),
    ConfirmReceipt: Transition(
        "loanee", frozenset({LoanStatus.APPROVED_PENDING_CONFIRMATION}),
        LoanStatus.ACTIVE,
        AuditEventType.LOAN_RECEIPT_CONFIRMED, DomainEvent.LOAN_RECEIPT_CONFIRMED
    ),
    SubmitRepayment: Transition(
        "loanee", frozenset({LoanStatus.ACTIVE}),
        LoanStatus.REPAYMENT_SUBMITTED,
        AuditEventType.LOAN_REPAYMENT_SUBMITTED, DomainEvent.LOAN_REPAYMENT_SUBMITTED
    ),
    Clear: Transition(
        "loaner", OPEN_STATES,
        LoanStatus.CLEARED,
        AuditEventType.LOAN_CLEARED, DomainEvent.LOAN_CLEARED
    ),
    MarkDefaulted: Transition(
        "loaner", OPEN_STATES,
        LoanStatus.DEFAULTED,
        AuditEventType.LOAN_DEFAULTED, DomainEvent.LOAN_DEFAULTED
    ),
}


class LoanManager(EventPublisherMixin):
    """
    Creates loans and drives them through their lifecycle
    """
    
    def __init__(
        self,
        storage: AsyncStorageInterface,
        user_manager: UserManager,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.loans_table = "loans"
        self.logger = get_logger("peer_lending.loans")
    
    async def request_loan(
        self,
        loanee_id: str,
        loaner_id: str,
        amount: Union[Decimal, int, str],
        due_date: date,
        currency: Optional[Currency] = None,
        notes: Optional[str] = None
    ) -> Loan:
        """
        Request a loan from a networked Loaner
        
        Args:
            loanee_id: Requesting Loanee
            loaner_id: Target Loaner
            amount: Principal, must be positive
            due_date: Repayment date, strictly after today
            currency: Loan currency (defaults to the Loanee's currency)
            notes: Free-text purpose shown to the Loaner
            
        Returns:
            New loan in REQUESTED status
        """
        loanee = await self.user_manager.require_user(loanee_id)
        loaner = await self.user_manager.require_user(loaner_id)
        
        if not loanee.is_loanee or not loaner.is_loaner:
            raise Unauthorized("Loans are requested by a loanee from a loaner")
        if loaner_id not in loanee.network or loanee_id not in loaner.network:
            raise Unauthorized(f"{loanee.name} is not in {loaner.name}'s network")
        if not loaner.is_accepting_loans:
            raise LenderUnavailable(f"{loaner.name} is not accepting loan requests")
        
        number = _finite_decimal(amount, "loan amount")
        try:
            principal = Money(number, currency or loanee.currency or Currency.NGN)
        except InvalidOperation:
            raise InvalidAmount(f"Invalid loan amount: {amount}")
        if not principal.is_positive():
            raise InvalidAmount("Loan amount must be positive")
        
        now = datetime.now(timezone.utc)
        if isinstance(due_date, datetime):
            due_date = due_date.date()
        if due_date <= now.date():
            raise InvalidDueDate("Due date must be after the request date")
        
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loanee_id=loanee.id,
            loanee_name=loanee.name,
            loaner_id=loaner.id,
            loaner_name=loaner.name,
            amount=principal,
            request_date=now,
            due_date=due_date,
            notes=notes,
            history=[{"status": LoanStatus.REQUESTED.value, "at": now.isoformat(), "actor_id": loanee_id}]
        )
        
        async with self.storage.atomic():
            await self.storage.save(self.loans_table, loan.id, loan.to_dict())
            await self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_REQUESTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "loaner_id": loaner_id,
                    "amount": str(principal.amount),
                    "currency": principal.currency.code,
                    "due_date": due_date.isoformat()
                },
                user_id=loanee_id
            )
        
        log_action(self.logger, "info", f"Loan requested: {principal.to_string()}",
                   user_id=loanee_id, action="request_loan", resource=f"loan:{loan.id}",
                   extra={"loaner_id": loaner_id})
        self.publish_event(DomainEvent.LOAN_REQUESTED, "loan", loan.id, {
            "loanee_id": loanee_id, "loaner_id": loaner_id
        })
        return loan
    
    async def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = await self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None
    
    async def require_loan(self, loan_id: str) -> Loan:
        loan = await self.get_loan(loan_id)
        if not loan:
            raise NotFound("Loan", loan_id)
        return loan
    
    async def list_loans(self, filters: Optional[Dict[str, Any]] = None) -> List[Loan]:
        if filters:
            records = await self.storage.find(self.loans_table, filters)
        else:
            records = await self.storage.load_all(self.loans_table)
        return [Loan.from_dict(data) for data in records]
    
    def _check_party(self, loan: Loan, actor_id: Optional[str], rule: Transition,
                     command: LoanCommand) -> None:
        if actor_id is None and isinstance(command, MarkDefaulted):
            return  # system sweep
        party_id = loan.loaner_id if rule.party == "loaner" else loan.loanee_id
        if actor_id != party_id:
            raise Unauthorized(f"Only the loan's {rule.party} can do this")
    
    def _execute(self, loan: Loan, command: LoanCommand, now: datetime) -> None:
        """Validate the command payload and stamp its effects on the loan"""
        match command:
            case Approve(proof_of_disbursement=proof, interest_rate=rate):
                if not proof:
                    raise MissingProof("Proof of disbursement is required")
                rate = _finite_decimal(rate, "interest rate")
                if rate < 0:
                    raise InvalidAmount("Interest rate cannot be negative")
                loan.proof_of_disbursement = proof
                loan.interest_rate = rate
                loan.approval_date = now
            case SubmitRepayment(proof_of_repayment=proof):
                if proof:
                    loan.proof_of_repayment = proof
            case Clear():
                loan.cleared_date = now
            case MarkDefaulted():
                # Real UTC date only
                if not loan.is_overdue(_today()):
                    raise InvalidTransition(f"Loan is not past its due date {loan.due_date}")
                loan.defaulted_date = now
            case ConfirmReceipt() | Rescind():
                pass
    
    async def apply(self, loan_id: str, actor_id: Optional[str], command: LoanCommand) -> Loan:
        """
        Apply a lifecycle command to a loan
        
        Checks run in order: loan exists, actor is the right party, current
        status allows the command, command payload is valid. The write is
        conditional on the status read here; a concurrent transition makes it
        fail with InvalidTransition.
        
        Args:
            loan_id: Target loan
            actor_id: Acting user, or None for a system-issued MarkDefaulted
            command: Typed transition command
            
        Returns:
            Updated loan
        """
        rule = TRANSITIONS[type(command)]
        
        async with self.storage.atomic():
            loan = await self.require_loan(loan_id)
            self._check_party(loan, actor_id, rule, command)
            
            if loan.status not in rule.sources:
                raise InvalidTransition(
                    f"Cannot move loan from {loan.status.value} to {rule.target.value}"
                )
            
            expected = loan.status
            now = datetime.now(timezone.utc)
            self._execute(loan, command, now)
            
            loan.status = rule.target
            loan.updated_at = now
            loan.history.append({
                "status": rule.target.value, "at": now.isoformat(), "actor_id": actor_id
            })
            
            saved = await self.storage.save_if(
                self.loans_table, loan.id, loan.to_dict(), {"status": expected.value}
            )
            if not saved:
                raise InvalidTransition(f"Loan {loan.id} was changed by another action")
            
            await self.audit_trail.log_event(
                event_type=rule.audit_event,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"from": expected.value, "to": rule.target.value},
                user_id=actor_id
            )
        
        log_action(self.logger, "info", f"Loan {expected.value} -> {rule.target.value}",
                   user_id=actor_id, action=rule.domain_event.value, resource=f"loan:{loan.id}")
        self.publish_event(rule.domain_event, "loan", loan.id, {
            "from": expected.value, "to": rule.target.value, "actor_id": actor_id
        })
        return loan
    
    async def approve(self, loan_id: str, actor_id: str, proof_of_disbursement: Optional[str],
                      interest_rate: Union[Decimal, int, str] = Decimal('0')) -> Loan:
        rate = _finite_decimal(interest_rate, "interest rate")
        return await self.apply(loan_id, actor_id, Approve(proof_of_disbursement, rate))
    
    async def confirm_receipt(self, loan_id: str, actor_id: str) -> Loan:
        return await self.apply(loan_id, actor_id, ConfirmReceipt())
    
    async def submit_repayment(self, loan_id: str, actor_id: str,
                               proof_of_repayment: Optional[str] = None) -> Loan:
        return await self.apply(loan_id, actor_id, SubmitRepayment(proof_of_repayment))
    
    async def clear(self, loan_id: str, actor_id: str) -> Loan:
        return await self.apply(loan_id, actor_id, Clear())
    
    async def rescind(self, loan_id: str, actor_id: str) -> Loan:
        return await self.apply(loan_id, actor_id, Rescind())
    
    async def mark_defaulted(self, loan_id: str, actor_id: Optional[str] = None) -> Loan:
        """Default a loan past its due date as of today (UTC); actor None means the system"""
        return await self.apply(loan_id, actor_id, MarkDefaulted())
    
    async def default_overdue_loans(self, as_of: Optional[date] = None) -> List[Loan]:
        """
        Mark every overdue ACTIVE or REPAYMENT_SUBMITTED loan as DEFAULTED
        
        ``as_of`` can look back but never ahead of today (UTC). Loans that
        move concurrently are skipped.
        """
        today = _today()
        as_of = min(as_of, today) if as_of else today
        defaulted = []
        for loan in await self.list_loans():
            if not loan.is_overdue(as_of):
                continue
            try:
                defaulted.append(await self.mark_defaulted(loan.id, None))
            except InvalidTransition as e:
                self.logger.warning(f"Skipped defaulting loan {loan.id}: {e}")
        
        if defaulted:
            log_action(self.logger, "info", f"Defaulted {len(defaulted)} overdue loans",
                       action="default_overdue_loans", extra={"as_of": as_of.isoformat()})
        return defaulted
