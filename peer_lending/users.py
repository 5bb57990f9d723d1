"""
User Identity Module

Users, their fixed role and profile, and the persisted network id set that the
network graph maintains. Loanees carry a currency and optional bank details;
Loaners carry a lending availability toggle.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any, Set
from enum import Enum
import uuid

from .async_storage import AsyncStorageInterface
from .audit import AuditTrail, AuditEventType
from .currency import Currency
from .errors import NotFound, Unauthorized, DuplicateEmail, InvalidProfile
from .events import EventDispatcher, EventPublisherMixin, DomainEvent
from .storage import StorageRecord


class UserRole(Enum):
    """Account roles, fixed at creation"""
    ADMIN = "ADMIN"
    LOANER = "LOANER"
    LOANEE = "LOANEE"


def normalize_email(email: str) -> str:
    """Canonical form used for uniqueness and invite matching"""
    return email.strip().lower()


@dataclass
class BankAccount:
    """Loanee payout details, display only"""
    account_number: str
    account_name: str
    bank_name: str
    
    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class User(StorageRecord):
    """Platform account with role-specific profile fields"""
    name: str
    email: str
    role: UserRole
    phone: str = ""
    currency: Optional[Currency] = None            # Loanee only
    bank_account: Optional[BankAccount] = None     # Loanee only
    is_accepting_loans: Optional[bool] = None      # Loaner only
    network: Set[str] = field(default_factory=set)
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    
    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
    
    @property
    def is_loaner(self) -> bool:
        return self.role == UserRole.LOANER
    
    @property
    def is_loanee(self) -> bool:
        return self.role == UserRole.LOANEE
    
    def to_public_dict(self) -> Dict[str, Any]:
        """Profile without credential fields"""
        data = self.to_dict()
        data.pop('password_hash', None)
        data.pop('password_salt', None)
        return data
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        data = dict(data)
        data['role'] = UserRole(data['role'])
        if data.get('currency'):
            data['currency'] = Currency.from_code(data['currency'])
        if data.get('bank_account'):
            data['bank_account'] = BankAccount(**data['bank_account'])
        data['network'] = set(data.get('network') or [])
        return super().from_dict(data)


class UserManager(EventPublisherMixin):
    """
    Manages user records and profile edits
    """
    
    def __init__(
        self,
        storage: AsyncStorageInterface,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None,
        default_currency: Currency = Currency.NGN
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.default_currency = default_currency
        self.users_table = "users"
    
    async def create_user(
        self,
        name: str,
        email: str,
        role: UserRole,
        phone: str = "",
        currency: Optional[Currency] = None,
        bank_account: Optional[BankAccount] = None,
        password_hash: Optional[str] = None,
        password_salt: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> User:
        """
        Create a user record
        
        Args:
            name: Display name
            email: Login email, unique across all accounts
            role: Fixed account role
            phone: Contact phone number
            currency: Loanee currency (defaults to the configured currency)
            bank_account: Loanee bank details
            password_hash: Pre-hashed password
            password_salt: Salt used for password_hash
            user_id: Fixed id (demo seeding), generated when omitted
            
        Returns:
            Created User
        """
        name = name.strip()
        email = normalize_email(email)
        if not name:
            raise InvalidProfile("Name is required")
        if not email or "@" not in email:
            raise InvalidProfile("A valid email is required")
        
        now = datetime.now(timezone.utc)
        user = User(
            id=user_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            email=email,
            role=role,
            phone=phone,
            currency=(currency or self.default_currency) if role == UserRole.LOANEE else None,
            bank_account=bank_account if role == UserRole.LOANEE else None,
            is_accepting_loans=True if role == UserRole.LOANER else None,
            password_hash=password_hash,
            password_salt=password_salt
        )
        
        async with self.storage.atomic():
            if await self.get_user_by_email(email):
                raise DuplicateEmail(f"Email {email} already exists")
            
            await self.save_user(user)
            
            await self.audit_trail.log_event(
                event_type=AuditEventType.USER_REGISTERED,
                entity_type="user",
                entity_id=user.id,
                metadata={"email": email, "role": role.value},
                user_id=user.id
            )
        
        return user
    
    async def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        data = await self.storage.load(self.users_table, user_id)
        if data:
            return User.from_dict(data)
        return None
    
    async def require_user(self, user_id: str) -> User:
        """Get user by ID or raise NotFound"""
        user = await self.get_user(user_id)
        if not user:
            raise NotFound("User", user_id)
        return user
    
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by (normalized) email"""
        users = await self.storage.find(self.users_table, {"email": normalize_email(email)})
        if not users:
            return None
        return User.from_dict(users[0])
    
    async def list_users(self, role: Optional[UserRole] = None) -> List[User]:
        """List users, optionally filtered by role"""
        if role:
            records = await self.storage.find(self.users_table, {"role": role.value})
        else:
            records = await self.storage.load_all(self.users_table)
        return [User.from_dict(data) for data in records]
    
    async def save_user(self, user: User) -> None:
        await self.storage.save(self.users_table, user.id, user.to_dict())
    
    async def update_profile(
        self,
        user_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        currency: Optional[Currency] = None,
        bank_account: Optional[BankAccount] = None
    ) -> User:
        """
        Apply a profile edit. Role, email and network are not editable here.
        """
        async with self.storage.atomic():
            user = await self.require_user(user_id)
            
            if (currency is not None or bank_account is not None) and not user.is_loanee:
                raise Unauthorized("Only loanees carry a currency and bank account")
            
            changed = []
            if name is not None:
                if not name.strip():
                    raise InvalidProfile("Name is required")
                user.name = name.strip()
                changed.append("name")
            if phone is not None:
                user.phone = phone
                changed.append("phone")
            if currency is not None:
                user.currency = currency
                changed.append("currency")
            if bank_account is not None:
                user.bank_account = bank_account
                changed.append("bank_account")
            
            if not changed:
                return user
            
            user.updated_at = datetime.now(timezone.utc)
            await self.save_user(user)
            
            await self.audit_trail.log_event(
                event_type=AuditEventType.USER_PROFILE_UPDATED,
                entity_type="user",
                entity_id=user.id,
                metadata={"fields": changed},
                user_id=user.id
            )
        
        self.publish_event(DomainEvent.USER_UPDATED, "user", user.id, {"fields": changed})
        return user
    
    async def set_accepting_loans(self, user_id: str, accepting: bool) -> User:
        """Toggle whether a Loaner accepts new loan requests"""
        async with self.storage.atomic():
            user = await self.require_user(user_id)
            if not user.is_loaner:
                raise Unauthorized("Only loaners can change lending availability")
            
            if user.is_accepting_loans == accepting:
                return user
            
            user.is_accepting_loans = accepting
            user.updated_at = datetime.now(timezone.utc)
            await self.save_user(user)
            
            await self.audit_trail.log_event(
                event_type=AuditEventType.LENDING_AVAILABILITY_CHANGED,
                entity_type="user",
                entity_id=user.id,
                metadata={"is_accepting_loans": accepting},
                user_id=user.id
            )
        
        self.publish_event(
            DomainEvent.USER_UPDATED, "user", user.id, {"fields": ["is_accepting_loans"]}
        )
        return user
