"""
Credential and Session Module

Registration, password authentication and an explicit session object that
notifies subscribers whenever the signed-in user changes.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import asyncio
import hashlib
import hmac
import secrets
import uuid

from .audit import AuditTrail, AuditEventType
from .currency import Currency
from .errors import AuthFailure, InvalidProfile
from .events import EventDispatcher, EventPublisherMixin, DomainEvent, EventPayload
from .invites import InviteManager
from .logging_config import get_logger, log_action
from .users import User, UserManager, UserRole, BankAccount, normalize_email


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Hash password with salt using scrypt"""
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def verify_password(user: User, password: str) -> bool:
    if not user.password_hash or not user.password_salt:
        return False
    expected = hash_password(password, user.password_salt)
    return hmac.compare_digest(expected, user.password_hash)


@dataclass
class RegistrationProfile:
    """Self-service signup data"""
    name: str
    email: str
    password: str
    role: UserRole
    phone: str = ""
    currency: Optional[Currency] = None
    bank_account: Optional[BankAccount] = None


class AuthService(EventPublisherMixin):
    """
    Registers and authenticates users
    """
    
    def __init__(
        self,
        user_manager: UserManager,
        invite_manager: InviteManager,
        audit_trail: AuditTrail,
        password_min_length: int = 8,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.user_manager = user_manager
        self.invite_manager = invite_manager
        self.storage = user_manager.storage
        self.audit_trail = audit_trail
        self.password_min_length = password_min_length
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("peer_lending.auth")
    
    async def register(self, profile: RegistrationProfile) -> User:
        """
        Create an account from a signup profile
        
        A new Loanee picks up every pending invite addressed to its email in
        the same transaction as the account itself.
        
        Raises:
            InvalidProfile: Missing name/email, short password or admin role
            DuplicateEmail: Email already registered
        """
        if profile.role == UserRole.ADMIN:
            raise InvalidProfile("Admin accounts cannot be self-registered")
        if len(profile.password or "") < self.password_min_length:
            raise InvalidProfile(
                f"Password must be at least {self.password_min_length} characters"
            )
        
        salt = generate_salt()
        password_hash = await asyncio.to_thread(hash_password, profile.password, salt)
        async with self.storage.atomic():
            user = await self.user_manager.create_user(
                name=profile.name,
                email=profile.email,
                role=profile.role,
                phone=profile.phone,
                currency=profile.currency,
                bank_account=profile.bank_account,
                password_hash=password_hash,
                password_salt=salt
            )
            
            if user.is_loanee:
                await self.invite_manager.resolve_for_registration(user.email, user.id)
            
            user = await self.user_manager.require_user(user.id)
        
        log_action(self.logger, "info", f"User registered: {user.email}",
                   user_id=user.id, action="register", resource=f"user:{user.id}",
                   extra={"role": user.role.value, "network_size": len(user.network)})
        self.publish_event(DomainEvent.USER_REGISTERED, "user", user.id, {
            "role": user.role.value
        })
        return user
    
    async def authenticate(self, email: str, password: str) -> User:
        """
        Check an email/password pair
        
        Raises:
            AuthFailure: Unknown email or wrong password
        """
        email = normalize_email(email)
        user = await self.user_manager.get_user_by_email(email)
        
        if not user or not await asyncio.to_thread(verify_password, user, password):
            await self.audit_trail.log_event(
                event_type=AuditEventType.LOGIN_FAILED,
                entity_type="user",
                entity_id=user.id if user else email,
                metadata={"email": email}
            )
            log_action(self.logger, "warning", f"Failed login for {email}",
                       action="login_failed", resource=f"user:{email}")
            raise AuthFailure()
        
        await self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_SUCCESS,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id
        )
        return user


class Session:
    """
    One signed-in context, passed explicitly to whoever needs the current user
    
    Subscribers are called with the current User (or None) immediately on
    subscribe and after every login, registration and logout.
    """
    
    def __init__(self, auth: AuthService, event_dispatcher: Optional[EventDispatcher] = None):
        self.auth = auth
        self.session_id = str(uuid.uuid4())
        self._dispatcher = event_dispatcher or EventDispatcher()
        self._user: Optional[User] = None
    
    @property
    def user_id(self) -> Optional[str]:
        return self._user.id if self._user else None
    
    def _changed(self) -> None:
        self._dispatcher.publish(EventPayload(
            event_type=DomainEvent.SESSION_CHANGED,
            entity_type="session",
            entity_id=self.session_id,
            data={"user_id": self.user_id}
        ))
    
    async def login(self, email: str, password: str) -> User:
        self._user = await self.auth.authenticate(email, password)
        self._changed()
        return self._user
    
    async def register(self, profile: RegistrationProfile) -> User:
        self._user = await self.auth.register(profile)
        self._changed()
        return self._user
    
    async def logout(self) -> None:
        if self._user is None:
            return
        await self.auth.audit_trail.log_event(
            event_type=AuditEventType.LOGOUT,
            entity_type="user",
            entity_id=self._user.id,
            user_id=self._user.id
        )
        self._user = None
        self._changed()
    
    async def current_user(self) -> Optional[User]:
        """The signed-in user as currently stored, or None"""
        if self._user is None:
            return None
        self._user = await self.auth.user_manager.get_user(self._user.id)
        return self._user
    
    def subscribe(self, callback: Callable[[Optional[User]], None]) -> Callable[[], None]:
        """
        Register a callback for session changes
        
        Returns:
            Function that removes the subscription
        """
        def handler(event: EventPayload) -> None:
            if event.entity_id == self.session_id:
                callback(self._user)
        
        self._dispatcher.subscribe(DomainEvent.SESSION_CHANGED, handler)
        callback(self._user)
        
        def unsubscribe() -> None:
            self._dispatcher.unsubscribe(DomainEvent.SESSION_CHANGED, handler)
        
        return unsubscribe
