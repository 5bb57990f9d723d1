"""
Invite Protocol Module

A Loaner invites a borrower by email. The invite resolves into a network
connection either immediately (the Loanee already has an account), by
explicit acceptance, or automatically when a Loanee registers with that email.

    PENDING -> ACCEPTED (terminal)
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .async_storage import AsyncStorageInterface
from .audit import AuditTrail, AuditEventType
from .errors import Unauthorized, DuplicateInvite, InvalidProfile, NotFound
from .events import EventDispatcher, EventPublisherMixin, DomainEvent
from .logging_config import get_logger, log_action
from .network import NetworkGraph
from .storage import StorageRecord
from .users import UserManager, normalize_email


class InviteStatus(Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"


@dataclass
class Invite(StorageRecord):
    """Directed request from a Loaner to an email address"""
    loaner_id: str
    loaner_name: str
    email: str
    status: InviteStatus = InviteStatus.PENDING
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    
    @property
    def is_pending(self) -> bool:
        return self.status == InviteStatus.PENDING
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Invite':
        data = dict(data)
        data['status'] = InviteStatus(data['status'])
        if data.get('accepted_at'):
            data['accepted_at'] = datetime.fromisoformat(data['accepted_at'])
        return super().from_dict(data)


class InviteManager(EventPublisherMixin):
    """
    Sends, accepts and auto-resolves network invites
    """
    
    def __init__(
        self,
        storage: AsyncStorageInterface,
        user_manager: UserManager,
        network: NetworkGraph,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.network = network
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.invites_table = "invites"
        self.logger = get_logger("peer_lending.invites")
    
    async def _save_invite(self, invite: Invite) -> None:
        await self.storage.save(self.invites_table, invite.id, invite.to_dict())
    
    async def _mark_accepted(self, invite: Invite, loanee_id: str) -> None:
        now = datetime.now(timezone.utc)
        invite.status = InviteStatus.ACCEPTED
        invite.accepted_at = now
        invite.accepted_by = loanee_id
        invite.updated_at = now
        await self._save_invite(invite)
        
        await self.audit_trail.log_event(
            event_type=AuditEventType.INVITE_ACCEPTED,
            entity_type="invite",
            entity_id=invite.id,
            metadata={"loaner_id": invite.loaner_id, "loanee_id": loanee_id},
            user_id=loanee_id
        )
    
    async def send_invite(self, loaner_id: str, loaner_name: str, email: str) -> Invite:
        """
        Invite an email address into a Loaner's network
        
        If a Loanee already holds that email the pair is connected right away
        and the invite is stored as ACCEPTED.
        
        Args:
            loaner_id: Inviting Loaner
            loaner_name: Display name shown to the invitee
            email: Invitee email address
            
        Returns:
            Stored Invite
        """
        email = normalize_email(email)
        if not email or "@" not in email:
            raise InvalidProfile("A valid email is required")
        
        async with self.storage.atomic():
            loaner = await self.user_manager.require_user(loaner_id)
            if not loaner.is_loaner:
                raise Unauthorized("Only loaners can send invites")
            
            existing = await self.storage.find(self.invites_table, {
                "loaner_id": loaner_id,
                "email": email,
                "status": InviteStatus.PENDING.value
            })
            if existing:
                raise DuplicateInvite(f"Invite to {email} already pending")
            
            now = datetime.now(timezone.utc)
            invite = Invite(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loaner_id=loaner_id,
                loaner_name=loaner_name,
                email=email
            )
            
            invitee = await self.user_manager.get_user_by_email(email)
            if invitee and invitee.is_loanee:
                await self.network.connect(loaner_id, invitee.id)
                invite.status = InviteStatus.ACCEPTED
                invite.accepted_at = now
                invite.accepted_by = invitee.id
            
            await self._save_invite(invite)
            
            await self.audit_trail.log_event(
                event_type=AuditEventType.INVITE_SENT,
                entity_type="invite",
                entity_id=invite.id,
                metadata={"email": email, "status": invite.status.value},
                user_id=loaner_id
            )
        
        log_action(self.logger, "info", f"Invite sent to {email}",
                   user_id=loaner_id, action="send_invite", resource=f"invite:{invite.id}",
                   extra={"status": invite.status.value})
        self.publish_event(DomainEvent.INVITE_SENT, "invite", invite.id, {
            "loaner_id": loaner_id, "email": email, "status": invite.status.value
        })
        return invite
    
    async def resolve_for_registration(self, email: str, loanee_id: str) -> List[Invite]:
        """
        Resolve every pending invite for a newly registered Loanee
        
        Must run inside the registration transaction. Invites whose loaner no
        longer exists are left pending.
        
        Returns:
            Invites that were accepted
        """
        accepted = []
        async with self.storage.atomic():
            for invite in await self.pending_invites_for(email):
                if not await self.user_manager.get_user(invite.loaner_id):
                    self.logger.warning(
                        f"Invite {invite.id} references missing loaner {invite.loaner_id}, left pending"
                    )
                    continue
                await self.network.connect(invite.loaner_id, loanee_id)
                await self._mark_accepted(invite, loanee_id)
                accepted.append(invite)
        
        for invite in accepted:
            self.publish_event(DomainEvent.INVITE_ACCEPTED, "invite", invite.id, {
                "loaner_id": invite.loaner_id, "loanee_id": loanee_id
            })
        return accepted
    
    async def accept_invite(self, invite_id: str, loanee_id: str) -> Invite:
        """
        Accept a pending invite as the addressed Loanee
        
        Accepting an already accepted invite returns it unchanged.
        """
        async with self.storage.atomic():
            invite = await self.get_invite(invite_id)
            if not invite:
                raise NotFound("Invite", invite_id)
            
            loanee = await self.user_manager.require_user(loanee_id)
            if not loanee.is_loanee:
                raise Unauthorized("Only loanees can accept invites")
            if loanee.email != invite.email:
                raise Unauthorized("Invite is addressed to another email")
            
            if not invite.is_pending:
                return invite
            
            await self.network.connect(invite.loaner_id, loanee_id)
            await self._mark_accepted(invite, loanee_id)
        
        log_action(self.logger, "info", "Invite accepted",
                   user_id=loanee_id, action="accept_invite", resource=f"invite:{invite.id}")
        self.publish_event(DomainEvent.INVITE_ACCEPTED, "invite", invite.id, {
            "loaner_id": invite.loaner_id, "loanee_id": loanee_id
        })
        return invite
    
    async def get_invite(self, invite_id: str) -> Optional[Invite]:
        data = await self.storage.load(self.invites_table, invite_id)
        if data:
            return Invite.from_dict(data)
        return None
    
    async def pending_invites_for(self, email: str) -> List[Invite]:
        """All pending invites addressed to an email, oldest first"""
        records = await self.storage.find(self.invites_table, {
            "email": normalize_email(email),
            "status": InviteStatus.PENDING.value
        })
        invites = [Invite.from_dict(data) for data in records]
        invites.sort(key=lambda i: i.created_at)
        return invites
    
    async def invites_sent_by(self, loaner_id: str) -> List[Invite]:
        """A Loaner's invites in any status, newest first"""
        records = await self.storage.find(self.invites_table, {"loaner_id": loaner_id})
        invites = [Invite.from_dict(data) for data in records]
        invites.sort(key=lambda i: i.created_at, reverse=True)
        return invites
