"""
Network Graph Module

The mutual Loaner <-> Loanee adjacency that gates who may request loans from
whom. Edges are stored on both user records as id sets, so connecting is
additive and safe to retry.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import Unauthorized
from .events import EventDispatcher, EventPublisherMixin, DomainEvent
from .logging_config import get_logger, log_action
from .users import User, UserManager


class NetworkGraph(EventPublisherMixin):
    """
    Maintains the mutual network relation between Loaners and Loanees
    """
    
    def __init__(
        self,
        user_manager: UserManager,
        audit_trail: AuditTrail,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.user_manager = user_manager
        self.storage = user_manager.storage
        self.audit_trail = audit_trail
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("peer_lending.network")
    
    async def connect(self, loaner_id: str, loanee_id: str) -> bool:
        """
        Connect a Loaner and a Loanee in both directions
        
        Both user records are written in one transaction. Calling this for an
        already connected pair changes nothing.
        
        Args:
            loaner_id: Lending party
            loanee_id: Borrowing party
            
        Returns:
            True if a new edge was added, False if the pair was already connected
        """
        async with self.storage.atomic():
            loaner = await self.user_manager.require_user(loaner_id)
            loanee = await self.user_manager.require_user(loanee_id)
            
            if not loaner.is_loaner:
                raise Unauthorized(f"User {loaner_id} is not a loaner")
            if not loanee.is_loanee:
                raise Unauthorized(f"User {loanee_id} is not a loanee")
            
            if loanee_id in loaner.network and loaner_id in loanee.network:
                return False
            
            now = datetime.now(timezone.utc)
            for user, other_id in ((loaner, loanee_id), (loanee, loaner_id)):
                if other_id not in user.network:
                    user.network.add(other_id)
                    user.updated_at = now
                    await self.user_manager.save_user(user)
            
            await self.audit_trail.log_event(
                event_type=AuditEventType.NETWORK_CONNECTED,
                entity_type="network",
                entity_id=f"{loaner_id}:{loanee_id}",
                metadata={"loaner_id": loaner_id, "loanee_id": loanee_id}
            )
        
        log_action(self.logger, "info", "Network connected",
                   action="network_connect", resource=f"user:{loaner_id}",
                   extra={"loaner_id": loaner_id, "loanee_id": loanee_id})
        self.publish_event(
            DomainEvent.NETWORK_CONNECTED, "network", f"{loaner_id}:{loanee_id}",
            {"loaner_id": loaner_id, "loanee_id": loanee_id}
        )
        return True
    
    async def members_of(self, user_id: str) -> List[User]:
        """
        Resolve a user's network ids to current user records
        
        Ids that no longer resolve to a user are skipped.
        """
        user = await self.user_manager.require_user(user_id)
        members = []
        for member_id in sorted(user.network):
            member = await self.user_manager.get_user(member_id)
            if member:
                members.append(member)
        return members
    
    async def is_connected(self, loaner_id: str, loanee_id: str) -> bool:
        """True only when both users exist and list each other"""
        loaner = await self.user_manager.get_user(loaner_id)
        loanee = await self.user_manager.get_user(loanee_id)
        if not loaner or not loanee:
            return False
        return loanee_id in loaner.network and loaner_id in loanee.network
