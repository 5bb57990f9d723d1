"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every user, invite, network and loan state change is logged here.
"""

import asyncio
import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .async_storage import AsyncStorageInterface
from .storage import StorageRecord, serialize_value


class AuditEventType(Enum):
    """Types of audit events"""
    # User events
    USER_REGISTERED = "user_registered"
    USER_PROFILE_UPDATED = "user_profile_updated"
    LENDING_AVAILABILITY_CHANGED = "lending_availability_changed"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    
    # Network events
    INVITE_SENT = "invite_sent"
    INVITE_ACCEPTED = "invite_accepted"
    NETWORK_CONNECTED = "network_connected"
    
    # Loan events
    LOAN_REQUESTED = "loan_requested"
    LOAN_APPROVED = "loan_approved"
    LOAN_RECEIPT_CONFIRMED = "loan_receipt_confirmed"
    LOAN_REPAYMENT_SUBMITTED = "loan_repayment_submitted"
    LOAN_CLEARED = "loan_cleared"
    LOAN_RESCINDED = "loan_rescinded"
    LOAN_DEFAULTED = "loan_defaulted"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # user, invite, network or loan
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Actor who initiated the action
    
    def __post_init__(self):
        self.metadata = serialize_value(self.metadata or {})
    
    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        
        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()
    
    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from dictionary with proper enum deserialization"""
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """
    
    def __init__(self, storage: AsyncStorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = asyncio.Lock()
    
    async def _load_last_hash(self) -> str:
        """Load the hash of the most recent audit event"""
        events = await self.storage.load_all(self.table_name)
        if not events:
            return ""
        latest = max(events, key=lambda x: (x.get('created_at', ''), x.get('sequence', 0)))
        return latest.get('current_hash', "")
    
    async def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining
        
        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action
            
        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None
        
        # Lock order: transaction, then chain
        async with self.storage.atomic(), self._lock:
            now = datetime.now(timezone.utc)
            
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=await self._load_last_hash(),
                current_hash="",
                user_id=user_id,
                metadata=metadata or {}
            )
            event.current_hash = event.calculate_hash()
            
            data = event.to_dict()
            # Tie-breaker for events sharing a timestamp
            data['sequence'] = await self.storage.count(self.table_name)
            await self.storage.save(self.table_name, event.id, data)
            
            return event
    
    async def _ordered_events(self) -> List[AuditEvent]:
        records = await self.storage.load_all(self.table_name)
        records.sort(key=lambda x: (x['created_at'], x.get('sequence', 0)))
        events = []
        for data in records:
            data.pop('sequence', None)
            events.append(AuditEvent.from_dict(data))
        return events
    
    async def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Get all audit events for a specific entity, oldest first"""
        return [
            e for e in await self._ordered_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
    
    async def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        """Get all audit events sorted by creation time"""
        events = await self._ordered_events()
        if limit:
            events = events[-limit:]
        return events
    
    async def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain
        
        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }
        
        events = await self._ordered_events()
        result['total_events'] = len(events)
        
        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash
        
        return result
