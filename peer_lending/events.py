"""
Event System Module

Publish/subscribe dispatcher for lending domain events. Loan transitions,
invites, network changes and session changes are published here so callers
(UI layers, session subscribers) can react without polling.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from functools import partial
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the lending system"""
    
    # Session events
    SESSION_CHANGED = "session.changed"
    
    # User events
    USER_REGISTERED = "user.registered"
    USER_UPDATED = "user.updated"
    
    # Network events
    INVITE_SENT = "invite.sent"
    INVITE_ACCEPTED = "invite.accepted"
    NETWORK_CONNECTED = "network.connected"
    
    # Loan events
    LOAN_REQUESTED = "loan.requested"
    LOAN_APPROVED = "loan.approved"
    LOAN_RECEIPT_CONFIRMED = "loan.receipt_confirmed"
    LOAN_REPAYMENT_SUBMITTED = "loan.repayment_submitted"
    LOAN_CLEARED = "loan.cleared"
    LOAN_RESCINDED = "loan.rescinded"
    LOAN_DEFAULTED = "loan.defaulted"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central publish/subscribe event dispatcher"""
    
    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("peer_lending.events")
    
    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")
    
    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
    
    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")
    
    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)
        
        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the main operation
                self.logger.error(f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}")
    
    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
    
    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


class EventPublisherMixin:
    """
    Mixin giving managers an optional dispatcher to publish through
    
    When the manager has a ``storage``, events raised inside a transaction are
    held until the outermost transaction commits and dropped if it rolls back.
    """
    
    _event_dispatcher: Optional[EventDispatcher] = None
    storage = None
    
    def publish_event(self, event_type: DomainEvent, entity_type: str, entity_id: str,
                      data: Dict[str, Any]) -> None:
        """Publish a domain event if a dispatcher is attached"""
        if self._event_dispatcher is None:
            return
        event = EventPayload(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data
        )
        if self.storage is None:
            self._event_dispatcher.publish(event)
        else:
            self.storage.on_commit(partial(self._event_dispatcher.publish, event))
