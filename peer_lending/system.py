"""
Lending system wiring

Builds every manager over one injected storage backend and event dispatcher.
"""

from typing import Optional

from .async_storage import AsyncStorageInterface, AsyncPostgreSQLStorage, create_async_storage
from .audit import AuditTrail
from .auth import AuthService, Session
from .config import LendingConfig, get_config
from .currency import Currency
from .events import EventDispatcher
from .invites import InviteManager
from .loans import LoanManager
from .logging_config import get_logger
from .network import NetworkGraph
from .queries import LoanQueries
from .users import UserManager


class LendingSystem:
    """Peer lending core with all components initialized"""
    
    def __init__(
        self,
        storage: Optional[AsyncStorageInterface] = None,
        config: Optional[LendingConfig] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_async_storage(
            self.config.storage_type, self.config.database_url, self.config.database_pool_size
        )
        self.logger = get_logger("peer_lending.system")
        
        self.events = EventDispatcher()
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.user_manager = UserManager(
            self.storage, self.audit_trail, self.events,
            default_currency=Currency.from_code(self.config.default_currency)
        )
        self.network = NetworkGraph(self.user_manager, self.audit_trail, self.events)
        self.invite_manager = InviteManager(
            self.storage, self.user_manager, self.network, self.audit_trail, self.events
        )
        self.auth = AuthService(
            self.user_manager, self.invite_manager, self.audit_trail,
            password_min_length=self.config.password_min_length,
            event_dispatcher=self.events
        )
        self.loan_manager = LoanManager(
            self.storage, self.user_manager, self.audit_trail, self.events
        )
        self.queries = LoanQueries(self.user_manager, self.loan_manager, self.network)
    
    async def initialize(self) -> None:
        """Open backend connections and seed demo data when configured"""
        if isinstance(self.storage, AsyncPostgreSQLStorage):
            await self.storage.initialize()
        
        if self.config.seed_demo_data:
            from .seed import seed_demo_data
            await seed_demo_data(self)
        
        self.logger.info(f"Lending system ready ({self.config.storage_type} storage)")
    
    async def close(self) -> None:
        await self.storage.close()
    
    def create_session(self) -> Session:
        """New signed-out session sharing this system's dispatcher"""
        return Session(self.auth, self.events)
