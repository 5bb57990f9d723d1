"""
Tests for demo data seeding and system wiring
"""

import pytest

from peer_lending.async_storage import AsyncInMemoryStorage
from peer_lending.seed import DEMO_PASSWORD, seed_demo_data
from peer_lending.system import LendingSystem
from peer_lending.users import UserRole


class TestSeed:
    
    @pytest.mark.asyncio
    async def test_seed_creates_connected_demo_users(self, system):
        created = await seed_demo_data(system)
        
        assert [u.role for u in created] == [UserRole.ADMIN, UserRole.LOANER, UserRole.LOANEE]
        assert await system.network.is_connected("loaner-1", "loanee-1")
        loanee = await system.user_manager.require_user("loanee-1")
        assert loanee.bank_account.bank_name == "Zenith Bank"
        assert (await system.auth.authenticate("loaner@test.com", DEMO_PASSWORD)).id == "loaner-1"
    
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, system):
        await seed_demo_data(system)
        
        assert await seed_demo_data(system) == []
        assert len(await system.user_manager.list_users()) == 3
    
    @pytest.mark.asyncio
    async def test_initialize_seeds_when_configured(self, config):
        config.seed_demo_data = True
        lending_system = LendingSystem(storage=AsyncInMemoryStorage(), config=config)
        
        await lending_system.initialize()
        
        assert await lending_system.user_manager.get_user("admin-1") is not None
        await lending_system.close()
