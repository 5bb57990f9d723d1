"""
Shared fixtures: an in-memory lending system and registered demo parties
"""

import pytest
import pytest_asyncio

from peer_lending.async_storage import AsyncInMemoryStorage
from peer_lending.auth import RegistrationProfile
from peer_lending.config import LendingConfig
from peer_lending.system import LendingSystem
from peer_lending.users import UserRole


TEST_PASSWORD = "secret123"


@pytest.fixture
def config():
    return LendingConfig(
        storage_type="memory",
        jwt_secret="test-secret",
        password_min_length=8,
        log_format="text",
        seed_demo_data=False
    )


@pytest_asyncio.fixture
async def system(config):
    lending_system = LendingSystem(storage=AsyncInMemoryStorage(), config=config)
    yield lending_system
    await lending_system.close()


@pytest.fixture
def register_user(system):
    """Factory that registers a user through the auth service"""
    async def _register(name: str, email: str, role: UserRole, **kwargs):
        return await system.auth.register(RegistrationProfile(
            name=name,
            email=email,
            password=kwargs.pop("password", TEST_PASSWORD),
            role=role,
            **kwargs
        ))
    return _register


@pytest_asyncio.fixture
async def loaner(register_user):
    return await register_user("John Lender", "loaner@test.com", UserRole.LOANER)


@pytest_asyncio.fixture
async def loanee(register_user):
    return await register_user("Jane Borrower", "loanee@test.com", UserRole.LOANEE)


@pytest_asyncio.fixture
async def connected(system, loaner, loanee):
    """A Loaner and Loanee in each other's network, freshly reloaded"""
    await system.network.connect(loaner.id, loanee.id)
    return (
        await system.user_manager.require_user(loaner.id),
        await system.user_manager.require_user(loanee.id)
    )
