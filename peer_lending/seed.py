"""
Demo data

An admin, one Loaner and one Loanee already connected to each other. Every
demo account uses the password "password".
"""

import asyncio
from typing import List

from .auth import generate_salt, hash_password
from .currency import Currency
from .users import BankAccount, User, UserRole

DEMO_PASSWORD = "password"

DEMO_USERS = [
    {
        "user_id": "admin-1",
        "name": "Platform Admin",
        "email": "admin@prizzys.com",
        "role": UserRole.ADMIN,
    },
    {
        "user_id": "loaner-1",
        "name": "John Lender",
        "email": "loaner@test.com",
        "role": UserRole.LOANER,
        "phone": "08012345678",
    },
    {
        "user_id": "loanee-1",
        "name": "Jane Borrower",
        "email": "loanee@test.com",
        "role": UserRole.LOANEE,
        "phone": "08087654321",
        "currency": Currency.NGN,
        "bank_account": BankAccount(
            account_number="1234567890",
            account_name="Jane Doe",
            bank_name="Zenith Bank"
        ),
    },
]


async def seed_demo_data(system) -> List[User]:
    """
    Create the demo accounts and connect the demo Loaner and Loanee
    
    Skips silently when the demo admin already exists.
    """
    if await system.user_manager.get_user_by_email(DEMO_USERS[0]["email"]):
        return []
    
    salts = [generate_salt() for _ in DEMO_USERS]
    hashes = [await asyncio.to_thread(hash_password, DEMO_PASSWORD, salt) for salt in salts]
    
    created = []
    async with system.storage.atomic():
        for profile, salt, password_hash in zip(DEMO_USERS, salts, hashes):
            created.append(await system.user_manager.create_user(
                password_hash=password_hash,
                password_salt=salt,
                **profile
            ))
        await system.network.connect("loaner-1", "loanee-1")
    
    system.logger.info(f"Seeded {len(created)} demo users")
    return created
