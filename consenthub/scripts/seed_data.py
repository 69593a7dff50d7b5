"""Seed demo data for development.

Creates:
- 1 admin, 1 CSR and 1 customer
- 1 guardian customer with one minor dependent
- A "Marketing" preference category with email and SMS opt-in items
- Prints an access token for each user for API testing

Usage:
    python -m consenthub.scripts.seed_data
"""

from __future__ import annotations

import asyncio

import structlog

log = structlog.get_logger(__name__)

_USERS = [
    {"email": "admin@consenthub.example.com", "name": "Admin User", "role": "admin"},
    {"email": "csr@consenthub.example.com", "name": "Support Agent", "role": "csr"},
    {"email": "customer@consenthub.example.com", "name": "Casey Customer", "role": "customer"},
    {
        "email": "guardian@consenthub.example.com",
        "name": "Gale Guardian",
        "role": "customer",
        "minor_dependents": [
            {"id": "minor_001", "name": "Robin Guardian", "age": 12, "relationship": "child"}
        ],
    },
]


async def seed() -> None:
    import consenthub.models  # noqa: F401
    from consenthub.auth.tokens import create_access_token
    from consenthub.config import get_settings
    from consenthub.database import close_db, get_session_factory
    from consenthub.database import init_db as _init_engine
    from consenthub.models.user import User, UserRole
    from consenthub.services.preference import PreferenceService

    settings = get_settings()
    _init_engine(settings)

    tokens: list[dict] = []
    async with get_session_factory()() as db:
        for data in _USERS:
            user = User(
                email=data["email"],
                name=data["name"],
                role=UserRole(data["role"]),
                minor_dependents=data.get("minor_dependents", []),
            )
            db.add(user)
            await db.flush()
            tokens.append(
                {
                    "email": user.email,
                    "role": user.role.value,
                    "token": create_access_token(
                        user_id=user.id,
                        role=user.role,
                        settings=settings,
                        email=user.email,
                        expires_in=86400,  # 24 hours
                    ),
                }
            )
            log.info("seed.user_created", email=user.email, role=user.role.value)

        prefs = PreferenceService(db)
        marketing = await prefs.create_category(name="Marketing", priority=1)
        await prefs.create_item(marketing.id, key="email_offers", name="Email offers", default_value=False)
        await prefs.create_item(marketing.id, key="sms_offers", name="SMS offers", default_value=False)
        await db.commit()

    print("\n" + "=" * 70)
    print("SEED DATA CREATED - Development tokens:")
    print("=" * 70)
    for t in tokens:
        print(f"\nRole: {t['role']}  Email: {t['email']}")
        print(f"Token: {t['token']}")
    print("\n" + "=" * 70)

    await close_db()


if __name__ == "__main__":
    asyncio.run(seed())
