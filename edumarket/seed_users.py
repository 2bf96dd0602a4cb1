"""
Database seeding script for development users.

Creates one ADMIN, one TEACHER and one STUDENT and prints a bearer token
for each. Accounts are owned by the auth service in production; these
rows only exist so the ledger endpoints can be exercised locally.
"""

import asyncio

from sqlalchemy import select

from edumarket.app.core.jwt import create_access_token
from edumarket.app.db.session import AsyncSessionLocal, Base, engine
from edumarket.app.domain.ledger.balance_service import BalanceService
from edumarket.app.models.enums import UserRole
from edumarket.app.models.user import User

SEED_USERS = [
    ("admin", "admin@edumarket.local", UserRole.ADMIN),
    ("teacher", "teacher@edumarket.local", UserRole.TEACHER),
    ("student", "student@edumarket.local", UserRole.STUDENT),
]


async def seed_users():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        for username, email, role in SEED_USERS:
            result = await db.execute(select(User).where(User.username == username))
            user = result.scalar_one_or_none()
            if user is None:
                user = User(email=email, username=username, full_name=username.title(), role=role)
                db.add(user)
                await db.commit()
                print(f"✅ Created {role.value} user ({username})")
            else:
                print(f"ℹ️  {role.value} user ({username}) already exists")

            if role == UserRole.TEACHER:
                await BalanceService.get_or_create(db, user.id)

            token = create_access_token({"sub": username, "user_id": user.id, "role": role.value})
            print(f"   Bearer {token}")

    print("\n🎉 User seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(seed_users())
