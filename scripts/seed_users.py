import asyncio
import os
import sys

# Ensure app is in path
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.future import select
from app.config import get_settings
from app.database import Base, build_engine_url, unit_of_work
from app.models import Repairman, Shop, User
from app.utils.security import create_token, hash_password

PASSWORD = "password123"

SEED_USERS = [
    {"email": "customer@example.com", "name": "Demo Customer", "phone_number": "+15550000001"},
    {"email": "repairman@example.com", "name": "Demo Repairman", "phone_number": "+15550000002", "is_repairman": True},
    {"email": "shop@example.com", "name": "Demo Garage", "phone_number": "+15550000003", "has_shop": True},
]

async def seed_users():
    settings = get_settings()
    db_url, connect_args = build_engine_url(settings.DATABASE_URL)

    print(f"Connecting to database: {db_url}")

    engine = create_async_engine(db_url, echo=False, connect_args=connect_args)
    async_session = sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        for seed in SEED_USERS:
            result = await session.execute(select(User).filter(User.email == seed["email"]))
            user = result.scalars().first()

            if not user:
                print(f"Creating user {seed['email']}...")
                async with unit_of_work(session):
                    user = User(password_hash=hash_password(PASSWORD), verified=True, **seed)
                    session.add(user)
                    await session.flush()

                    if user.is_repairman:
                        session.add(Repairman(user_id=user.id, skills=["engine", "tyres"], services={"oil change": 25.0}, verified=True))
                    if user.has_shop:
                        session.add(Shop(owner_id=user.id, name=user.name, address="1 Main St", services={}, photos=[]))
            else:
                print(f"User {seed['email']} already exists.")

            print(f"  {user.role}: id={user.id} token={create_token(user)}")

    print(f"All seeded users share the password '{PASSWORD}'.")
    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(seed_users())
