import os

# Set dummy env vars for testing
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["TWILIO_PHONE_NUMBER"] = ""
os.environ["BOOKING_BROADCAST_SCOPE"] = "shop"

import itertools
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from app.database import Base, get_db
from app.dependencies import get_registry, get_session_factory, get_sms
from app.main import app
# Import models to ensure they are registered with Base.metadata
from app.models import User, Repairman, Shop
from app.services.connection_registry import Connection, ConnectionRegistry
from app.services.sms_service import SmsService
from app.utils.security import Identity, create_token, hash_password

# Use SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(SQLALCHEMY_DATABASE_URL, poolclass=NullPool)
TestingSessionLocal = sessionmaker(
    class_=AsyncSession, expire_on_commit=False, bind=engine
)

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


class RecordingSms(SmsService):
    def __init__(self):
        super().__init__()
        self.sent = []

    async def send_otp(self, to, code):
        self.sent.append((to, code))
        return True


async def override_get_db():
    async with TestingSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def prepare_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session(prepare_database):
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def sms():
    return RecordingSms()


@pytest_asyncio.fixture
async def client(prepare_database, registry, sms):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_sms] = lambda: sms
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_user(db_session):
    """Create a verified user (optionally a repairman or shop owner) and a token for them."""
    counter = itertools.count(1)

    async def _make(name="user", is_repairman=False, has_shop=False, verified=True):
        n = next(counter)
        user = User(
            email=f"{name}{n}@example.com",
            password_hash=PASSWORD_HASH,
            name=name,
            phone_number=f"+1555000{n:04d}",
            verified=verified,
            is_repairman=is_repairman,
            has_shop=has_shop,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        if is_repairman:
            db_session.add(Repairman(user_id=user.id, skills=["engine"], services={"oil change": 25.0}, verified=True))
        if has_shop:
            db_session.add(Shop(owner_id=user.id, name=f"{name}'s garage", address="1 Main St", services={}, photos=[]))
        await db_session.commit()
        return user, create_token(user)

    return _make


@pytest_asyncio.fixture
async def connect(registry):
    """Register an in-memory connection for a user, the way the socket endpoint does."""

    async def _connect(user, rooms=()):
        conn = Connection(Identity.from_user(user))
        await registry.register(conn)
        for room in rooms:
            await registry.join(conn, room)
        return conn

    return _connect


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def events(conn, name=None):
    frames = conn.pending()
    if name is None:
        return frames
    return [f["data"] for f in frames if f["event"] == name]
