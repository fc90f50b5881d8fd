# tests/conftest.py — Shared test fixtures
import os
import uuid
from types import SimpleNamespace

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, MemberRole
from auth import AuthService
from database import get_db_session
from main import app
from membership import MembershipRegistry
from services import ServiceCatalog
from workspaces import WorkspaceService


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(session, name: str, can_create_workspaces: bool = False) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=f"{name}@tasktrack.dev",
        display_name=name.title(),
        can_create_workspaces=can_create_workspaces,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Workspace creator; ADMIN of the ``workspace`` fixture"""
    return await _make_user(db_session, "admin", can_create_workspaces=True)


@pytest_asyncio.fixture
async def member_user(db_session):
    return await _make_user(db_session, "member")


@pytest_asyncio.fixture
async def other_member(db_session):
    return await _make_user(db_session, "colleague")


@pytest_asyncio.fixture
async def visitor_user(db_session):
    return await _make_user(db_session, "visitor")


@pytest_asyncio.fixture
async def outsider(db_session):
    """Registered user with no membership anywhere"""
    return await _make_user(db_session, "outsider")


@pytest_asyncio.fixture
async def workspace(db_session, admin_user, member_user, other_member, visitor_user):
    """Workspace with one service and one user per role.

    Returns plain ids so tests are unaffected by ORM expiry after rollbacks.
    """
    ws = await WorkspaceService(db_session).create_workspace(admin_user.id, "Operations")
    registry = MembershipRegistry(db_session)
    await registry.add_member(admin_user.id, ws.id, member_user.id, MemberRole.MEMBER)
    await registry.add_member(admin_user.id, ws.id, other_member.id, MemberRole.MEMBER)
    await registry.add_member(admin_user.id, ws.id, visitor_user.id, MemberRole.VISITOR)
    service = await ServiceCatalog(db_session).create_service(admin_user.id, ws.id, "Platform")
    return SimpleNamespace(
        id=ws.id,
        invite_code=ws.invite_code,
        service_id=service.id,
        admin=admin_user.id,
        member=member_user.id,
        colleague=other_member.id,
        visitor=visitor_user.id,
    )


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token({"sub": user.id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}
