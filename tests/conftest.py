from contextlib import contextmanager
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.base import Base
from libs.db.session import get_async_db, get_session_factory
from services.checkout_service import models as _checkout_models  # noqa: F401
from services.checkout_service.app.main import app
from services.checkout_service.dependencies import (
    get_gateway_resolver,
    get_payments_provider,
)
from services.checkout_service.models import PaymentProvider
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from tests.stubs import StubGateway

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def make_customer_user(email: str = "buyer@example.com", **overrides) -> AuthUser:
    data = {"sub": "buyer-1", "email": email, "role": "customer"}
    data.update(overrides)
    return AuthUser(**data)


def make_vendor_user(storefront_id, role: str = "owner", **overrides) -> AuthUser:
    data = {
        "sub": "vendor-1",
        "email": "vendor@example.com",
        "role": role,
        "storefront_id": str(storefront_id),
    }
    data.update(overrides)
    return AuthUser(**data)


def make_service_user() -> AuthUser:
    return AuthUser(sub="cron", role="service_role")


@contextmanager
def override_auth(target_app, user: AuthUser):
    """Temporarily authenticate every request as ``user``."""
    previous = target_app.dependency_overrides.get(get_current_user)
    target_app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield user
    finally:
        if previous is None:
            target_app.dependency_overrides.pop(get_current_user, None)
        else:
            target_app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """
    A fresh in-memory database per test. StaticPool keeps every session on the one
    connection so data written in one unit of work is visible to the next.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def seed(session_factory):
    """Insert model instances in one committed transaction."""

    async def _seed(*instances):
        async with session_factory() as session:
            session.add_all(instances)
            await session.commit()
        return instances

    return _seed


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


@pytest.fixture
def stub_gateway() -> StubGateway:
    return StubGateway(PaymentProvider.PAYSTACK)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(session_factory, stub_gateway) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to the checkout app with database, gateway and a
    default customer identity overridden.
    """

    async def _db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_payments_provider] = lambda: stub_gateway.provider
    app.dependency_overrides[get_gateway_resolver] = lambda: stub_gateway.resolve
    app.dependency_overrides[get_current_user] = lambda: make_customer_user()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
