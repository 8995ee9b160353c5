"""Shared test fixtures for the VoltVend test suite.

Uses a file-backed SQLite database via aiosqlite, one per test.  Every
transaction starts with ``BEGIN IMMEDIATE`` so concurrent sessions are
serialized the way row locks serialize them on PostgreSQL.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

# Keep the application engine off PostgreSQL during tests
os.environ.setdefault("VV_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VV_ENVIRONMENT", "staging")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from voltvend.models.base import Base, utcnow
from voltvend.models.customer import Customer
from voltvend.models.upgrade_entry import KIND_REQUESTED, STATUS_PENDING, UpgradeEntry
from voltvend.models.vendor import Vendor

# Import all models so Base.metadata has them
import voltvend.models  # noqa: F401


class RecordingNotifier:
    """Notification sink that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# ---------------------------------------------------------------------------
# Pure model builders (no database)
# ---------------------------------------------------------------------------

@pytest.fixture
def build_entry() -> Callable[..., UpgradeEntry]:
    def _build(
        delta: int = 500,
        status: str = STATUS_PENDING,
        kind: str = KIND_REQUESTED,
        vendor_id: uuid.UUID | None = None,
    ) -> UpgradeEntry:
        return UpgradeEntry(
            id=uuid.uuid4(),
            vendor_id=vendor_id or uuid.uuid4(),
            kind=kind,
            delta=delta,
            amount_due=0,
            status=status,
            requested_at=utcnow(),
        )

    return _build


@pytest.fixture
def build_vendor() -> Callable[..., Vendor]:
    def _build(
        base_capacity: int = 1000,
        entries: list[UpgradeEntry] | None = None,
        customers_add_enabled: bool = True,
    ) -> Vendor:
        vendor_id = uuid.uuid4()
        entries = entries or []
        for entry in entries:
            entry.vendor_id = vendor_id
        return Vendor(
            id=vendor_id,
            base_capacity=base_capacity,
            customers_add_enabled=customers_add_enabled,
            version=1,
            entries=entries,
        )

    return _build


# ---------------------------------------------------------------------------
# Test database engine (SQLite file via aiosqlite)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def test_engine(tmp_path: Path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]):
    """Yield a fresh async session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# Persisted fixtures
# ---------------------------------------------------------------------------

async def create_vendor(
    session: AsyncSession,
    base_capacity: int = 1000,
    customers: int = 0,
    customers_add_enabled: bool = True,
) -> Vendor:
    vendor = Vendor(
        id=uuid.uuid4(),
        business_name="Test Vendor",
        base_capacity=base_capacity,
        customers_add_enabled=customers_add_enabled,
        entries=[],
    )
    session.add(vendor)
    session.add_all(
        Customer(vendor_id=vendor.id, meter_number=f"MTR-{i:06d}") for i in range(customers)
    )
    await session.flush()
    return vendor


@pytest.fixture
def make_vendor(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory that persists a vendor (and optionally existing customers)."""

    async def _make(**kwargs: Any) -> Vendor:
        vendor = await create_vendor(db_session, **kwargs)
        await db_session.commit()
        return vendor

    return _make


@pytest_asyncio.fixture
async def test_vendor(make_vendor) -> Vendor:
    return await make_vendor()


# ---------------------------------------------------------------------------
# Override FastAPI dependencies for tests
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    notifier: RecordingNotifier,
) -> AsyncClient:
    """Create an httpx AsyncClient wired to the FastAPI app with test DB overrides."""
    from voltvend.api.deps import get_notifier
    from voltvend.database import get_db
    from voltvend.main import app

    async def _override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def vendor_headers(test_vendor: Vendor) -> dict[str, str]:
    return {"X-Actor-Id": str(test_vendor.id), "X-Actor-Role": "vendor"}


@pytest.fixture
def admin_headers_for() -> Callable[..., dict[str, str]]:
    def _headers(*capabilities: str, actor_id: str = "admin-1") -> dict[str, str]:
        return {
            "X-Actor-Id": actor_id,
            "X-Actor-Role": "admin",
            "X-Actor-Capabilities": ",".join(capabilities),
        }

    return _headers


@pytest.fixture
def admin_headers(admin_headers_for) -> dict[str, str]:
    return admin_headers_for(
        "grantCapacity",
        "reduceCapacity",
        "approveUpgrade",
        "rejectUpgrade",
        "restrictVendor",
    )
