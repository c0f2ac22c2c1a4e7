import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_audit.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from datetime import date, timedelta
from types import SimpleNamespace
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from app.main import app
from app.core.database import get_async_session
from app.core.security import create_access_token
from app.models import (
    AuditManagerWarehouse, AuditTeamAssignment, Item, StockLevel, User, Warehouse
)
from app.models.base import Base
from app.schemas.audit.session import AuditSessionCreate
from app.services.audit.events import event_bus


@pytest.fixture
async def engine(tmp_path):
    """Fresh file-backed database per test; a file so separate connections can race"""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(session_factory) -> SimpleNamespace:
    """
    Users, two warehouses and three stocked items in the main warehouse
    (on hand 10, 5 and 0). The manager runs the main warehouse and two
    auditors are on its team; the outsider has no assignment.
    """
    async with session_factory() as session:
        admin = User(email="admin@example.com", username="admin", full_name="Alice Admin", role="admin")
        manager = User(email="manager@example.com", username="manager", full_name="Mona Manager", role="audit_manager")
        other_manager = User(email="north@example.com", username="north", full_name="Nabil North", role="audit_manager")
        auditor = User(email="auditor@example.com", username="auditor", full_name="Umar Auditor", role="audit_user")
        auditor2 = User(email="auditor2@example.com", username="auditor2", full_name="Ursula Second", role="audit_user")
        outsider = User(email="outsider@example.com", username="outsider", full_name="Oscar Outsider", role="audit_user")
        main = Warehouse(code="WH-01", name="Main Warehouse", city="Dhaka")
        north = Warehouse(code="WH-02", name="North Depot", city="Rajshahi")
        rice = Item(item_code="ITM-001", name="Rice")
        sugar = Item(item_code="ITM-002", name="Sugar")
        salt = Item(item_code="ITM-003", name="Salt")
        retired = Item(item_code="ITM-999", name="Retired Item", is_active=False)
        session.add_all([admin, manager, other_manager, auditor, auditor2, outsider, main, north, rice, sugar, salt, retired])
        await session.flush()

        session.add_all([
            StockLevel(item_id=rice.id, warehouse_id=main.id, current_stock=10),
            StockLevel(item_id=sugar.id, warehouse_id=main.id, current_stock=5),
            StockLevel(item_id=salt.id, warehouse_id=main.id, current_stock=0),
            StockLevel(item_id=retired.id, warehouse_id=main.id, current_stock=7),
            StockLevel(item_id=rice.id, warehouse_id=north.id, current_stock=40),
            AuditManagerWarehouse(audit_manager_id=manager.id, warehouse_id=main.id, created_by=admin.id),
            AuditManagerWarehouse(audit_manager_id=other_manager.id, warehouse_id=north.id, created_by=admin.id),
            AuditTeamAssignment(audit_user_id=auditor.id, audit_manager_id=manager.id, warehouse_id=main.id),
            AuditTeamAssignment(audit_user_id=auditor2.id, audit_manager_id=manager.id, warehouse_id=main.id),
        ])
        await session.commit()

    return SimpleNamespace(
        admin=admin, manager=manager, other_manager=other_manager,
        auditor=auditor, auditor2=auditor2, outsider=outsider,
        main=main, north=north, rice=rice, sugar=sugar, salt=salt, retired=retired,
    )


@pytest.fixture
def session_payload(seed):
    def _payload(**overrides) -> AuditSessionCreate:
        data = {
            "warehouse_id": seed.main.id,
            "title": "Quarterly stock count",
            "start_date": date.today(),
            "end_date": date.today() + timedelta(days=3),
        }
        data.update(overrides)
        return AuditSessionCreate(**data)
    return _payload


@pytest.fixture
def captured_events():
    """Collect every audit event published during the test"""
    from app.services.audit.events import SessionTransitioned, VerificationRecorded

    events = []
    event_bus.subscribe(VerificationRecorded, events.append)
    event_bus.subscribe(SessionTransitioned, events.append)
    yield events
    event_bus.unsubscribe(VerificationRecorded, events.append)
    event_bus.unsubscribe(SessionTransitioned, events.append)


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test client"""
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers
