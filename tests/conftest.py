"""
Shared fixtures.

The application reads DATABASE_URL at import time, so the test database is
configured before anything from school_crm is imported. Every test gets a
freshly created schema in a throwaway SQLite file.
"""
import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

_TEST_DB = Path(tempfile.mkdtemp(prefix="school_crm_")) / "test.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB}"
os.environ["DEBUG"] = "false"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from school_crm import models  # noqa: E402,F401
from school_crm.core.module_decorators import clear_module_access_cache  # noqa: E402
from school_crm.database import Base, async_session_factory, engine  # noqa: E402

from tests import factories  # noqa: E402


@pytest.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    clear_module_access_cache()
    yield
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def client():
    from school_crm.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def tenant(db):
    return await factories.create_tenant(db)


@pytest.fixture
async def chain(db, tenant):
    """
    Agent (level 2) -> SubBroker (level 1) -> TopBroker (level 0)

    Agent:     5%   min_amount 50000
    SubBroker: 3.5% TUITION only, min_amount 10000
    TopBroker: 2%   all fee types
    """
    top = await factories.create_broker(db, tenant, "Top Broker", "BRK-001")
    sub = await factories.create_broker(db, tenant, "Sub Broker", "SUB-001", parent=top)
    agent = await factories.create_broker(db, tenant, "Field Agent", "AGT-001", parent=sub)

    agent_rule = await factories.create_rule(
        db, agent, "5", name="Agent - Large Payments", conditions={"min_amount": "50000"}
    )
    sub_rule = await factories.create_rule(
        db, sub, "3.5", name="Sub-Broker - Tuition Only",
        conditions={"fee_types": ["TUITION"], "min_amount": "10000"},
    )
    top_rule = await factories.create_rule(db, top, "2", name="Top Broker - All Fees")

    student = await factories.create_student(db, tenant, broker=agent)

    return SimpleNamespace(
        tenant=tenant,
        top=top,
        sub=sub,
        agent=agent,
        agent_rule=agent_rule,
        sub_rule=sub_rule,
        top_rule=top_rule,
        student=student,
    )
