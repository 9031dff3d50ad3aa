"""
Shared fixtures.

Integration tests run against a file-backed SQLite database through
aiosqlite. Every transaction is opened with BEGIN IMMEDIATE so concurrent
sessions serialize on the database write lock (the busy timeout makes the
second writer wait) and SAVEPOINTs behave as they do on PostgreSQL.
"""

import uuid

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from quotedesk.database import AsyncSessionLocal, Base
from quotedesk.models.organization import Organization
from tests.helpers import FakeEmailClient, FakeExtractor

import quotedesk.models  # noqa: F401


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'quotedesk.db'}",
        connect_args={"timeout": 15},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    # Background work opens its own sessions through the app-wide factory.
    AsyncSessionLocal.configure(bind=engine)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def org(db):
    organization = Organization(name="North Fleet Services", slug=f"north-{uuid.uuid4().hex[:8]}")
    db.add(organization)
    await db.flush()
    return organization


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def extractor():
    return FakeExtractor()
