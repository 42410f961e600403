import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from intake.core.cache import MemoryCache
from intake.core.db import Base
from intake.core.lock import MutationLock
from intake.models.directory import AUDIT_SCHEMA, TEAM_SCHEMA, USER_SCHEMA
from intake.models.ticket import TICKET_SCHEMA
from intake.services.audit_service import AuditService
from intake.services.blob_store import LocalBlobStore
from intake.services.ticket_service import TicketService
from intake.store.schema import bootstrap
from intake.store.tabular import MemoryTabularStore, SqlTabularStore

ALL_SCHEMAS = [TICKET_SCHEMA, USER_SCHEMA, TEAM_SCHEMA, AUDIT_SCHEMA]


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def engine(tmp_path):
    # Setup a file-backed SQLite database per test
    engine = create_engine(f"sqlite:///{tmp_path / 'sheets.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def store(engine):
    store = SqlTabularStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    bootstrap(store, ALL_SCHEMAS)
    return store


@pytest.fixture
def memory_store():
    store = MemoryTabularStore()
    bootstrap(store, ALL_SCHEMAS)
    return store


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def lock():
    # Unique name so tests never share a process-level lock
    return MutationLock(name=f"test-{uuid.uuid4().hex}", timeout=5)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(root=str(tmp_path / "uploads"), base_url="http://files.test")


@pytest.fixture
def audit(store, cache, clock):
    return AuditService(store, cache, clock)


@pytest.fixture
def ticket_service(store, cache, lock, blob_store, audit, clock):
    return TicketService(store, cache, lock, blob_store, audit, clock)


@pytest.fixture
def memory_ticket_service(memory_store, cache, lock, blob_store, clock):
    return TicketService(memory_store, cache, lock, blob_store, AuditService(memory_store, cache, clock), clock)
