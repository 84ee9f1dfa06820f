from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

import consentlink.models  # noqa: F401  registers every table on Base.metadata
from consentlink.core.caller import Caller
from consentlink.core.database import get_db
from consentlink.main import app
from consentlink.models.base import Base
from consentlink.services.connection_service import accept_connection, create_connection
from consentlink.services.resource_store import InMemoryResourceStore, get_resource_store

CLINIC = "clinic-1"
LAB = "lab-1"
OTHER = "other-1"


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture()
def store():
    return InMemoryResourceStore()


# Callers


@pytest.fixture()
def clinic():
    return Caller(tenant_id=CLINIC, user_id="u-clinic", roles=frozenset({"owner"}))


@pytest.fixture()
def lab():
    return Caller(tenant_id=LAB, user_id="u-lab", roles=frozenset({"manager"}))


@pytest.fixture()
def stranger():
    return Caller(tenant_id=OTHER, user_id="u-other", roles=frozenset({"owner"}))


@pytest.fixture()
def rider():
    return Caller(
        user_id="u-rider",
        profile_id="profile-1",
        email="rider@horsemail.org",
        email_verified=True,
    )


@pytest.fixture()
def accepted_connection(db, clinic, lab, now):
    """clinic -> lab veterinary connection, accepted by the lab."""
    connection = create_connection(
        db,
        caller=clinic,
        initiator_tenant_id=CLINIC,
        connection_type="veterinary",
        recipient_tenant_id=LAB,
        now=now,
    )
    accept_connection(db, caller=lab, token=connection.token, now=now)
    db.refresh(connection)
    return connection


@pytest.fixture()
def client(session_factory, store):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_resource_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
