"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from vendrun.db.base import Base
from vendrun.db.session import configure_sqlite, get_db
from vendrun.main import app
# Import all models to ensure they're registered with Base.metadata
from vendrun.models import *
from vendrun.schemas.run_import import ImportRow
from vendrun.services.entity_resolver import EntityResolver
from vendrun.services.run_lifecycle import RunLifecycleService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from vendrun.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def company(db_session: Session) -> Company:
    """Create a test company."""
    company = Company(name="Lighthouse Vending", time_zone="Australia/Sydney")
    db_session.add(company)
    db_session.commit()
    db_session.refresh(company)
    return company


@pytest.fixture
def other_company(db_session: Session) -> Company:
    company = Company(name="Other Vending")
    db_session.add(company)
    db_session.commit()
    db_session.refresh(company)
    return company


@pytest.fixture
def company_headers(company: Company) -> dict:
    return {"X-Company-ID": str(company.id)}


def make_row(**overrides) -> ImportRow:
    """An import row for machine A-01, coil C1, SKU-1 unless overridden."""
    fields = {
        "machine_code": "A-01",
        "coil_code": "C1",
        "sku_code": "SKU-1",
        "sku_name": "Chocolate Bar",
        "location_name": "Central Station",
        "machine_description": "Lobby snack machine",
        "par": 10,
        "current": 4,
    }
    fields.update(overrides)
    return ImportRow(**fields)


@pytest.fixture
def resolver(db_session: Session, company: Company) -> EntityResolver:
    return EntityResolver(db_session, company.id)


@pytest.fixture
def lifecycle(db_session: Session, company: Company) -> RunLifecycleService:
    return RunLifecycleService(db_session, company.id)


@pytest.fixture
def run(db_session: Session, lifecycle: RunLifecycleService) -> Run:
    """Create an empty DRAFT run."""
    run = lifecycle.create_run(picker_id="picker-1")
    db_session.commit()
    return run


@pytest.fixture
def three_entities(db_session: Session, resolver: EntityResolver):
    """Three resolved coil items on machine A-01."""
    entities = [
        resolver.resolve(make_row(coil_code=f"C{i}", sku_code=f"SKU-{i}", current=i + 1), i)
        for i in range(1, 4)
    ]
    db_session.commit()
    return entities


@pytest.fixture
def row():
    """Factory for import rows, see ``make_row``."""
    return make_row
