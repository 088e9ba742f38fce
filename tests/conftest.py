"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime, timedelta

# Configure the process before any application module reads settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("DATA_DIR", tempfile.gettempdir())

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import db
from auth import create_dev_token
from db import build_engine
from lifecycle import JobLifecycleManager
from models import Base
from tokens import TokenIssuer


class FakeClock:
    """Controllable replacement for utils.utc_now."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def test_db_url():
    """Create temporary database URL for testing."""
    temp_db = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    temp_db.close()

    yield f"sqlite:///{temp_db.name}"

    try:
        os.unlink(temp_db.name)
    except OSError:
        pass


@pytest.fixture(scope="function")
def test_engine(test_db_url):
    """Create test database engine."""
    engine = build_engine(test_db_url)
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine, monkeypatch):
    """Point the application's engine and session factory at the test database."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(db, "SessionLocal", factory)
    return factory


@pytest.fixture(scope="function")
def test_db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lifecycle(test_db_session, clock):
    return JobLifecycleManager(test_db_session, clock=clock)


@pytest.fixture
def issuer(test_db_session, lifecycle, clock):
    return TokenIssuer(test_db_session, lifecycle, clock=clock)


@pytest.fixture
def queued_job(lifecycle):
    return lifecycle.create(
        user_id=42,
        district_id=7,
        report_type="USER_ACTIVITY",
        report_params={"start_date": "2025-01-01", "end_date": "2025-01-31"},
    )


@pytest.fixture
def completed_job(lifecycle, queued_job):
    lifecycle.mark_processing(queued_job.report_id)
    return lifecycle.mark_completed(
        queued_job.report_id, "s3://bucket/r1.xlsx", filename="USER_ACTIVITY.xlsx"
    )


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a principal."""

    def _headers(user_id: int = 42, district_id: int = 7, roles=("USER",)) -> dict:
        token = create_dev_token(user_id, district_id=district_id, roles=roles)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture(scope="function")
def test_client(session_factory):
    """Create test client bound to the test database, without the lifespan."""
    from app import app

    yield TestClient(app)
