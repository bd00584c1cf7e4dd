# tests/conftest.py
import os

# Settings are read at import time; point the app at throwaway values first.
os.environ["ENV"] = "local"
os.environ["DATABASE_URL_LOCAL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["WAITLIST_SCHEDULER_ENABLED"] = "false"

import pytest
from starlette.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api import deps
from app.core.limiter import limiter
from app.models import Base
from app.services.waitlist_services import build_waitlist_services
from tests.utils.fakes import FakeCalendar, FakeNotifier


# --- Test Database Setup ---
# One shared in-memory connection so every session sees the same data.
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def calendar():
    return FakeCalendar()


@pytest.fixture(scope="function")
def notifier():
    return FakeNotifier()


@pytest.fixture(scope="function")
def services(db_session, calendar, notifier):
    """All waitlist components wired around the test session and fakes."""
    return build_waitlist_services(db_session, calendar=calendar, notifier=notifier)


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def client(db_session, calendar, notifier):
    """
    TestClient backed by the in-memory database and fake collaborators.
    Authentication is real: use tests.utils.auth for headers.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_calendar] = lambda: calendar
    app.dependency_overrides[deps.get_notifier] = lambda: notifier
    app.dependency_overrides[deps.get_session_factory] = lambda: TestingSessionLocal
    limiter.reset()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
