"""
Pytest configuration and fixtures

Tests run against a throwaway SQLite file. Data tools and the recorder open
their own sessions on worker threads, so isolation is by clearing every
table after each test rather than by transactional rollback.
"""
import os
import sys
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="coach-api-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["HEALTH_CHECK_SECRET"] = "health-secret-for-tests"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ["LOG_FORMAT"] = "text"
os.environ.pop("REDIS_URL", None)
os.environ.pop("ANTHROPIC_API_KEY", None)
os.environ.pop("SENTRY_DSN", None)

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from core.database import Base, SessionLocal, engine
from core.rate_limit import AdmissionController
from services.ai_observability import AiRequestRecorder
from services.query_analytics import QueryAnalytics
from coach_test_helpers import FakeModelClient


@pytest.fixture(scope="session", autouse=True)
def _create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(autouse=True)
def app_state():
    """Fresh per-process state on the app for every test."""
    from main import app

    app.state.admission = AdmissionController(primary=None)
    app.state.query_analytics = QueryAnalytics()
    app.state.recorder = AiRequestRecorder()
    app.dependency_overrides.clear()
    yield app.state
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_model():
    return FakeModelClient()
