"""Pytest configuration - in-memory database, sessions and API client."""

import os

# Set test database URL BEFORE any imports from src
# This ensures the SessionLocal and engine use the test database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("PERSISTENCE_RETRY_BACKOFF", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from src.models import Base  # noqa: E402
from src.services import build_engine, get_db  # noqa: E402
from src.services.document_storage import LocalDocumentStorage  # noqa: E402


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    """Document storage rooted in a temporary directory."""
    return LocalDocumentStorage(str(tmp_path / "uploads"))


@pytest.fixture
def client(session_factory, storage):
    """API client bound to the test database and storage."""
    from src.api.app import create_app
    from src.api.expenses import get_document_storage

    app = create_app(with_lifespan=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_document_storage] = lambda: storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
