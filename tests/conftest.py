# tests/conftest.py

import pytest
from starlette.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock, patch

from negotiation_service.main import app
from negotiation_service.db.session import get_db
from negotiation_service.db.base_class import Base
from negotiation_service import models  # noqa: F401

from negotiation_service.core.kafka_producer import get_kafka_producer


# --- Test Database Setup ---
# One in-memory SQLite database per test; StaticPool keeps the single
# connection alive across the TestClient's worker threads.
@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


# --- Kafka Mock ---
@pytest.fixture(scope="function")
def kafka_producer():
    """A mock Kafka producer; tests assert on `send` calls."""
    return MagicMock()


# --- Test Client Fixture ---
@pytest.fixture(scope="function")
def test_client(db, kafka_producer):
    """
    TestClient on the in-memory database with Kafka mocked.
    Authentication is real: use tests.utils.auth for headers.
    """

    def override_get_db():
        yield db

    def override_get_kafka_producer():
        yield kafka_producer

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_kafka_producer] = override_get_kafka_producer

    # Keep the lifespan off the on-disk development database
    with patch("negotiation_service.main.Base.metadata.create_all"):
        with TestClient(app) as client:
            yield client

    app.dependency_overrides.clear()
