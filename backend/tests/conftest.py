"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.dependencies import get_cipher, get_provider
from database import Base, get_db
from main import app
from services.item_status_service import ItemStatusReconciler
from services.link_session_service import LinkSessionCompleter
from services.sync_trigger import TransactionSyncTrigger
from services.transaction_sync_service import TransactionSyncService
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    cipher,
    client_record,
    item,
    link_token,
)
from tests.fixtures.mocks import MockPlaidClient, make_linked_item


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mock_plaid_client")
def mock_plaid_client_fixture():
    """Mock Plaid gateway that links ``public-sandbox-new`` to one item."""
    return MockPlaidClient(items={"public-sandbox-new": make_linked_item("new")})


@pytest.fixture(name="sync_service")
def sync_service_fixture(mock_plaid_client, cipher):
    return TransactionSyncService(mock_plaid_client, cipher, max_retries=3)


@pytest.fixture(name="sync_trigger")
def sync_trigger_fixture(sync_service):
    return TransactionSyncTrigger(sync_service, initial_sync_on_link=True)


@pytest.fixture(name="reconciler")
def reconciler_fixture(sync_trigger):
    return ItemStatusReconciler(sync_trigger)


@pytest.fixture(name="completer")
def completer_fixture(mock_plaid_client, cipher, sync_trigger):
    return LinkSessionCompleter(mock_plaid_client, cipher, sync_trigger)


@pytest.fixture(name="client")
def client_fixture(db, cipher, mock_plaid_client):
    """Create a test client with the test database and mock gateway."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider] = lambda: mock_plaid_client
    app.dependency_overrides[get_cipher] = lambda: cipher
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
