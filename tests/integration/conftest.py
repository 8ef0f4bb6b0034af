"""
Integration test fixtures.

A full FastAPI test client over an in-memory database, with storage, the
message publisher and the view counter replaced by in-process fakes.
"""

from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from streamvault.api.main import app
from streamvault.models import get_db


@pytest.fixture
def mock_publisher() -> MagicMock:
    publisher = MagicMock()
    publisher.publish_run_trigger.return_value = None
    return publisher


@pytest.fixture
def view_counter() -> MagicMock:
    return MagicMock()


@pytest.fixture(scope="function")
def client(db_engine, media_store, mock_publisher, view_counter) -> Generator[TestClient, None, None]:
    """Create a test client with overridden dependencies."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    # Patch services where they're used (not where they're defined)
    with patch("streamvault.api.main.MediaStore", return_value=media_store), \
         patch("streamvault.api.routers.media.MediaStore", return_value=media_store), \
         patch("streamvault.api.routers.stream.MediaStore", return_value=media_store), \
         patch("streamvault.api.routers.stream.get_view_counter", return_value=view_counter), \
         patch("streamvault.services.intake.get_publisher", return_value=mock_publisher):
        app.dependency_overrides[get_db] = override_get_db
        with TestClient(app) as test_client:
            yield test_client
        app.dependency_overrides.clear()
