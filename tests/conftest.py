# tests/conftest.py

import pytest
from starlette.testclient import TestClient
from unittest.mock import MagicMock, patch

from payflow.main import app
from payflow.api import deps
from payflow.db.session import get_db
from payflow.schemas.token import TokenPayload

TEST_USER_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"


# --- Mock Dependencies Setup ---
def override_get_current_user():
    return TokenPayload(sub=TEST_USER_ID)


def override_get_notifier():
    """Provides a mock notifier that publishes nothing."""
    yield MagicMock()


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def test_client():
    """
    Provides a TestClient where the database, authentication, Redis, the
    gateway registry and Kafka are mocked. No external service is touched.
    """
    app.dependency_overrides[get_db] = lambda: MagicMock()
    app.dependency_overrides[deps.get_current_user] = override_get_current_user
    app.dependency_overrides[deps.get_notifier] = override_get_notifier
    app.dependency_overrides[deps.get_gateways] = lambda: MagicMock()
    app.dependency_overrides[deps.get_redis] = lambda: MagicMock()

    # The lifespan handler builds the real gateway registry; keep it offline.
    with patch("payflow.main.get_gateway_factory") as mock_factory:
        mock_factory.return_value.list_methods.return_value = []
        with TestClient(app) as client:
            yield client

    app.dependency_overrides.clear()


@pytest.fixture
def user_id():
    return TEST_USER_ID
