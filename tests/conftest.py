"""
Pytest configuration and fixtures.
"""
import os
import sys
import tempfile
from unittest.mock import MagicMock, patch

import jwt
import pytest

# Add the parent directory to path so we can import the app
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Must be set before the package reads its configuration
os.environ.setdefault("MONDAY_SIGNING_SECRET", "test-signing-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CALCULATE_RATE_LIMIT", "1000/minute")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "monday_calculator_tests.log"))

from fastapi.testclient import TestClient  # noqa: E402

from monday_calculator import config  # noqa: E402
from monday_calculator.main import app  # noqa: E402
from monday_calculator.monday import MondayClient  # noqa: E402
from monday_calculator.store import CalculationLogData, CalculationStore, get_calculation_store  # noqa: E402


@pytest.fixture
def make_token():
    """Sign session claims the way monday.com does."""
    def _make_token(**overrides):
        claims = {
            "accountId": 1234,
            "userId": 5678,
            "backToUrl": "https://example.monday.com/boards/1",
            "shortLivedToken": "short-lived-token",
        }
        claims.update(overrides)
        claims = {key: value for key, value in claims.items() if value is not None}
        return jwt.encode(claims, config.MONDAY_SIGNING_SECRET, algorithm="HS256")
    return _make_token


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": make_token()}


@pytest.fixture
def store():
    """Fresh in-memory calculation store."""
    return CalculationStore("sqlite://")


@pytest.fixture
def log_data():
    """Build CalculationLogData with sensible defaults."""
    def _log_data(**overrides):
        fields = dict(
            item_id="111",
            board_id="999",
            source_column_id="numbers",
            source_value=6.0,
            factor_column_id="numbers1",
            factor_value=7.0,
            target_column_id="numbers2",
            result=42.0,
            account_id="1234",
        )
        fields.update(overrides)
        return CalculationLogData(**fields)
    return _log_data


@pytest.fixture
def monday_client():
    return MagicMock(spec=MondayClient)


@pytest.fixture
def create_client(monday_client):
    """Make every request use the fake monday.com client."""
    with patch("monday_calculator.monday.create_client", return_value=monday_client) as mock_create:
        yield mock_create


@pytest.fixture
def client(store, create_client):
    """Test client wired to the in-memory store and a fake monday.com client."""
    app.dependency_overrides[get_calculation_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
