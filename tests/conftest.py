"""Shared pytest fixtures for shopledger tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from shopledger.api.factory import create_app  # noqa: E402
from shopledger.config import Settings  # noqa: E402
from shopledger.domain.ledger import InMemoryLedger  # noqa: E402

from .helpers import TEST_APP_SECRET, TEST_VERIFY_TOKEN, RecordingSender  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        verify_token=TEST_VERIFY_TOKEN,
        app_secret=TEST_APP_SECRET,
        access_token="test-access-token",
        phone_number_id="123456789",
        app_env="test",
        ledger_backend="memory",
    )


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def client(settings, ledger, sender) -> TestClient:
    app = create_app(settings, ledger=ledger, sender=sender)
    return TestClient(app)
