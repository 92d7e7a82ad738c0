"""
Shared test fixtures
"""

import pytest
from datetime import datetime, timezone

from banking_api.config import BankingConfig
from banking_api.credentials import StorageCredentialStore
from banking_api.permissions import PermissionPolicy
from banking_api.storage import InMemoryStorage
from banking_api.tokens import TokenService


TEST_SECRET = "test-secret-key-with-at-least-32-bytes!!"


class FakeClock:
    """Settable clock for token expiry tests"""

    def __init__(self, now: datetime = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


def make_config(**overrides) -> BankingConfig:
    """Test configuration: in-memory storage, in-process verification"""
    values = {
        "jwt_secret": TEST_SECRET,
        "database_url": "memory://",
        "auth_mode": "local",
        "wait_for_auth_service": False,
        "seed_demo_data": True,
    }
    values.update(overrides)
    return BankingConfig(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_service(clock):
    return TokenService(TEST_SECRET, clock=clock)


@pytest.fixture
def storage():
    """Create in-memory storage for tests"""
    return InMemoryStorage()


@pytest.fixture
def credential_store(storage):
    store = StorageCredentialStore(storage)
    store.create_user("admin", "admin123", "admin")
    store.create_user("alice", "secret1", "user", "42")
    return store


@pytest.fixture
def policy():
    return PermissionPolicy()
