"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import MagicMock
from freezegun import freeze_time

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LOG_SLOW_OPERATION_THRESHOLD_MS", "500")

from estate_core.models.identity import Caller, UserRole
from estate_core.services.appointment_manager import AppointmentManager
from estate_core.services.listing_manager import ListingManager
from estate_core.services.media_resolver import MediaReferenceResolver, MediaSigner
from estate_core.services.memory_store import InMemoryStore
from estate_core.services import registry
from estate_core.utils.config import StoreConfig
from estate_core.utils.errors import MediaResolutionError


class FakeSigner(MediaSigner):
    """Deterministic signer that records calls and fails for chosen keys."""

    def __init__(self):
        self.calls = []
        self.failing = set()

    def sign(self, key: str, expires_in: int) -> str:
        self.calls.append((key, expires_in))
        if key in self.failing:
            raise MediaResolutionError(f"cannot sign {key}", entity_id=key)
        return f"https://media.test/{key}?expires_in={expires_in}"


@pytest.fixture
def store_config():
    """In-memory store configuration."""
    return StoreConfig(backend="memory")


@pytest.fixture
def memory_store(store_config):
    """Fresh in-memory entity store."""
    return InMemoryStore(store_config)


@pytest.fixture
def fake_signer():
    return FakeSigner()


@pytest.fixture
def media_resolver(fake_signer):
    return MediaReferenceResolver(fake_signer, expires_in=1800)


@pytest.fixture
def listing_manager(memory_store, media_resolver):
    return ListingManager(memory_store, media_resolver)


@pytest.fixture
def appointment_manager(memory_store):
    return AppointmentManager(memory_store)


@pytest.fixture
def client_caller():
    return Caller(user_id="client-1", role=UserRole.CLIENT)


@pytest.fixture
def agent_caller():
    return Caller(user_id="agent-x", role=UserRole.AGENT)


@pytest.fixture
def other_agent_caller():
    return Caller(user_id="agent-y", role=UserRole.AGENT)


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client for testing."""
    client = MagicMock()
    client.table = MagicMock(return_value=MagicMock())
    return client


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time


@pytest.fixture
def services(store_config, memory_store, fake_signer):
    """Point the global registry at an in-memory store for handler tests."""
    registry.reset_services()
    registry.configure_services(store_config, store=memory_store, signer=fake_signer)
    yield registry
    registry.reset_services()


@pytest.fixture
def bypass_auth(monkeypatch):
    """Accept development tokens of the form <user_id>:<Role>."""
    monkeypatch.setenv("AUTH_BYPASS_VERIFY", "true")


@pytest.fixture(scope="function")
def reset_environment(monkeypatch):
    """Reset environment variables for each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
