"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-openai-key")
os.environ.setdefault("MOCK_OPENAI", "true")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_stripe_publishable_key")
os.environ.setdefault("CLIENT_COOKIE_SECURE", "false")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "1000")
os.environ.setdefault("SPLIT_PART_DELAY_SECONDS", "0")
os.environ.setdefault("FOLLOW_UP_DELAY_SECONDS", "0")
os.environ.setdefault("AUTO_TRANSITION_DELAY_SECONDS", "0")
os.environ.setdefault("AUTO_COMPLETE_DELAY_SECONDS", "0")

from src.schemas.chat import ChatRequest, ChatResponse  # noqa: E402
from src.services.storage_service import InMemoryKeyValueStore, StorageService  # noqa: E402


class FakeChatBackend:
    """Chat backend answering from a script, recording every request.

    Scripted items are returned in order; an exception instance is raised
    instead. Once the script runs out ``default`` answers.
    """

    def __init__(
        self,
        script: list[ChatResponse | Exception] | None = None,
        default: Callable[[ChatRequest], ChatResponse] | None = None,
    ) -> None:
        self.script = list(script or [])
        self.default = default or (lambda request: ChatResponse(content="了解です"))
        self.requests: list[ChatRequest] = []

    async def send(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default(request)


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def fake_backend() -> FakeChatBackend:
    """Provide an empty scripted chat backend."""
    return FakeChatBackend()


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
    """Provide a fresh in-memory key/value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def storage(memory_store: InMemoryKeyValueStore) -> StorageService:
    """Provide a storage service on the in-memory store."""
    return StorageService(memory_store, "client-1")


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    # Configure default mock responses
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    The app runs in mock OpenAI mode with in-memory lab storage.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def scripted_client(mock_supabase_client: MagicMock) -> Generator[tuple[TestClient, FakeChatBackend], None, None]:
    """Provide a test client whose chat backend is a scripted fake.

    Yields:
        tuple: The client and the fake backend it talks to.
    """
    from src.main import app

    backend = FakeChatBackend()
    with patch("src.main.create_chat_backend", return_value=backend), TestClient(app) as test_client:
        yield test_client, backend
