"""Unit tests for StorageService and its key/value stores."""

from unittest.mock import MagicMock, patch

import pytest

from src.models.phase import ChatPhase
from src.schemas.chat import FragranceRecipe, SelectedScents
from src.services.message_parser import create_message
from src.services.storage_service import (
    DEFAULT_STORED_RECIPE_DESCRIPTION,
    DEFAULT_STORED_RECIPE_NAME,
    InMemoryKeyValueStore,
    StorageKey,
    StorageService,
    SupabaseKeyValueStore,
)


class FailingStore:
    """Key/value store whose every call fails."""

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self, *args: object) -> None:
        self.calls += 1
        raise ConnectionError("storage unavailable")

    get = _fail
    set = _fail
    delete = _fail
    delete_all = _fail


class TestChatHistory:
    """Tests for chat history persistence."""

    def test_round_trip(self, storage: StorageService) -> None:
        """Test that saved messages are read back intact."""
        messages = [create_message("assistant", "今日はどんな香りつくる？"), create_message("user", "爽やか")]
        storage.save_chat_history(messages)

        assert storage.get_chat_history() == messages

    def test_empty_by_default(self, storage: StorageService) -> None:
        """Test that a fresh namespace has no history."""
        assert storage.get_chat_history() == []

    def test_unreadable_history_is_discarded(
        self, memory_store: InMemoryKeyValueStore, storage: StorageService
    ) -> None:
        """Test that malformed stored data yields an empty history."""
        memory_store.set("client-1", StorageKey.CHAT_HISTORY.value, [{"role": "nobody"}])

        assert storage.get_chat_history() == []


class TestRecipe:
    """Tests for recipe persistence."""

    def test_save_applies_defaults(self, storage: StorageService, memory_store: InMemoryKeyValueStore) -> None:
        """Test that name and description default when omitted."""
        stored = storage.save_recipe(["レモン"], ["ローズ"], ["バニラ"])

        assert stored == {
            "name": DEFAULT_STORED_RECIPE_NAME,
            "description": DEFAULT_STORED_RECIPE_DESCRIPTION,
            "top_notes": ["レモン"],
            "middle_notes": ["ローズ"],
            "base_notes": ["バニラ"],
        }
        assert memory_store.get("client-1", "selected_recipe") == stored

    def test_get_recipe(self, storage: StorageService) -> None:
        """Test reading the recipe back as a model."""
        storage.save_recipe(["レモン"], ["ローズ"], ["バニラ"], name="朝の光", description="爽やか")

        assert storage.get_recipe() == FragranceRecipe(
            name="朝の光",
            description="爽やか",
            top_notes=["レモン"],
            middle_notes=["ローズ"],
            base_notes=["バニラ"],
        )

    def test_missing_recipe(self, storage: StorageService) -> None:
        """Test that no stored recipe yields None."""
        assert storage.get_recipe() is None


class TestSessionKeys:
    """Tests for session id, last visit and session state."""

    def test_session_id(self, storage: StorageService) -> None:
        """Test saving and reading the session id."""
        storage.save_session_id("session-123")
        assert storage.get_session_id() == "session-123"

    def test_last_visit_in_milliseconds(self, storage: StorageService) -> None:
        """Test that the last visit is stored as epoch milliseconds."""
        storage.save_last_visit(1700000000.5)
        assert storage.get_last_visit() == 1700000000500

    def test_session_state(self, storage: StorageService) -> None:
        """Test saving and reading phase and selection."""
        scents = SelectedScents(top=["レモン"], middle=["ローズ"])
        storage.save_session_state(ChatPhase.BASE, scents)

        assert storage.get_session_state() == (ChatPhase.BASE, scents)

    def test_unknown_phase_is_discarded(self, memory_store: InMemoryKeyValueStore, storage: StorageService) -> None:
        """Test that a state with an unknown phase is ignored."""
        memory_store.set("client-1", StorageKey.SESSION.value, {"current_phase": "bogus"})

        assert storage.get_session_state() is None

    def test_namespaces_are_isolated(self, memory_store: InMemoryKeyValueStore) -> None:
        """Test that clients do not see each other's keys."""
        StorageService(memory_store, "a").save_session_id("session-a")

        assert StorageService(memory_store, "b").get_session_id() is None


class TestClear:
    """Tests for clearing keys."""

    def test_clear_one_key(self, storage: StorageService) -> None:
        """Test that clear removes only the named key."""
        storage.save_session_id("session-123")
        storage.save_recipe(["レモン"], [], [])

        storage.clear(StorageKey.SELECTED_RECIPE)

        assert storage.get_recipe() is None
        assert storage.get_session_id() == "session-123"

    def test_clear_all(self, storage: StorageService) -> None:
        """Test that clear_all empties the namespace."""
        storage.save_session_id("session-123")
        storage.save_chat_history([create_message("user", "hi")])

        storage.clear_all()

        assert storage.get_session_id() is None
        assert storage.get_chat_history() == []


class TestDegradedMode:
    """Tests for the in-memory fallback after a storage failure."""

    def test_write_failure_does_not_raise(self) -> None:
        """Test that a failing backend is tolerated."""
        service = StorageService(FailingStore(), "client-1")

        service.save_session_id("session-123")

        assert service.degraded is True
        assert service.get_session_id() == "session-123"

    def test_read_failure_does_not_raise(self) -> None:
        """Test that a failing read yields no data."""
        service = StorageService(FailingStore(), "client-1")

        assert service.get_recipe() is None
        assert service.degraded is True

    def test_backend_not_retried_once_degraded(self) -> None:
        """Test that later calls go straight to memory."""
        store = FailingStore()
        service = StorageService(store, "client-1")

        service.save_session_id("session-123")
        service.save_recipe(["レモン"], [], [])
        service.get_recipe()

        assert store.calls == 1


class TestSupabaseKeyValueStore:
    """Tests for the Supabase-backed store."""

    @pytest.fixture
    def mock_supabase(self) -> MagicMock:
        """Create a mock Supabase client."""
        return MagicMock()

    @pytest.fixture
    def store(self, mock_supabase: MagicMock) -> SupabaseKeyValueStore:
        """Create the store with a mocked client."""
        with patch("src.services.storage_service.get_supabase_client", return_value=mock_supabase):
            return SupabaseKeyValueStore()

    def test_get_returns_value(self, store: SupabaseKeyValueStore, mock_supabase: MagicMock) -> None:
        """Test reading a stored value."""
        mock_response = MagicMock()
        mock_response.data = {"value": "session-123"}
        mock_supabase.table.return_value.select.return_value.eq.return_value.eq.return_value.maybe_single.return_value.execute.return_value = mock_response

        assert store.get("client-1", "chat_session_id") == "session-123"
        mock_supabase.table.assert_called_with("lab_storage")

    def test_get_missing_row(self, store: SupabaseKeyValueStore, mock_supabase: MagicMock) -> None:
        """Test that a missing row yields None."""
        mock_supabase.table.return_value.select.return_value.eq.return_value.eq.return_value.maybe_single.return_value.execute.return_value = None

        assert store.get("client-1", "chat_session_id") is None

    def test_set_upserts_on_namespace_and_key(self, store: SupabaseKeyValueStore, mock_supabase: MagicMock) -> None:
        """Test that writes upsert one row per namespace/key."""
        store.set("client-1", "chat_session_id", "session-123")

        args, kwargs = mock_supabase.table.return_value.upsert.call_args
        assert args[0]["namespace"] == "client-1"
        assert args[0]["key"] == "chat_session_id"
        assert args[0]["value"] == "session-123"
        assert kwargs == {"on_conflict": "namespace,key"}
