"""Unit tests for SessionArchiveService."""

from unittest.mock import MagicMock, patch

import pytest

from src.models.phase import ChatPhase
from src.schemas.chat import FragranceRecipe, LabSessionSnapshot
from src.services.message_parser import create_message
from src.services.session_archive_service import SessionArchiveService


@pytest.fixture
def mock_supabase() -> MagicMock:
    return MagicMock()


@pytest.fixture
def archive(mock_supabase: MagicMock) -> SessionArchiveService:
    with patch("src.services.session_archive_service.get_supabase_client", return_value=mock_supabase):
        return SessionArchiveService()


class TestSaveSession:
    """Tests for save_session method."""

    @pytest.mark.asyncio
    async def test_upserts_snapshot(self, archive: SessionArchiveService, mock_supabase: MagicMock) -> None:
        """Test that phase, transcript and recipe are stored."""
        mock_supabase.table.return_value.upsert.return_value.execute.return_value.data = []
        snapshot = LabSessionSnapshot(
            session_id="session-1",
            messages=[create_message("assistant", "今日はどんな香りつくる？")],
            current_phase=ChatPhase.FINALIZED,
        )
        recipe = FragranceRecipe(name="森の朝", top_notes=["レモン"])

        row = await archive.save_session(snapshot, recipe)

        mock_supabase.table.assert_called_with("fragrance_sessions")
        assert row["id"] == "session-1"
        assert row["phase"] == "finalized"
        assert row["message_history"][0]["content"] == "今日はどんな香りつくる？"
        assert row["fragrance_recipe"]["top_notes"] == ["レモン"]

    @pytest.mark.asyncio
    async def test_returns_stored_row(self, archive: SessionArchiveService, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.upsert.return_value.execute.return_value.data = [{"id": "session-1"}]

        row = await archive.save_session(LabSessionSnapshot(session_id="session-1"))

        assert row == {"id": "session-1"}


class TestGetSession:
    """Tests for get_session method."""

    @pytest.mark.asyncio
    async def test_found(self, archive: SessionArchiveService, mock_supabase: MagicMock) -> None:
        mock_response = MagicMock()
        mock_response.data = {"id": "session-1", "phase": "complete"}
        mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.return_value = mock_response

        assert (await archive.get_session("session-1"))["phase"] == "complete"

    @pytest.mark.asyncio
    async def test_not_found(self, archive: SessionArchiveService, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.select.return_value.eq.return_value.maybe_single.return_value.execute.return_value = None

        assert await archive.get_session("missing") is None
