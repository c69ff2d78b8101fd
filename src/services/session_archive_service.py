"""Archive of lab sessions in the fragrance_sessions table."""

from datetime import datetime, timezone
from typing import Any

from src.core.supabase import get_supabase_client
from src.models.message import FragranceSessionRow
from src.schemas.chat import FragranceRecipe, LabSessionSnapshot


class SessionArchiveService:
    """Service for saving lab session snapshots."""

    TABLE = "fragrance_sessions"

    def __init__(self) -> None:
        """Initialize archive service with Supabase client."""
        self.client = get_supabase_client()

    async def save_session(
        self,
        snapshot: LabSessionSnapshot,
        recipe: FragranceRecipe | None = None,
    ) -> dict[str, Any]:
        """Upsert a snapshot keyed by its session id.

        Args:
            snapshot: Session state to archive.
            recipe: Recipe composed so far, if any.

        Returns:
            dict: The stored row.
        """
        row: FragranceSessionRow = {
            "id": snapshot.session_id,
            "phase": snapshot.current_phase.value,
            "message_history": [m.model_dump(mode="json") for m in snapshot.messages],
            "fragrance_recipe": recipe.model_dump() if recipe else None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        response = self.client.table(self.TABLE).upsert(row).execute()
        return response.data[0] if response.data else dict(row)

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        """Get an archived session by id.

        Returns:
            dict | None: The row or None if not found.
        """
        response = (
            self.client.table(self.TABLE)
            .select("*")
            .eq("id", session_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None
