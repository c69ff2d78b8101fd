"""Durable client storage for lab sessions.

Every client (browser) has a namespace holding a handful of logical keys.
Values are JSON-compatible; recipes are written snake_case. A failing
backend never breaks the chat: the service logs the error and carries on
with an in-memory copy for the rest of its lifetime.
"""

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from src.core.supabase import get_supabase_client
from src.models.message import StoredRecipe
from src.models.phase import ChatPhase
from src.schemas.chat import ChatMessage, FragranceRecipe, SelectedScents

logger = logging.getLogger(__name__)

DEFAULT_STORED_RECIPE_NAME = "オリジナルルームフレグランス"
DEFAULT_STORED_RECIPE_DESCRIPTION = "あなただけのカスタムルームフレグランス"


class StorageKey(str, Enum):
    """Logical storage keys."""

    CHAT_HISTORY = "chat_history"
    SESSION_ID = "chat_session_id"
    SELECTED_RECIPE = "selected_recipe"
    LAST_VISIT = "last_visit"
    SESSION = "chat_session"


class KeyValueStore(Protocol):
    """Namespaced key/value backend."""

    def get(self, namespace: str, key: str) -> Any | None: ...

    def set(self, namespace: str, key: str, value: Any) -> None: ...

    def delete(self, namespace: str, key: str) -> None: ...

    def delete_all(self, namespace: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store, used for tests, local runs and degraded mode."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = Lock()

    def get(self, namespace: str, key: str) -> Any | None:
        with self._lock:
            return self._data.get(namespace, {}).get(key)

    def set(self, namespace: str, key: str, value: Any) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = value

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)

    def delete_all(self, namespace: str) -> None:
        with self._lock:
            self._data.pop(namespace, None)


class SupabaseKeyValueStore:
    """Store backed by the ``lab_storage`` table (one row per namespace/key)."""

    TABLE = "lab_storage"

    def __init__(self) -> None:
        """Initialize store with Supabase client."""
        self.client = get_supabase_client()

    def get(self, namespace: str, key: str) -> Any | None:
        response = (
            self.client.table(self.TABLE)
            .select("value")
            .eq("namespace", namespace)
            .eq("key", key)
            .maybe_single()
            .execute()
        )
        return response.data["value"] if response and response.data else None

    def set(self, namespace: str, key: str, value: Any) -> None:
        self.client.table(self.TABLE).upsert(
            {
                "namespace": namespace,
                "key": key,
                "value": value,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="namespace,key",
        ).execute()

    def delete(self, namespace: str, key: str) -> None:
        self.client.table(self.TABLE).delete().eq("namespace", namespace).eq("key", key).execute()

    def delete_all(self, namespace: str) -> None:
        self.client.table(self.TABLE).delete().eq("namespace", namespace).execute()


class StorageService:
    """Typed access to one client's storage namespace."""

    def __init__(self, store: KeyValueStore, namespace: str) -> None:
        self._store = store
        self._fallback = InMemoryKeyValueStore()
        self.namespace = namespace
        self.degraded = False

    def _active(self) -> KeyValueStore:
        return self._fallback if self.degraded else self._store

    def _degrade(self, operation: str, key: str, error: Exception) -> None:
        logger.error(
            "Storage %s failed for %s/%s, using in-memory fallback: %s",
            operation,
            self.namespace,
            key,
            error,
        )
        self.degraded = True

    def _read(self, key: StorageKey) -> Any | None:
        try:
            return self._active().get(self.namespace, key.value)
        except Exception as e:
            self._degrade("read", key.value, e)
            return self._fallback.get(self.namespace, key.value)

    def _write(self, key: StorageKey, value: Any) -> None:
        self._fallback.set(self.namespace, key.value, value)
        if self.degraded:
            return
        try:
            self._store.set(self.namespace, key.value, value)
        except Exception as e:
            self._degrade("write", key.value, e)

    def clear(self, key: StorageKey) -> None:
        """Remove one logical key."""
        self._fallback.delete(self.namespace, key.value)
        if self.degraded:
            return
        try:
            self._store.delete(self.namespace, key.value)
        except Exception as e:
            self._degrade("delete", key.value, e)

    def clear_all(self) -> None:
        """Remove every key of this namespace."""
        self._fallback.delete_all(self.namespace)
        if self.degraded:
            return
        try:
            self._store.delete_all(self.namespace)
        except Exception as e:
            self._degrade("delete", "*", e)

    # Chat history

    def save_chat_history(self, messages: list[ChatMessage]) -> None:
        self._write(StorageKey.CHAT_HISTORY, [m.model_dump(mode="json") for m in messages])

    def get_chat_history(self) -> list[ChatMessage]:
        raw = self._read(StorageKey.CHAT_HISTORY)
        if not isinstance(raw, list):
            return []
        try:
            return [ChatMessage.model_validate(item) for item in raw]
        except PydanticValidationError as e:
            logger.warning("Discarding unreadable chat history for %s: %s", self.namespace, e)
            return []

    # Recipe

    def save_recipe(
        self,
        top_notes: list[str],
        middle_notes: list[str],
        base_notes: list[str],
        name: str | None = None,
        description: str | None = None,
    ) -> StoredRecipe:
        """Persist the recipe in its snake_case wire form.

        Returns:
            StoredRecipe: What was written, defaults applied.
        """
        stored: StoredRecipe = {
            "name": name or DEFAULT_STORED_RECIPE_NAME,
            "description": description or DEFAULT_STORED_RECIPE_DESCRIPTION,
            "top_notes": list(top_notes),
            "middle_notes": list(middle_notes),
            "base_notes": list(base_notes),
        }
        self._write(StorageKey.SELECTED_RECIPE, stored)
        return stored

    def get_recipe(self) -> FragranceRecipe | None:
        raw = self._read(StorageKey.SELECTED_RECIPE)
        if not isinstance(raw, dict):
            return None
        try:
            return FragranceRecipe.model_validate(
                {
                    "name": raw.get("name") or DEFAULT_STORED_RECIPE_NAME,
                    "description": raw.get("description") or DEFAULT_STORED_RECIPE_DESCRIPTION,
                    "top_notes": raw.get("top_notes") or [],
                    "middle_notes": raw.get("middle_notes") or [],
                    "base_notes": raw.get("base_notes") or [],
                }
            )
        except PydanticValidationError as e:
            logger.warning("Discarding unreadable recipe for %s: %s", self.namespace, e)
            return None

    # Session identity and state

    def save_session_id(self, session_id: str) -> None:
        self._write(StorageKey.SESSION_ID, session_id)

    def get_session_id(self) -> str | None:
        value = self._read(StorageKey.SESSION_ID)
        return str(value) if value else None

    def save_last_visit(self, timestamp: float | None = None) -> None:
        self._write(StorageKey.LAST_VISIT, int((timestamp or time.time()) * 1000))

    def get_last_visit(self) -> int | None:
        value = self._read(StorageKey.LAST_VISIT)
        return int(value) if value is not None else None

    def save_session_state(self, phase: ChatPhase, selected_scents: SelectedScents) -> None:
        """Persist what the transcript alone cannot restore."""
        self._write(
            StorageKey.SESSION,
            {"current_phase": phase.value, "selected_scents": selected_scents.model_dump()},
        )

    def get_session_state(self) -> tuple[ChatPhase, SelectedScents] | None:
        raw = self._read(StorageKey.SESSION)
        if not isinstance(raw, dict):
            return None
        try:
            return ChatPhase(raw["current_phase"]), SelectedScents.model_validate(raw.get("selected_scents") or {})
        except (KeyError, ValueError) as e:
            logger.warning("Discarding unreadable session state for %s: %s", self.namespace, e)
            return None

