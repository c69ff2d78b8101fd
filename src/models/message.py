"""Message and storage row type definitions."""

from datetime import datetime
from enum import Enum
from typing import Any, TypedDict


class MessageRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class StoredRecipe(TypedDict, total=False):
    """Recipe as written under the SELECTED_RECIPE storage key.

    Always snake_case, independent of the API's camelCase aliases.
    """

    name: str
    description: str
    top_notes: list[str]
    middle_notes: list[str]
    base_notes: list[str]


class LabStorageRow(TypedDict):
    """lab_storage table row: one logical key per client namespace."""

    namespace: str
    key: str
    value: Any
    updated_at: datetime


class FragranceSessionRow(TypedDict, total=False):
    """fragrance_sessions table row holding an archived lab session."""

    id: str
    phase: str
    message_history: list[dict[str, Any]]
    fragrance_recipe: StoredRecipe | None
    updated_at: str
