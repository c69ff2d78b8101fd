"""Domain and database model type definitions."""

from src.models.message import FragranceSessionRow, LabStorageRow, MessageRole, StoredRecipe
from src.models.order import LabOrder, LabOrderCreate, LabOrderLineItem, OrderStatus
from src.models.phase import (
    ORDERABLE_PHASES,
    PHASE_DISPLAY_NAMES,
    PHASE_NOTE_CATEGORY,
    PHASE_ORDER,
    PHASE_SHORTCUTS,
    PHASE_TRANSITIONS,
    ChatPhase,
    NoteCategory,
    PhaseShortcut,
)

__all__ = [
    "ChatPhase",
    "NoteCategory",
    "PhaseShortcut",
    "PHASE_ORDER",
    "PHASE_TRANSITIONS",
    "PHASE_NOTE_CATEGORY",
    "PHASE_SHORTCUTS",
    "PHASE_DISPLAY_NAMES",
    "ORDERABLE_PHASES",
    "MessageRole",
    "StoredRecipe",
    "LabStorageRow",
    "FragranceSessionRow",
    "LabOrder",
    "LabOrderCreate",
    "LabOrderLineItem",
    "OrderStatus",
]
