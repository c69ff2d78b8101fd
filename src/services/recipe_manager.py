"""Recipe manager: derives the recipe and gates the order hand-off."""

import logging
from dataclasses import dataclass
from enum import Enum

from src.models.message import MessageRole
from src.models.phase import ORDERABLE_PHASES, ChatPhase, NoteCategory
from src.schemas.chat import ChatMessage, FragranceRecipe, SelectedScents
from src.services.fragrance_notes import DEFAULT_NOTES
from src.services.storage_service import StorageKey, StorageService

logger = logging.getLogger(__name__)

DEFAULT_RECIPE_NAME = "オリジナルルームフレグランス"
DEFAULT_RECIPE_DESCRIPTION = "あなただけのカスタムルームフレグランス"
FALLBACK_ORDER_DESCRIPTION = "あなただけのカスタムブレンド"


class OrderRejection(str, Enum):
    """Why the order hand-off was refused."""

    ORDER_NOT_READY = "order_not_ready"


@dataclass(frozen=True)
class OrderDecision:
    """Outcome of a "go to order" request."""

    allowed: bool
    redirect_url: str | None = None
    recipe: FragranceRecipe | None = None
    reason: OrderRejection | None = None


def is_order_button_enabled(phase: ChatPhase, selected_scents: SelectedScents) -> bool:
    """Order is possible once the recipe is complete and being confirmed."""
    return phase in ORDERABLE_PHASES and selected_scents.is_complete()


def latest_recipe_message(messages: list[ChatMessage]) -> FragranceRecipe | None:
    """Recipe of the newest assistant message that carries one."""
    for message in reversed(messages):
        if message.role == MessageRole.ASSISTANT and message.recipe is not None:
            return message.recipe
    return None


class RecipeManager:
    """Keeps the composed recipe in step with the conversation."""

    def __init__(self, storage: StorageService | None, order_url: str) -> None:
        self._storage = storage
        self._order_url = order_url
        self.recipe: FragranceRecipe | None = None

    def load_from_storage(self) -> FragranceRecipe | None:
        if self._storage is not None:
            self.recipe = self._storage.get_recipe()
        return self.recipe

    @staticmethod
    def is_order_button_enabled(phase: ChatPhase, selected_scents: SelectedScents) -> bool:
        return is_order_button_enabled(phase, selected_scents)

    def compose(self, messages: list[ChatMessage], selected_scents: SelectedScents) -> FragranceRecipe:
        """Recipe from the live selection, titled by the latest assistant recipe."""
        source = latest_recipe_message(messages)
        return FragranceRecipe(
            name=source.name if source and source.name else DEFAULT_RECIPE_NAME,
            description=source.description if source and source.description else DEFAULT_RECIPE_DESCRIPTION,
            top_notes=selected_scents.top,
            middle_notes=selected_scents.middle,
            base_notes=selected_scents.base,
        )

    def sync(
        self,
        messages: list[ChatMessage],
        selected_scents: SelectedScents,
        phase: ChatPhase,
    ) -> FragranceRecipe | None:
        """Re-derive the recipe after any change to its inputs.

        Returns:
            FragranceRecipe | None: The current recipe; unchanged when the
            conversation is not orderable yet.
        """
        if not is_order_button_enabled(phase, selected_scents):
            return self.recipe

        recipe = self.compose(messages, selected_scents)
        if recipe != self.recipe:
            self.recipe = recipe
            self._save(recipe)
        return self.recipe

    def handle_go_to_order(
        self,
        phase: ChatPhase,
        selected_scents: SelectedScents,
        messages: list[ChatMessage] | None = None,
    ) -> OrderDecision:
        """Persist the recipe and hand back the order page URL.

        Allowed when the order button is enabled, and always once the phase
        is complete (the auto-created recipe reaches complete directly).
        Missing categories are filled with default notes.
        """
        enabled = is_order_button_enabled(phase, selected_scents)
        if not enabled and phase != ChatPhase.COMPLETE:
            logger.info(
                "Order requested before recipe was ready (phase=%s, complete=%s)",
                phase.value,
                selected_scents.is_complete(),
            )
            return OrderDecision(allowed=False, reason=OrderRejection.ORDER_NOT_READY)

        if enabled:
            recipe = self.compose(messages or [], selected_scents)
        else:
            base = self.recipe
            recipe = FragranceRecipe(
                name=base.name if base else DEFAULT_RECIPE_NAME,
                description=base.description if base else FALLBACK_ORDER_DESCRIPTION,
                top_notes=selected_scents.top or [DEFAULT_NOTES[NoteCategory.TOP]],
                middle_notes=selected_scents.middle or [DEFAULT_NOTES[NoteCategory.MIDDLE]],
                base_notes=selected_scents.base or [DEFAULT_NOTES[NoteCategory.BASE]],
            )

        self.recipe = recipe
        self._save(recipe)
        logger.info("Recipe %r handed to order page", recipe.name)
        return OrderDecision(allowed=True, redirect_url=self._order_url, recipe=recipe)

    def _save(self, recipe: FragranceRecipe) -> None:
        if self._storage is None:
            return
        self._storage.save_recipe(
            top_notes=recipe.top_notes,
            middle_notes=recipe.middle_notes,
            base_notes=recipe.base_notes,
            name=recipe.name,
            description=recipe.description,
        )

    def reset(self) -> None:
        """Forget the recipe and clear it from storage."""
        self.recipe = None
        if self._storage is not None:
            self._storage.clear(StorageKey.SELECTED_RECIPE)
