"""Scents selection store: the user's note choice per category."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from src.core.scheduler import TaskScheduler
from src.models.phase import PHASE_NOTE_CATEGORY, ChatPhase, NoteCategory, PhaseShortcut
from src.schemas.chat import SelectedScents
from src.services.phase_service import RejectionReason, TransitionResult
from src.services.storage_service import StorageService

logger = logging.getLogger(__name__)

PhaseUpdater = Callable[[ChatPhase, PhaseShortcut | None], TransitionResult]


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of a scent selection."""

    ok: bool
    selected_scents: SelectedScents
    category: NoteCategory | None = None
    reason: RejectionReason | None = None
    auto_transition_scheduled: bool = False


class ScentsSelectionStore:
    """Holds the selection and triggers the base -> finalized transition.

    The current phase is read through ``current_phase`` and transitions are
    requested through ``update_phase``; the store never owns the phase.
    """

    def __init__(
        self,
        current_phase: Callable[[], ChatPhase],
        update_phase: PhaseUpdater | None = None,
        storage: StorageService | None = None,
        scheduler: TaskScheduler | None = None,
        auto_transition_delay: float = 1.0,
    ) -> None:
        self._current_phase = current_phase
        self._update_phase = update_phase
        self._storage = storage
        self._scheduler = scheduler
        self._auto_transition_delay = auto_transition_delay
        self._selected = SelectedScents()
        self.pending_transition: asyncio.Task | None = None

    @property
    def selected_scents(self) -> SelectedScents:
        return self._selected

    @property
    def current_phase_scents(self) -> list[str]:
        """Selection for the category of the current phase."""
        category = PHASE_NOTE_CATEGORY.get(self._current_phase())
        return self._selected.get(category) if category else []

    @property
    def is_all_scents_selected(self) -> bool:
        return self._selected.is_complete()

    @property
    def has_pending_transition(self) -> bool:
        return self.pending_transition is not None and not self.pending_transition.done()

    def load_from_storage(self) -> SelectedScents:
        """Restore the selection from the stored recipe, if any."""
        if self._storage is None:
            return self._selected
        recipe = self._storage.get_recipe()
        if recipe is not None:
            self._selected = SelectedScents(
                top=recipe.top_notes,
                middle=recipe.middle_notes,
                base=recipe.base_notes,
            )
        return self._selected

    def restore(self, selected_scents: SelectedScents) -> None:
        """Replace the selection wholesale, without side effects."""
        self._selected = selected_scents

    def update_selected_scents(self, choice: str) -> SelectionResult:
        """Record ``choice`` as the only note of the current phase's category.

        Args:
            choice: Selected oil name.

        Returns:
            SelectionResult: Rejected, with the selection unchanged, when the
            current phase has no note category.
        """
        phase = self._current_phase()
        category = PHASE_NOTE_CATEGORY.get(phase)
        if category is None:
            logger.warning("Scent selection ignored in phase %s: %s", phase.value, choice)
            return SelectionResult(
                ok=False,
                selected_scents=self._selected,
                reason=RejectionReason.INVALID_PHASE_FOR_SELECTION,
            )

        self._selected = self._selected.with_category(category, [choice])
        logger.info("Selected %s note: %s", category.value, choice)

        scheduled = False
        if self._selected.is_complete():
            self._persist()
            if phase == ChatPhase.BASE:
                scheduled = self._schedule_finalize()

        return SelectionResult(
            ok=True,
            selected_scents=self._selected,
            category=category,
            auto_transition_scheduled=scheduled,
        )

    def _persist(self) -> None:
        if self._storage is None:
            return
        self._storage.save_recipe(
            top_notes=self._selected.top,
            middle_notes=self._selected.middle,
            base_notes=self._selected.base,
        )

    def _schedule_finalize(self) -> bool:
        if self._update_phase is None or self._scheduler is None:
            return False
        if self.has_pending_transition:
            return True
        self.pending_transition = self._scheduler.call_later(
            self._auto_transition_delay,
            self._finalize,
        )
        return True

    def _finalize(self) -> TransitionResult | None:
        # The phase may have moved on while the timer was pending.
        if self._current_phase() != ChatPhase.BASE or self._update_phase is None:
            return None
        return self._update_phase(ChatPhase.FINALIZED, PhaseShortcut.ALL_SCENTS_SELECTED)

    def cancel_pending_transition(self) -> None:
        if self.has_pending_transition:
            self.pending_transition.cancel()
        self.pending_transition = None

    def reset(self) -> None:
        """Clear every category and drop a pending transition."""
        self.cancel_pending_transition()
        self._selected = SelectedScents()
