"""Phase state machine for the lab conversation."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from src.models.phase import (
    PHASE_DISPLAY_NAMES,
    PHASE_ORDER,
    PHASE_SHORTCUTS,
    PHASE_TRANSITIONS,
    ChatPhase,
    PhaseShortcut,
    keyword_matches,
)
from src.schemas.chat import SelectedScents

logger = logging.getLogger(__name__)

PhaseChangeCallback = Callable[[ChatPhase, ChatPhase], None]


class RejectionReason(str, Enum):
    """Why a phase or selection request was refused."""

    INVALID_TRANSITION = "invalid_transition"
    INVALID_PHASE_FOR_SELECTION = "invalid_phase_for_selection"
    NO_NEXT_PHASE = "no_next_phase"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a phase change request."""

    ok: bool
    from_phase: ChatPhase
    to_phase: ChatPhase | None
    shortcut: PhaseShortcut | None = None
    reason: RejectionReason | None = None


@dataclass(frozen=True)
class PhaseProgress:
    """Position of a phase in the overall flow."""

    step: int
    total_steps: int
    percentage: int


def phase_progress(phase: ChatPhase) -> PhaseProgress:
    """Progress of ``phase`` (welcome is step 0 of 7)."""
    total = len(PHASE_ORDER) - 1
    step = PHASE_ORDER.index(phase)
    return PhaseProgress(step=step, total_steps=total, percentage=round(step / total * 100))


class PhaseStateMachine:
    """Owns the current phase and guards every transition.

    Only the canonical next phase is reachable, except through a named
    shortcut from ``PHASE_SHORTCUTS``. Invalid requests are logged and
    reported, never raised.
    """

    def __init__(
        self,
        initial_phase: ChatPhase = ChatPhase.WELCOME,
        on_phase_change: PhaseChangeCallback | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._phase = initial_phase
        self._on_phase_change = on_phase_change
        self._clock = clock
        self.last_phase_change_time: float = clock()

    @property
    def current_phase(self) -> ChatPhase:
        return self._phase

    @property
    def display_name(self) -> str:
        """Localised label of the current phase."""
        return PHASE_DISPLAY_NAMES[self._phase]

    @property
    def progress(self) -> PhaseProgress:
        return phase_progress(self._phase)

    def set_on_phase_change(self, callback: PhaseChangeCallback | None) -> None:
        """Register the observer called after every applied transition."""
        self._on_phase_change = callback

    @staticmethod
    def get_next_phase(phase: ChatPhase) -> ChatPhase | None:
        """Canonical successor, ignoring shortcuts."""
        return PHASE_TRANSITIONS.get(phase)

    @staticmethod
    def can_transition(
        from_phase: ChatPhase,
        to_phase: ChatPhase,
        shortcut: PhaseShortcut | None = None,
    ) -> bool:
        """Check an edge against the graph.

        Args:
            from_phase: Source phase.
            to_phase: Requested phase.
            shortcut: Named exception the caller claims, if any.

        Returns:
            bool: True for the default edge or the shortcut's own edge.
        """
        if PHASE_TRANSITIONS.get(from_phase) == to_phase:
            return True
        if shortcut is None:
            return False
        rule = PHASE_SHORTCUTS[shortcut]
        return from_phase in rule.from_phases and rule.to_phase == to_phase

    def resolve_next_phase(
        self,
        phase: ChatPhase,
        selected_scents: SelectedScents,
        user_input: str | None = None,
    ) -> tuple[ChatPhase | None, PhaseShortcut | None]:
        """Next phase plus the shortcut that justifies it, if any."""
        omakase = PHASE_SHORTCUTS[PhaseShortcut.OMAKASE]
        if phase in omakase.from_phases and keyword_matches(omakase, user_input):
            return omakase.to_phase, PhaseShortcut.OMAKASE

        finish = PHASE_SHORTCUTS[PhaseShortcut.FINISH_KEYWORD]
        if phase in finish.from_phases and keyword_matches(finish, user_input):
            return finish.to_phase, PhaseShortcut.FINISH_KEYWORD

        completed = PHASE_SHORTCUTS[PhaseShortcut.ALL_SCENTS_SELECTED]
        if phase in completed.from_phases and selected_scents.is_complete():
            return completed.to_phase, PhaseShortcut.ALL_SCENTS_SELECTED

        return self.get_next_phase(phase), None

    def get_next_phase_with_condition(
        self,
        phase: ChatPhase,
        selected_scents: SelectedScents,
        user_input: str | None = None,
    ) -> ChatPhase | None:
        """Next phase after considering keyword and completion shortcuts."""
        next_phase, _ = self.resolve_next_phase(phase, selected_scents, user_input)
        return next_phase

    def update_phase(
        self,
        new_phase: ChatPhase,
        shortcut: PhaseShortcut | None = None,
    ) -> TransitionResult:
        """Apply a transition if the graph allows it.

        Args:
            new_phase: Requested phase.
            shortcut: Named exception permitting a non-default edge.

        Returns:
            TransitionResult: ok=False with a reason when refused; the
            current phase is then unchanged.
        """
        old_phase = self._phase
        if not self.can_transition(old_phase, new_phase, shortcut):
            logger.warning(
                "Invalid phase transition: %s -> %s (shortcut=%s)",
                old_phase.value,
                new_phase.value,
                shortcut.value if shortcut else None,
            )
            return TransitionResult(
                ok=False,
                from_phase=old_phase,
                to_phase=new_phase,
                shortcut=shortcut,
                reason=RejectionReason.INVALID_TRANSITION,
            )

        self._phase = new_phase
        self.last_phase_change_time = self._clock()
        logger.info("Phase changed: %s -> %s", old_phase.value, new_phase.value)

        if self._on_phase_change is not None:
            self._on_phase_change(old_phase, new_phase)

        return TransitionResult(ok=True, from_phase=old_phase, to_phase=new_phase, shortcut=shortcut)

    def advance(self, selected_scents: SelectedScents, user_input: str | None = None) -> TransitionResult:
        """Move to the next phase chosen by ``resolve_next_phase``."""
        next_phase, shortcut = self.resolve_next_phase(self._phase, selected_scents, user_input)
        if next_phase is None:
            return TransitionResult(
                ok=False,
                from_phase=self._phase,
                to_phase=None,
                reason=RejectionReason.NO_NEXT_PHASE,
            )
        return self.update_phase(next_phase, shortcut)

    def restore(self, phase: ChatPhase) -> None:
        """Set the phase from persisted state without a transition check."""
        self._phase = phase
        self.last_phase_change_time = self._clock()

    def reset(self) -> None:
        """Return to welcome."""
        previous = self._phase
        self._phase = ChatPhase.WELCOME
        self.last_phase_change_time = self._clock()
        logger.debug("Phase reset from %s", previous.value)
