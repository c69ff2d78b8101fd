"""Lab session: one customer's recipe-building conversation.

Wires the chat core, phase machine, scents store and recipe manager
together, in that dependency order, and owns the timers they schedule.
"""

import asyncio
import logging
from dataclasses import dataclass

from src.core.cache import CacheConfig, ParseCache, TTLCache
from src.core.config import Settings, get_settings
from src.core.scheduler import TaskScheduler
from src.models.phase import PHASE_DISPLAY_NAMES, PHASE_ORDER, ChatPhase, NoteCategory, PhaseShortcut
from src.schemas.chat import ChoiceOption, FragranceRecipe, LabSessionSnapshot
from src.services.chat_client import ChatBackend, HttpChatClient
from src.services.chat_core import ChatCore
from src.services.fragrance_notes import DEFAULT_NOTE_REMARKS, DEFAULT_NOTES, NOTE_LABELS
from src.services.message_parser import normalize_choice
from src.services.phase_service import PhaseProgress, PhaseStateMachine, TransitionResult
from src.services.recipe_manager import OrderDecision, RecipeManager, is_order_button_enabled
from src.services.scents_selection import ScentsSelectionStore, SelectionResult
from src.services.storage_service import (
    InMemoryKeyValueStore,
    KeyValueStore,
    StorageService,
    SupabaseKeyValueStore,
)

logger = logging.getLogger(__name__)

AUTO_RECIPE_NAME = "リラックスブレンド"
AUTO_RECIPE_DESCRIPTION = "穏やかな気分になれるリラックス効果のあるブレンド"
AUTO_RECIPE_COMPLETE_MESSAGE = (
    "おまかせレシピが完成しました！「注文に進む」ボタンから注文手続きへお進みください。"
)

# Phases from which the choice click steps the flow forward.
_CHOICE_ADVANCE_PHASES = frozenset({ChatPhase.THEME_SELECTED, ChatPhase.TOP, ChatPhase.MIDDLE, ChatPhase.BASE})

# Auto-create walks the default graph; past top it would skip a category.
_AUTO_CREATE_PHASES = frozenset(PHASE_ORDER[: PHASE_ORDER.index(ChatPhase.TOP) + 1])


@dataclass(frozen=True)
class AutoCreateResult:
    """Outcome of an auto-create request."""

    ok: bool
    recipe: FragranceRecipe | None = None
    reason: str | None = None


@dataclass
class LabSessionView:
    """Everything a client needs to render the session."""

    snapshot: LabSessionSnapshot
    phase_display_name: str
    progress: PhaseProgress
    is_order_button_enabled: bool
    is_loading: bool
    error: str | None
    recipe: FragranceRecipe | None
    degraded_storage: bool


class LabSession:
    """Composition of the four lab services for one client."""

    def __init__(
        self,
        backend: ChatBackend,
        storage: StorageService,
        settings: Settings | None = None,
        parse_cache: ParseCache | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.storage = storage
        self.scheduler = TaskScheduler(f"lab-session:{storage.namespace}")

        self.chat = ChatCore(
            backend=backend,
            storage=storage,
            parse_cache=parse_cache,
            scheduler=self.scheduler,
            split_delay=self.settings.split_part_delay_seconds,
            follow_up_delay=self.settings.follow_up_delay_seconds,
            max_part_length=self.settings.max_part_length,
            max_follow_ups=self.settings.max_follow_ups_per_turn,
        )
        self.phases = PhaseStateMachine(on_phase_change=self._on_phase_change)
        self.scents = ScentsSelectionStore(
            current_phase=lambda: self.phases.current_phase,
            update_phase=self.phases.update_phase,
            storage=storage,
            scheduler=self.scheduler,
            auto_transition_delay=self.settings.auto_transition_delay_seconds,
        )
        self.recipes = RecipeManager(storage, self.settings.order_url)
        self._complete_task: asyncio.Task | None = None

        self._load_state()
        storage.save_last_visit()

    def _load_state(self) -> None:
        state = self.storage.get_session_state()
        if state is not None:
            phase, selected = state
            self.phases.restore(phase)
            self.scents.restore(selected)
        else:
            self.scents.load_from_storage()
        self.recipes.load_from_storage()

    def _on_phase_change(self, old_phase: ChatPhase, new_phase: ChatPhase) -> None:
        self._persist_state()
        self._sync_recipe()

    def _persist_state(self) -> None:
        self.storage.save_session_state(self.phases.current_phase, self.scents.selected_scents)

    def _sync_recipe(self) -> FragranceRecipe | None:
        return self.recipes.sync(self.chat.messages, self.scents.selected_scents, self.phases.current_phase)

    @property
    def session_id(self) -> str:
        return self.chat.session_id

    @property
    def is_order_button_enabled(self) -> bool:
        return is_order_button_enabled(self.phases.current_phase, self.scents.selected_scents)

    async def send_message(self, content: str, is_user_selection: bool = False) -> bool:
        """Send user text; free text also advances the phase.

        Returns:
            bool: True when the exchange succeeded.
        """
        response = await self.chat.send_message(
            content,
            is_user_selection=is_user_selection,
            current_phase=self.phases.current_phase,
            selected_scents=self.scents.selected_scents,
        )
        if response is not None and not is_user_selection:
            self.phases.advance(self.scents.selected_scents, content)

        self._sync_recipe()
        self._persist_state()
        return response is not None

    async def handle_choice_click(self, choice: str | ChoiceOption | dict) -> SelectionResult | None:
        """Record a clicked choice, send it, then step the flow forward.

        Returns:
            SelectionResult | None: The selection outcome in note phases,
            otherwise None.
        """
        option = normalize_choice(choice)
        phase = self.phases.current_phase

        selection = None
        if phase in (ChatPhase.TOP, ChatPhase.MIDDLE, ChatPhase.BASE):
            selection = self.scents.update_selected_scents(option.name)

        await self.chat.send_message(
            option.name,
            is_user_selection=True,
            current_phase=phase,
            selected_scents=self.scents.selected_scents,
        )

        # Base hands over to the scheduled auto transition when complete.
        current = self.phases.current_phase
        if current == phase and current in _CHOICE_ADVANCE_PHASES and not self.scents.has_pending_transition:
            next_phase = self.phases.get_next_phase(current)
            if next_phase is not None:
                self.phases.update_phase(next_phase)

        self._sync_recipe()
        self._persist_state()
        return selection

    def update_phase(self, phase: ChatPhase, shortcut: PhaseShortcut | None = None) -> TransitionResult:
        """Explicit phase request; refused transitions leave state unchanged."""
        return self.phases.update_phase(phase, shortcut)

    async def auto_create_recipe(self) -> AutoCreateResult:
        """Build the default recipe without asking the user.

        Walks the default graph to top, picks one default oil per layer with
        a confirmation message, waits for the automatic finalize, then
        schedules completion.
        """
        if self.phases.current_phase not in _AUTO_CREATE_PHASES:
            logger.info("Auto-create refused in phase %s", self.phases.current_phase.value)
            return AutoCreateResult(ok=False, reason="phase_too_late")

        while self.phases.current_phase != ChatPhase.TOP:
            self.phases.update_phase(self.phases.get_next_phase(self.phases.current_phase))

        for category in NoteCategory:
            note = DEFAULT_NOTES[category]
            self.scents.update_selected_scents(note)
            self.chat.add_assistant_message(
                f"{NOTE_LABELS[category]}として「{note}」を選択しました。{DEFAULT_NOTE_REMARKS[category]}"
            )
            await self.scheduler.sleep(self.settings.split_part_delay_seconds)
            if category != NoteCategory.BASE:
                self.phases.update_phase(self.phases.get_next_phase(self.phases.current_phase))

        if self.scents.pending_transition is not None:
            await asyncio.shield(self.scents.pending_transition)
        if self.phases.current_phase == ChatPhase.BASE:
            self.phases.update_phase(ChatPhase.FINALIZED, PhaseShortcut.ALL_SCENTS_SELECTED)

        scents = self.scents.selected_scents
        recipe = FragranceRecipe(
            name=AUTO_RECIPE_NAME,
            description=AUTO_RECIPE_DESCRIPTION,
            top_notes=scents.top,
            middle_notes=scents.middle,
            base_notes=scents.base,
        )
        self.chat.add_assistant_message(
            f"レシピが完成しました！\n\n{AUTO_RECIPE_NAME}\n"
            f"トップノート：{'、'.join(scents.top)}\n"
            f"ミドルノート：{'、'.join(scents.middle)}\n"
            f"ベースノート：{'、'.join(scents.base)}\n\n{AUTO_RECIPE_DESCRIPTION}",
            recipe=recipe,
        )
        self._sync_recipe()
        self._persist_state()

        self._complete_task = self.scheduler.call_later(
            self.settings.auto_complete_delay_seconds,
            self._complete_auto_recipe,
        )
        return AutoCreateResult(ok=True, recipe=self.recipes.recipe or recipe)

    def _complete_auto_recipe(self) -> None:
        if self.phases.current_phase != ChatPhase.FINALIZED:
            return
        if self.phases.update_phase(ChatPhase.COMPLETE).ok:
            self.chat.add_assistant_message(AUTO_RECIPE_COMPLETE_MESSAGE)

    async def wait_for_pending(self) -> None:
        """Wait until the scheduled transitions of this session have run."""
        for task in (self.scents.pending_transition, self._complete_task):
            if task is not None and not task.done():
                await asyncio.shield(task)

    def go_to_order(self) -> OrderDecision:
        return self.recipes.handle_go_to_order(
            self.phases.current_phase,
            self.scents.selected_scents,
            self.chat.messages,
        )

    def reset(self) -> None:
        """Start over: transcript, phase, selection, recipe and timers."""
        self.scheduler.cancel_all()
        self._complete_task = None
        self.chat.reset()
        self.phases.reset()
        self.scents.reset()
        self.recipes.reset()
        self._persist_state()
        logger.info("Lab session %s reset", self.session_id)

    def snapshot(self) -> LabSessionSnapshot:
        return LabSessionSnapshot(
            session_id=self.session_id,
            messages=list(self.chat.messages),
            current_phase=self.phases.current_phase,
            selected_scents=self.scents.selected_scents,
        )

    def view(self) -> LabSessionView:
        phase = self.phases.current_phase
        return LabSessionView(
            snapshot=self.snapshot(),
            phase_display_name=PHASE_DISPLAY_NAMES[phase],
            progress=self.phases.progress,
            is_order_button_enabled=self.is_order_button_enabled,
            is_loading=self.chat.is_loading,
            error=self.chat.error,
            recipe=self.recipes.recipe,
            degraded_storage=self.storage.degraded,
        )

    def close(self) -> None:
        """Cancel every pending timer; the session accepts no new work."""
        cancelled = self.scheduler.close()
        if cancelled:
            logger.info("Lab session %s closed with %d pending tasks", self.session_id, cancelled)


def create_key_value_store(settings: Settings | None = None) -> KeyValueStore:
    """Storage backend selected by ``STORAGE_BACKEND``."""
    settings = settings or get_settings()
    if settings.storage_backend == "memory":
        return InMemoryKeyValueStore()
    return SupabaseKeyValueStore()


def create_chat_backend(settings: Settings | None = None, parse_cache: ParseCache | None = None) -> ChatBackend:
    """Remote chat API when ``CHAT_API_URL`` is set, else the in-process agent."""
    settings = settings or get_settings()
    if settings.chat_api_url:
        return HttpChatClient(settings.chat_api_url, timeout=settings.chat_api_timeout_seconds)

    from src.services.agent_service import FragranceAgentService

    return FragranceAgentService(parse_cache=parse_cache)


class LabSessionRegistry:
    """Live lab sessions keyed by client id.

    Sessions idle past the TTL, or evicted when the registry is full, are
    closed; their state survives in storage and is reloaded on next access.
    """

    def __init__(
        self,
        store: KeyValueStore,
        backend: ChatBackend,
        parse_cache: ParseCache | None = None,
        settings: Settings | None = None,
        config: CacheConfig | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._store = store
        self._backend = backend
        self._parse_cache = parse_cache
        self._sessions: TTLCache[LabSession] = TTLCache(
            config or CacheConfig.for_lab_sessions(),
            name="Lab session registry",
            on_evict=lambda session: session.close(),
        )

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def get_or_create(self, client_id: str) -> LabSession:
        session = self._sessions.get(client_id, None)
        if session is None:
            session = LabSession(
                backend=self._backend,
                storage=StorageService(self._store, client_id),
                settings=self.settings,
                parse_cache=self._parse_cache,
            )
            self._sessions.set(client_id, session)
            logger.info("Opened lab session %s for client %s", session.session_id, client_id)
        return session

    def get_stats(self) -> dict:
        return self._sessions.get_stats()

    async def start(self) -> None:
        await self._sessions.start_cleanup_task()

    async def shutdown(self) -> None:
        """Close every live session and stop the cleanup task."""
        await self._sessions.stop_cleanup_task()
        closed = self._sessions.clear()
        logger.info("Lab session registry shut down (%d sessions closed)", closed)
