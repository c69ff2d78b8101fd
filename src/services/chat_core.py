"""Chat core: transcript, session identity and the send/receive loop."""

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any

from src.core.cache import ParseCache
from src.core.scheduler import TaskScheduler
from src.models.message import MessageRole
from src.models.phase import ChatPhase
from src.schemas.chat import ChatMessage, ChatRequest, ChatResponse, ChatTurn, MessagePart, SelectedScents
from src.services.chat_client import ChatBackend
from src.services.chat_errors import CHAT_FAILURE_MESSAGE, ChatAPIError, add_error_info
from src.services.message_parser import (
    DEFAULT_MAX_PART_LENGTH,
    create_message,
    parse_message_content,
    should_split_message,
    split_message_into_parts,
)
from src.services.storage_service import StorageKey, StorageService

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "今日はどんな香りつくる？"


@dataclass
class _PendingSend:
    content: str
    is_user_selection: bool
    is_follow_up: bool = False


class ChatCore:
    """Owns the message list and talks to the chat backend.

    Sends are processed through a bounded FIFO: the user's message, then at
    most ``max_follow_ups`` follow-ups the backend asks for. Failures are
    never raised to the caller; they become an assistant apology in the
    transcript and set ``error``.
    """

    def __init__(
        self,
        backend: ChatBackend,
        storage: StorageService | None = None,
        parse_cache: ParseCache | None = None,
        scheduler: TaskScheduler | None = None,
        split_delay: float = 1.0,
        follow_up_delay: float = 1.5,
        max_part_length: int = DEFAULT_MAX_PART_LENGTH,
        max_follow_ups: int = 1,
    ) -> None:
        self._backend = backend
        self._storage = storage
        self._parse_cache = parse_cache
        self._scheduler = scheduler or TaskScheduler("chat")
        self._split_delay = split_delay
        self._follow_up_delay = follow_up_delay
        self._max_part_length = max_part_length
        self._max_follow_ups = max_follow_ups
        self._in_flight = 0

        self.error: str | None = None
        self.session_id = self._load_session_id()
        self.messages: list[ChatMessage] = self._load_history()

    def _load_session_id(self) -> str:
        session_id = self._storage.get_session_id() if self._storage else None
        if not session_id:
            session_id = str(uuid.uuid4())
            if self._storage:
                self._storage.save_session_id(session_id)
            logger.info("Started chat session %s", session_id)
        return session_id

    def _load_history(self) -> list[ChatMessage]:
        history = self._storage.get_chat_history() if self._storage else []
        return history or [self._welcome_message()]

    @staticmethod
    def _welcome_message() -> ChatMessage:
        return create_message(MessageRole.ASSISTANT, WELCOME_MESSAGE)

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    def append_message(self, message: ChatMessage) -> None:
        """Append to the transcript and persist it once past the welcome."""
        self.messages.append(message)
        if self._storage and len(self.messages) > 1:
            self._storage.save_chat_history(self.messages)

    def add_assistant_message(self, content: str, **options: Any) -> ChatMessage:
        """Append a locally generated assistant message."""
        message = create_message(MessageRole.ASSISTANT, content, **options)
        self.append_message(message)
        return message

    async def send_message(
        self,
        content: str,
        is_user_selection: bool = False,
        current_phase: ChatPhase = ChatPhase.WELCOME,
        selected_scents: SelectedScents | None = None,
    ) -> ChatResponse | None:
        """Send a user message and append the assistant's reply.

        Args:
            content: User text. Blank text is ignored.
            is_user_selection: The text is a clicked choice.
            current_phase: Phase at send time.
            selected_scents: Selection at send time.

        Returns:
            ChatResponse | None: The last successful response, or None when
            nothing was sent or the exchange failed.
        """
        if not content or not content.strip():
            return None

        scents = selected_scents or SelectedScents()
        queue: deque[_PendingSend] = deque([_PendingSend(content, is_user_selection)])
        follow_ups_sent = 0
        last_response: ChatResponse | None = None

        self._in_flight += 1
        self.error = None
        try:
            while queue:
                pending = queue.popleft()
                if pending.is_follow_up:
                    await self._scheduler.sleep(self._follow_up_delay)

                response = await self._exchange(pending, current_phase, scents)
                if response is None:
                    return None
                last_response = response

                if response.follow_up and follow_ups_sent < self._max_follow_ups:
                    follow_ups_sent += 1
                    queue.append(_PendingSend(response.follow_up, False, is_follow_up=True))
                elif response.follow_up:
                    logger.debug("Dropping follow-up beyond per-turn limit: %s", response.follow_up)
        finally:
            self._in_flight -= 1

        return last_response

    async def _exchange(
        self,
        pending: _PendingSend,
        current_phase: ChatPhase,
        selected_scents: SelectedScents,
    ) -> ChatResponse | None:
        self.append_message(create_message(MessageRole.USER, pending.content))

        request = ChatRequest(
            messages=[ChatTurn(role=m.role, content=m.content) for m in self.messages],
            current_phase=current_phase,
            selected_scents=selected_scents,
            is_user_selection=pending.is_user_selection,
        )

        try:
            response = await self._backend.send(request)
            if response.error:
                raise ChatAPIError(response.error)
            parts = self._reply_parts(response, current_phase)
        except ChatAPIError as e:
            logger.error("Chat exchange failed for session %s: %s", self.session_id, e)
            self.error = e.message
            self.add_assistant_message(add_error_info(CHAT_FAILURE_MESSAGE, e))
            return None
        except Exception as e:
            logger.exception("Unexpected chat failure for session %s", self.session_id)
            self.error = str(e) or type(e).__name__
            self.add_assistant_message(add_error_info(CHAT_FAILURE_MESSAGE, e))
            return None

        await self._append_reply(parts)
        return response

    def _reply_parts(self, response: ChatResponse, current_phase: ChatPhase) -> list[MessagePart]:
        if response.choices or response.recipe:
            structured: dict[str, Any] = {
                "content": response.content,
                "choices": response.choices,
                "recipe": response.recipe,
            }
            return split_message_into_parts(structured, current_phase, self._max_part_length)

        parsed = parse_message_content(response.content, self._parse_cache)
        if parsed is not None and "content" in parsed:
            return split_message_into_parts(parsed, current_phase, self._max_part_length)

        if response.should_split is False or not should_split_message(response.content):
            return [MessagePart(content=response.content)]
        return split_message_into_parts(response.content, current_phase, self._max_part_length)

    async def _append_reply(self, parts: list[MessagePart]) -> None:
        for part in parts:
            self.add_assistant_message(
                part.content,
                choices=part.choices,
                recipe=part.recipe,
                should_split=part.should_split,
            )
            if part.should_split:
                await self._scheduler.sleep(self._split_delay)

    def restore(self, session_id: str, messages: list[ChatMessage]) -> None:
        """Replace identity and transcript from a stored snapshot."""
        self.session_id = session_id
        self.messages = list(messages) or [self._welcome_message()]

    def reset(self) -> None:
        """Back to the welcome message; the session id is kept."""
        self.messages = [self._welcome_message()]
        self.error = None
        if self._storage:
            self._storage.clear(StorageKey.CHAT_HISTORY)
