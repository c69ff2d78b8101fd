"""Unit tests for the chat core send/receive loop."""

from unittest.mock import patch

import pytest

from src.models.message import MessageRole
from src.models.phase import ChatPhase
from src.schemas.chat import ChatResponse, FragranceRecipe, SelectedScents
from src.services.chat_core import WELCOME_MESSAGE, ChatCore
from src.services.chat_errors import (
    CHAT_FAILURE_MESSAGE,
    SERVER_DETAIL,
    TIMEOUT_DETAIL,
    ChatTimeoutError,
)
from src.services.storage_service import StorageService
from tests.conftest import FakeChatBackend


def make_core(backend: FakeChatBackend, storage: StorageService | None = None) -> ChatCore:
    return ChatCore(backend, storage=storage, split_delay=0, follow_up_delay=0)


class TestInitialState:
    """Tests for a fresh chat core."""

    def test_starts_with_welcome(self, fake_backend: FakeChatBackend) -> None:
        core = make_core(fake_backend)

        assert len(core.messages) == 1
        assert core.messages[0].role == MessageRole.ASSISTANT
        assert core.messages[0].content == WELCOME_MESSAGE
        assert core.is_loading is False

    def test_session_id_persisted(self, fake_backend: FakeChatBackend, storage: StorageService) -> None:
        """Test that a new session id is stored and reused."""
        core = make_core(fake_backend, storage)

        assert storage.get_session_id() == core.session_id
        assert make_core(fake_backend, storage).session_id == core.session_id


class TestSendMessage:
    """Tests for a single exchange."""

    @pytest.mark.asyncio
    async def test_appends_user_and_reply(self, fake_backend: FakeChatBackend) -> None:
        core = make_core(fake_backend)

        response = await core.send_message("こんにちは")

        assert response.content == "了解です"
        assert [m.role for m in core.messages] == [
            MessageRole.ASSISTANT,
            MessageRole.USER,
            MessageRole.ASSISTANT,
        ]
        assert core.messages[-1].content == "了解です"
        assert core.error is None

    @pytest.mark.asyncio
    async def test_request_carries_context(self, fake_backend: FakeChatBackend) -> None:
        """Test that the transcript, phase and selection are sent."""
        core = make_core(fake_backend)
        scents = SelectedScents(top=["レモン"])

        await core.send_message("レモン", is_user_selection=True, current_phase=ChatPhase.MIDDLE, selected_scents=scents)

        request = fake_backend.requests[0]
        assert [turn.content for turn in request.messages] == [WELCOME_MESSAGE, "レモン"]
        assert request.current_phase == ChatPhase.MIDDLE
        assert request.selected_scents == scents
        assert request.is_user_selection is True

    @pytest.mark.asyncio
    async def test_blank_message_ignored(self, fake_backend: FakeChatBackend) -> None:
        core = make_core(fake_backend)

        assert await core.send_message("   ") is None
        assert fake_backend.requests == []
        assert len(core.messages) == 1

    @pytest.mark.asyncio
    async def test_history_persisted(self, fake_backend: FakeChatBackend, storage: StorageService) -> None:
        """Test that the transcript survives a new core on the same storage."""
        core = make_core(fake_backend, storage)
        await core.send_message("こんにちは")

        restored = make_core(fake_backend, storage)

        assert [m.content for m in restored.messages] == [WELCOME_MESSAGE, "こんにちは", "了解です"]


class TestReplyShaping:
    """Tests for turning responses into transcript messages."""

    @pytest.mark.asyncio
    async def test_structured_choices_kept_on_one_message(self) -> None:
        backend = FakeChatBackend([ChatResponse(content="トップノートを選んでください", choices=["レモン", "ベルガモット"])])
        core = make_core(backend)

        await core.send_message("爽やかに")

        last = core.messages[-1]
        assert last.content == "トップノートを選んでください"
        assert [c.name for c in last.choices] == ["レモン", "ベルガモット"]

    @pytest.mark.asyncio
    async def test_json_reply_is_parsed(self) -> None:
        """Test that a JSON string reply becomes content plus choices."""
        backend = FakeChatBackend([ChatResponse(content='{"content": "どれにする？", "choices": ["ローズ"]}')])
        core = make_core(backend)

        await core.send_message("花の香り")

        last = core.messages[-1]
        assert last.content == "どれにする？"
        assert [c.name for c in last.choices] == ["ローズ"]

    @pytest.mark.asyncio
    async def test_recipe_attached(self) -> None:
        recipe = FragranceRecipe(name="森の朝", top_notes=["レモン"], middle_notes=["ローズ"], base_notes=["バニラ"])
        backend = FakeChatBackend([ChatResponse(content="できました", recipe=recipe)])
        core = make_core(backend)

        await core.send_message("バニラ", current_phase=ChatPhase.BASE)

        assert core.messages[-1].recipe == recipe

    @pytest.mark.asyncio
    async def test_long_reply_split_into_parts(self) -> None:
        """Test that a long reply is paced out at sentence boundaries."""
        backend = FakeChatBackend([ChatResponse(content="こんにちは。今日は良い天気ですね！香りを一緒に作りましょう。")])
        core = ChatCore(backend, split_delay=0, max_part_length=13)

        await core.send_message("こんにちは")

        replies = core.messages[2:]
        assert [m.content for m in replies] == ["こんにちは。", "今日は良い天気ですね！", "香りを一緒に作りましょう。"]
        assert [m.should_split for m in replies] == [True, True, False]

    @pytest.mark.asyncio
    async def test_should_split_false_keeps_one_message(self) -> None:
        backend = FakeChatBackend([ChatResponse(content="こんにちは。今日は良い天気ですね！香りを一緒に作りましょう。", should_split=False)])
        core = ChatCore(backend, split_delay=0, max_part_length=13)

        await core.send_message("こんにちは")

        assert len(core.messages) == 3


    @pytest.mark.asyncio
    async def test_non_list_choices_treated_as_absent(self) -> None:
        """Test that a structured reply with a scalar choices field still shows its text."""
        backend = FakeChatBackend([ChatResponse(content='{"content": "hi", "choices": 3}')])
        core = make_core(backend)

        response = await core.send_message("x")

        assert response is not None
        assert core.messages[-1].content == "hi"
        assert core.messages[-1].choices is None
        assert core.error is None

    @pytest.mark.asyncio
    async def test_non_list_notes_treated_as_empty(self) -> None:
        backend = FakeChatBackend([ChatResponse(content='{"content": "できました", "recipe": {"top_notes": 1}}')])
        core = make_core(backend)

        await core.send_message("x", current_phase=ChatPhase.FINALIZED)

        assert core.messages[-1].content == "できました"
        assert core.messages[-1].recipe.top_notes == []


class TestFollowUps:
    """Tests for backend-requested follow-up messages."""

    @pytest.mark.asyncio
    async def test_follow_up_sent_once(self) -> None:
        """Test that only one follow-up is sent per turn."""
        backend = FakeChatBackend(
            [
                ChatResponse(content="テーマはこちら", follow_up="トップノートへ"),
                ChatResponse(content="トップノートです", follow_up="ミドルノートへ"),
            ]
        )
        core = make_core(backend)

        response = await core.send_message("おまかせ")

        assert len(backend.requests) == 2
        assert backend.requests[1].messages[-1].content == "トップノートへ"
        assert response.content == "トップノートです"
        assert [m.content for m in core.messages[1:]] == ["おまかせ", "テーマはこちら", "トップノートへ", "トップノートです"]


class TestFailures:
    """Tests for failed exchanges."""

    @pytest.mark.asyncio
    async def test_backend_error_becomes_apology(self) -> None:
        backend = FakeChatBackend([ChatTimeoutError("timeout: read timed out")])
        core = make_core(backend)

        assert await core.send_message("こんにちは") is None

        last = core.messages[-1]
        assert last.role == MessageRole.ASSISTANT
        assert last.content.startswith(CHAT_FAILURE_MESSAGE)
        assert TIMEOUT_DETAIL in last.content
        assert core.error == "timeout: read timed out"
        assert core.is_loading is False

    @pytest.mark.asyncio
    async def test_error_field_is_failure(self) -> None:
        """Test that a response carrying an error is not shown as a reply."""
        backend = FakeChatBackend([ChatResponse(error="500 Internal Server Error")])
        core = make_core(backend)

        assert await core.send_message("こんにちは") is None
        assert SERVER_DETAIL in core.messages[-1].content

    @pytest.mark.asyncio
    async def test_next_send_clears_error(self) -> None:
        backend = FakeChatBackend([ChatTimeoutError("timeout")])
        core = make_core(backend)
        await core.send_message("1")

        await core.send_message("2")

        assert core.error is None


    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_apology(self) -> None:
        """Test that any backend exception ends as an assistant message, not a raise."""
        backend = FakeChatBackend([RuntimeError("boom")])
        core = make_core(backend)

        assert await core.send_message("x") is None

        assert [m.role for m in core.messages[1:]] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert core.messages[-1].content.startswith(CHAT_FAILURE_MESSAGE)
        assert core.error == "boom"
        assert core.is_loading is False

    @pytest.mark.asyncio
    async def test_reply_shaping_failure_becomes_apology(self) -> None:
        backend = FakeChatBackend([ChatResponse(content="こんにちは")])
        core = make_core(backend)

        with patch("src.services.chat_core.should_split_message", side_effect=TypeError("bad reply")):
            assert await core.send_message("x") is None

        assert core.messages[-1].content.startswith(CHAT_FAILURE_MESSAGE)
        assert core.error == "bad reply"


class TestReset:
    """Tests for resetting the transcript."""

    @pytest.mark.asyncio
    async def test_reset_keeps_session_id(self, fake_backend: FakeChatBackend, storage: StorageService) -> None:
        core = make_core(fake_backend, storage)
        session_id = core.session_id
        await core.send_message("こんにちは")

        core.reset()

        assert [m.content for m in core.messages] == [WELCOME_MESSAGE]
        assert core.session_id == session_id
        assert storage.get_chat_history() == []
