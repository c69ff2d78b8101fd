"""Unit tests for FragranceAgentService."""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, APITimeoutError

from src.models.phase import ChatPhase, NoteCategory
from src.schemas.chat import ChatRequest, ChatTurn, SelectedScents
from src.services.agent_service import (
    FALLBACK_CONTENT,
    LONG_REPLY_INSTRUCTION,
    SHORT_REPLY_INSTRUCTION,
    FragranceAgentService,
    _to_chat_error,
    build_reply,
    build_system_prompt,
    dynamic_instruction,
)
from src.services.chat_errors import ChatAPIError, ChatNetworkError, ChatTimeoutError
from src.services.fragrance_notes import ESSENTIAL_OILS

OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def make_request(
    phase: ChatPhase = ChatPhase.WELCOME,
    scents: SelectedScents | None = None,
    is_user_selection: bool = False,
    *contents: str,
) -> ChatRequest:
    return ChatRequest(
        messages=[ChatTurn(role="user", content=c) for c in contents or ("こんにちは",)],
        current_phase=phase,
        selected_scents=scents or SelectedScents(),
        is_user_selection=is_user_selection,
    )


def make_service(mock_openai: bool = True) -> tuple[FragranceAgentService, MagicMock]:
    mock_settings = MagicMock()
    mock_settings.mock_openai = mock_openai
    mock_settings.max_context_messages = 20
    mock_settings.openai_model = "gpt-4o-mini"
    mock_client = MagicMock()

    with patch("src.services.agent_service.get_openai_client", return_value=mock_client):
        with patch("src.services.agent_service.get_settings", return_value=mock_settings):
            return FragranceAgentService(), mock_client


class TestSystemPrompt:
    """Tests for prompt construction."""

    def test_catalog_included(self) -> None:
        """Test that every stocked oil appears in the prompt."""
        prompt = build_system_prompt()

        for oils in ESSENTIAL_OILS.values():
            for name in oils:
                assert name in prompt

    def test_dynamic_instruction_short(self) -> None:
        assert dynamic_instruction(make_request().messages) == SHORT_REPLY_INSTRUCTION

    def test_dynamic_instruction_long(self) -> None:
        """Test that a long user message asks for a fuller reply."""
        messages = make_request(ChatPhase.INTRO, None, False, "森の中を朝早く散歩しているような静かで澄んだ香りが欲しいです").messages
        assert dynamic_instruction(messages) == LONG_REPLY_INSTRUCTION


class TestBuildReply:
    """Tests for turning model output into a chat response."""

    def test_structured_reply(self) -> None:
        response = build_reply('{"content": "どれがいい？", "choices": ["レモン", "ベルガモット"]}')

        assert response.content == "どれがいい？"
        assert [c.name for c in response.choices] == ["レモン", "ベルガモット"]
        assert response.choices[0].description == ESSENTIAL_OILS[NoteCategory.TOP]["レモン"]

    def test_inline_descriptions_move_to_choices(self) -> None:
        """Test that '- name: description' lines describe the choices."""
        raw = '{"content": "候補です\\n- レモン: 朝の光のように爽やか", "choices": ["レモン"]}'

        response = build_reply(raw)

        assert response.content == "候補です"
        assert response.choices[0].description == "朝の光のように爽やか"

    def test_malformed_fields_ignored(self) -> None:
        """Test that scalar choices and notes do not break the reply."""
        response = build_reply('{"content": "できました", "choices": 3, "recipe": {"name": "森の朝", "top_notes": 1}}')

        assert response.content == "できました"
        assert response.choices == []
        assert response.recipe.top_notes == []

    def test_recipe_reply(self) -> None:
        raw = (
            '{"content": "できました", "recipe": {"name": "Morning Bloom", "top_notes": ["レモン"],'
            ' "middle_notes": ["ローズ"], "base_notes": ["サンダルウッド"]}}'
        )

        response = build_reply(raw)

        assert response.recipe.name == "Morning Bloom"
        assert response.recipe.base_notes == ["サンダルウッド"]

    def test_plain_text_reply(self) -> None:
        """Test that plain text passes through without choices."""
        response = build_reply("いい香りですね")

        assert response.content == "いい香りですね"
        assert response.choices == []

    def test_stray_json_removed(self) -> None:
        response = build_reply('```json\n{"broken": \n```')
        assert response.content == FALLBACK_CONTENT


class TestToChatError:
    """Tests for mapping OpenAI errors."""

    def test_timeout(self) -> None:
        error = _to_chat_error(APITimeoutError(request=OPENAI_REQUEST))
        assert isinstance(error, ChatTimeoutError)

    def test_connection(self) -> None:
        error = _to_chat_error(APIConnectionError(request=OPENAI_REQUEST))
        assert isinstance(error, ChatNetworkError)

    def test_status(self) -> None:
        """Test that the HTTP status is kept."""
        response = httpx.Response(429, request=OPENAI_REQUEST)
        error = _to_chat_error(APIStatusError("rate limited", response=response, body=None))

        assert type(error) is ChatAPIError
        assert error.status_code == 429
        assert error.message == "APIエラー: 429"


class TestMockResponses:
    """Tests for canned replies in mock mode."""

    @pytest.mark.asyncio
    async def test_welcome(self) -> None:
        service, client = make_service()

        response = await service.send(make_request())

        assert response.content.startswith("[MOCK]")
        assert not response.choices
        client.chat.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_top_selection_offers_middle(self) -> None:
        """Test that a top choice is answered with middle suggestions."""
        service, _ = make_service()

        response = await service.send(make_request(ChatPhase.TOP, SelectedScents(top=["レモン"]), True))

        assert [c.name for c in response.choices] == ["ローズ", "イランイラン", "カモミール"]

    @pytest.mark.asyncio
    async def test_complete_base_returns_recipe(self) -> None:
        scents = SelectedScents(top=["レモン"], middle=["ローズ"], base=["バニラ"])
        service, _ = make_service()

        response = await service.send(make_request(ChatPhase.BASE, scents, True))

        assert response.recipe.name == "Mock Blend"
        assert response.recipe.middle_notes == ["ローズ"]


class TestLiveSend:
    """Tests for the OpenAI path."""

    @pytest.mark.asyncio
    async def test_reply_is_parsed(self) -> None:
        service, client = make_service(mock_openai=False)
        completion = MagicMock()
        completion.choices = [MagicMock()]
        completion.choices[0].message.content = '{"content": "どれにする？", "choices": ["ローズ"]}'
        client.chat.create.return_value = completion

        response = await service.send(make_request(ChatPhase.MIDDLE))

        assert response.content == "どれにする？"
        messages = client.chat.create.call_args.kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert messages[-1] == {"role": "user", "content": "こんにちは"}

    @pytest.mark.asyncio
    async def test_openai_error_raised_as_chat_error(self) -> None:
        service, client = make_service(mock_openai=False)
        client.chat.create.side_effect = APIConnectionError(request=OPENAI_REQUEST)

        with pytest.raises(ChatNetworkError):
            await service.send(make_request())

    @pytest.mark.asyncio
    async def test_context_limited(self) -> None:
        """Test that only the most recent turns are sent."""
        service, _ = make_service(mock_openai=False)
        service.settings.max_context_messages = 2
        request = make_request(ChatPhase.INTRO, None, False, "1", "2", "3")

        context = service.build_context(request)

        assert [m["content"] for m in context[2:]] == ["2", "3"]
