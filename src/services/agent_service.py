"""Fragrance agent: the OpenAI-backed side of the chat API."""

import logging
import re
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAIError

from src.core.cache import ParseCache
from src.core.config import get_settings
from src.core.openai import get_openai_client
from src.models.message import MessageRole
from src.models.phase import PHASE_DISPLAY_NAMES, ChatPhase, NoteCategory
from src.schemas.chat import ChatRequest, ChatResponse, ChoiceOption, FragranceRecipe, SelectedScents
from src.services.chat_errors import ChatAPIError, ChatNetworkError, ChatTimeoutError
from src.services.fragrance_notes import (
    NOTE_LABELS,
    category_for_phase,
    describe_oil,
    format_catalog,
    suggested_choices,
)
from src.services.message_parser import coerce_recipe, normalize_choices, parse_message_content

logger = logging.getLogger(__name__)

FALLBACK_CONTENT = "選択肢から香りをお選びください："
EMPTY_REPLY = "応答が取得できませんでした。"
SHORT_MESSAGE_THRESHOLD = 20

SYSTEM_PROMPT = """あなたは香水を一緒に考える調香師『Fragrance Lab』です。
ユーザーと親しい友人のように接し、楽しく、でも丁寧に香水レシピを一緒に作成してください。

# 目的
ユーザーに寄り添い、その人だけの香りを提案し、最終的に香水レシピを完成させ、確認後に「次に進むボタン」へ誘導すること。

# 重要な制限事項
以下の香料のみを使用してください。これ以外の香料は在庫がないため使用できません。
各香料の説明は、必ず以下の定義を使用してください：

{catalog}

# 会話の文体
- 敬語とカジュアル語を混ぜたフレンドリーな文体を使ってください
- ユーザーのテンションや文章量に合わせて、言葉遣いや返答の長さを調整してください
- 必ず2段階に分けて返答してください。まず共感を返し、次の段落で具体的な提案や質問をする
- 段落は必ず空行で区切ってください

# 香水レシピ作成の流れ
1. ユーザーのイメージや好みを聞き出す
2. トップノート → 3. ミドルノート → 4. ベースノート
- 各ステップで3つの香り候補を提示し、候補は必ず上記リストから選ぶこと

# 選択肢の提示方法
選択肢を提示する際は、必ず以下のJSON形式で返してください：
{{"content": "どの香りがいいですか？", "choices": ["レモン", "ベルガモット", "ペパーミント"]}}

# レシピが完成したら
{{"content": "素敵なレシピができましたね！", "recipe": {{"top_notes": ["レモン"], "middle_notes": ["ローズ"], "base_notes": ["サンダルウッド"], "name": "Morning Bloom", "description": "爽やかで華やかな香りです。"}}, "choices": ["はい", "いいえ"]}}

# その他ルール
- 必ず文中に香水の名前を含めてください
- 相手の選択に対しては「選んでくれてありがとう！」のようにリアクションしてください
- 不適切な話題にはやんわりと注意し、香りの話題に戻してください

必ず上記で指定したJSON形式でレスポンスを返してください。"""

SHORT_REPLY_INSTRUCTION = "ユーザーの発言が短いので、返答も軽めで短く。"
LONG_REPLY_INSTRUCTION = "ユーザーの発言が長めなので、丁寧に少し長く応答してください。"

_DESCRIPTION_LINE = re.compile(r"^- ([^:：]+)[:：] (.+)$")
_FENCED_BLOCK = re.compile(r"```json[\s\S]*?```")
_RAW_JSON = re.compile(r'"json[\s\S]*?}')


def build_system_prompt() -> str:
    """System prompt with the oil catalog filled in."""
    return SYSTEM_PROMPT.format(catalog=format_catalog())


def dynamic_instruction(messages: list[Any]) -> str:
    """Reply length instruction based on the newest user message."""
    latest = next((m.content for m in reversed(messages) if m.role == MessageRole.USER), "")
    return SHORT_REPLY_INSTRUCTION if len(latest) < SHORT_MESSAGE_THRESHOLD else LONG_REPLY_INSTRUCTION


def _phase_context(phase: ChatPhase, selected_scents: SelectedScents) -> str:
    selected = ", ".join(
        f"{NOTE_LABELS[category]}={'/'.join(selected_scents.get(category)) or '未選択'}"
        for category in NoteCategory
    )
    return f"現在のステップ: {PHASE_DISPLAY_NAMES[phase]}\n選択済み: {selected}"


def build_reply(raw: str, cache: ParseCache | None = None) -> ChatResponse:
    """Turn a model reply into a chat response.

    Structured replies keep their choices and recipe, with inline
    ``- name: description`` lines moved onto the choices. Anything else is
    returned as text with stray JSON removed.
    """
    parsed = parse_message_content(raw, cache)
    if parsed is None or not any(key in parsed for key in ("content", "choices", "recipe")):
        content = _RAW_JSON.sub("", _FENCED_BLOCK.sub("", raw)).strip()
        return ChatResponse(content=content or FALLBACK_CONTENT, choices=[])

    descriptions: dict[str, str] = {}
    kept_lines = []
    for line in str(parsed.get("content") or "").split("\n"):
        match = _DESCRIPTION_LINE.match(line)
        if match:
            descriptions[match.group(1).strip()] = match.group(2).strip()
        else:
            kept_lines.append(line)
    content = _FENCED_BLOCK.sub("", "\n".join(kept_lines)).strip()

    choices: list[ChoiceOption] = []
    for choice in normalize_choices(parsed.get("choices")):
        if not choice.description:
            description = descriptions.get(choice.name) or describe_oil(choice.name)
            choice = ChoiceOption(name=choice.name, description=description or None)
        choices.append(choice)

    return ChatResponse(
        content=content or FALLBACK_CONTENT,
        choices=choices,
        recipe=coerce_recipe(parsed.get("recipe")),
    )


def _to_chat_error(error: OpenAIError) -> ChatAPIError:
    if isinstance(error, APITimeoutError):
        return ChatTimeoutError(f"timeout: {error}")
    if isinstance(error, APIConnectionError):
        return ChatNetworkError(f"NetworkError: {error}")
    if isinstance(error, APIStatusError):
        return ChatAPIError(f"APIエラー: {error.status_code}", status_code=error.status_code)
    return ChatAPIError(str(error))


class FragranceAgentService:
    """Answers chat requests with the fragrance consultant persona."""

    def __init__(self, parse_cache: ParseCache | None = None) -> None:
        """Initialize agent service.

        Args:
            parse_cache: Optional memo for reply parsing.
        """
        self.client = get_openai_client()
        self.settings = get_settings()
        self._parse_cache = parse_cache

    def build_context(self, request: ChatRequest) -> list[dict[str, str]]:
        """Messages sent to OpenAI: prompt, phase context, recent transcript."""
        context = [
            {
                "role": "system",
                "content": f"{build_system_prompt()}\n\n{dynamic_instruction(request.messages)}",
            },
            {"role": "system", "content": _phase_context(request.current_phase, request.selected_scents)},
        ]
        turns = [m for m in request.messages if m.role != MessageRole.SYSTEM]
        for turn in turns[-self.settings.max_context_messages:]:
            context.append({"role": turn.role.value, "content": turn.content})
        return context

    async def send(self, request: ChatRequest) -> ChatResponse:
        """Generate the assistant reply for a chat request.

        Args:
            request: Transcript, phase and selection at send time.

        Returns:
            ChatResponse: Reply content with optional choices and recipe.

        Raises:
            ChatAPIError: If the OpenAI call fails.
        """
        if self.settings.mock_openai:
            logger.info("Mock mode enabled - returning mock response")
            return self._get_mock_response(request)

        try:
            response = self.client.chat.create(
                phase=request.current_phase.value,
                model=self.settings.openai_model,
                messages=self.build_context(request),  # type: ignore[arg-type]
                max_completion_tokens=self.settings.openai_max_tokens,
                temperature=self.settings.openai_temperature,
            )
        except OpenAIError as e:
            logger.error("OpenAI API error: %s", str(e))
            raise _to_chat_error(e) from e

        raw = response.choices[0].message.content if response.choices else None
        return build_reply(raw or EMPTY_REPLY, self._parse_cache)

    def _get_mock_response(self, request: ChatRequest) -> ChatResponse:
        """Canned reply for the request's phase, without calling OpenAI."""
        phase = request.current_phase
        scents = request.selected_scents

        if phase in (ChatPhase.FINALIZED, ChatPhase.COMPLETE):
            return ChatResponse(content="[MOCK] ありがとう！準備ができたら注文ページへ進んでね。")

        if phase == ChatPhase.BASE and request.is_user_selection and scents.is_complete():
            recipe = FragranceRecipe(
                name="Mock Blend",
                description="[MOCK] 選んでくれた香りを組み合わせたブレンドです。",
                top_notes=scents.top,
                middle_notes=scents.middle,
                base_notes=scents.base,
            )
            return ChatResponse(
                content="[MOCK] 素敵なレシピができましたね！\n\nこの組み合わせで進めてみましょうか？",
                recipe=recipe,
                choices=[ChoiceOption(name="はい"), ChoiceOption(name="いいえ")],
            )

        if phase == ChatPhase.WELCOME:
            return ChatResponse(content="[MOCK] いいですね！\n\nどんなイメージの香りにしたいか教えてね。")

        category = category_for_phase(phase) or NoteCategory.TOP
        if request.is_user_selection and phase in (ChatPhase.TOP, ChatPhase.MIDDLE):
            category = NoteCategory.MIDDLE if phase == ChatPhase.TOP else NoteCategory.BASE
            lead = "[MOCK] 選んでくれてありがとう！"
        else:
            lead = "[MOCK] 素敵なイメージですね！"

        return ChatResponse(
            content=f"{lead}\n\n次は{NOTE_LABELS[category]}を選ぼう。どの香りがいいですか？",
            choices=suggested_choices(category),
        )
