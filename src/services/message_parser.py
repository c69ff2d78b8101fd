"""Parsing of assistant replies into structured chat content.

Replies from the chat backend are either structured JSON objects or free
text. Free text is mined for a choice list and, once the recipe is being
confirmed, for the recipe itself, then split into paced parts.
"""

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from hashlib import sha256
from typing import Any

from src.core.cache import MISSING, ParseCache
from src.models.message import MessageRole
from src.models.phase import RECIPE_PHASES, ChatPhase
from src.schemas.chat import ChatMessage, ChoiceOption, FragranceRecipe, MessagePart

logger = logging.getLogger(__name__)

DEFAULT_MAX_PART_LENGTH = 500
SPLIT_THRESHOLD = 20

DEFAULT_RECIPE_NAME = "オリジナルフレグランス"
DEFAULT_RECIPE_DESCRIPTION = "あなただけのカスタムフレグランス"

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_TRUNCATED_CONTENT = re.compile(r'\{\s*"content"\s*:\s*"')
_CLOSED_STRING = re.compile(r'(?<!\\)"\s*[,}]')
_FIRST_OBJECT = re.compile(r"\{[\s\S]*\}")

# Priority order; the first pattern with any match wins.
_CHOICE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\d+\.\s*\*\*([^*]+)\*\*\s*[-–—]\s*([^\n]+)"),
    re.compile(r"\d+\.\s*([^-–—]+)\s*[-–—]\s*([^\n]+)"),
    re.compile(r"\d+\.\s*([^\n\d.]+)"),
    re.compile(r"・\s*([^\n]+)"),
)

_CHOICE_START_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\d+\.\s*\*\*"),
    re.compile(r"\d+\.\s*[^-–—]+\s*[-–—]"),
    re.compile(r"\d+\.\s*[^\n\d.]+"),
    re.compile(r"・\s*"),
)

_SENTENCE_ENDS: tuple[str, ...] = (".", "。", "!", "！", "?", "？", "\n\n")

_NOTE_LINES: dict[str, re.Pattern[str]] = {
    "top_notes": re.compile(r"トップノート[：:]\s*([^。\n]+)"),
    "middle_notes": re.compile(r"ミドルノート[：:]\s*([^。\n]+)"),
    "base_notes": re.compile(r"ベースノート[：:]\s*([^。\n]+)"),
}
_ANY_NOTE_LINE = re.compile(r"(トップ|ミドル|ベース)ノート[：:]")
_TITLE = re.compile(r"^(.+?)[（(【]|^(.+?)(?=\n)")
_NOTE_SEPARATOR = re.compile(r"[、,，]")
_SENTENCE = re.compile(r"[^。！？!?\n]+[。！？!?]?")


@dataclass
class ExtractedChoices:
    """Choices mined from free text."""

    choices: list[ChoiceOption] = field(default_factory=list)
    descriptions: list[str] = field(default_factory=list)


def _cache_key(content: str) -> str:
    return sha256(content.encode("utf-8")).hexdigest()


def _parse_object(text: str, strict: bool = True) -> dict[str, Any] | None:
    try:
        value = json.loads(text, strict=strict)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _repair_truncated_content(content: str) -> dict[str, Any] | None:
    """Recover ``{"content": "...`` replies cut off before the closing quote."""
    match = _TRUNCATED_CONTENT.search(content)
    if match is None:
        return None

    remainder = content[match.end():]
    if _CLOSED_STRING.search(remainder):
        return None

    remainder = remainder.rstrip().rstrip("}").rstrip().rstrip('"')
    try:
        text = json.loads(f'"{remainder}"', strict=False)
    except ValueError:
        text = remainder
    return {"content": text}


def parse_message_content(content: Any, cache: ParseCache | None = None) -> dict[str, Any] | None:
    """Recover a structured object from an assistant reply.

    Tries, in order: the whole text as JSON, a fenced ```json block, a
    truncated ``{"content": "...`` reply, and the first ``{...}`` span.
    Never raises; unparseable input yields None.

    Args:
        content: Raw reply. Non-string input yields None.
        cache: Optional memo for repeated inputs.

    Returns:
        dict | None: Parsed object, or None.
    """
    if not isinstance(content, str) or not content.strip():
        return None

    key = _cache_key(content)
    if cache is not None:
        cached = cache.get(key)
        if cached is not MISSING:
            return dict(cached) if cached is not None else None

    result = _parse_uncached(content)
    if cache is not None:
        cache.set(key, result)
    return dict(result) if result is not None else None


def _parse_uncached(content: str) -> dict[str, Any] | None:
    parsed = _parse_object(content)
    if parsed is not None:
        return parsed

    fenced = _FENCED_JSON.search(content)
    if fenced:
        parsed = _parse_object(fenced.group(1), strict=False)
        if parsed is not None:
            return parsed

    repaired = _repair_truncated_content(content)
    if repaired is not None:
        return repaired

    block = _FIRST_OBJECT.search(content)
    if block:
        parsed = _parse_object(block.group(0), strict=False)
        if parsed is not None:
            return parsed

    logger.debug("No structured object in reply (%d chars)", len(content))
    return None


def normalize_choice(choice: Any) -> ChoiceOption:
    """Convert a bare string or mapping into a ChoiceOption."""
    if isinstance(choice, ChoiceOption):
        return choice
    if isinstance(choice, str):
        return ChoiceOption(name=choice)
    if isinstance(choice, dict):
        description = choice.get("description")
        return ChoiceOption(
            name=str(choice.get("name", "")),
            description=str(description) if description is not None else None,
        )
    return ChoiceOption(name=str(choice))


def normalize_choices(value: Any) -> list[ChoiceOption]:
    """Choices from a reply field; anything but a list counts as none."""
    if not isinstance(value, list):
        return []
    return [normalize_choice(item) for item in value]


def extract_choices_from_text(text: str) -> ExtractedChoices:
    """Find a numbered or bulleted choice list in free text.

    Patterns are tried from most to least specific; the first one that
    matches anything supplies all choices.
    """
    result = ExtractedChoices()
    if not text:
        return result

    for pattern in _CHOICE_PATTERNS:
        matches = list(pattern.finditer(text))
        if not matches:
            continue

        for match in matches:
            name = match.group(1).replace("**", "").strip()
            description = None
            if pattern.groups >= 2:
                description = match.group(2).replace("**", "").strip()
            if not name:
                continue
            result.choices.append(ChoiceOption(name=name, description=description))
            if description:
                result.descriptions.append(description)
        break

    return result


def find_first_choice_index(text: str) -> int:
    """Offset where the choice list starts, or -1."""
    for pattern in _CHOICE_START_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.start()
    return -1


def should_split_message(content: str, choices: list[Any] | None = None) -> bool:
    """Whether a reply is long enough, or rich enough, to be paced out."""
    return len(content) > SPLIT_THRESHOLD or bool(choices)


def _find_sentence_end(text: str, start: int, max_length: int) -> int:
    """End offset of the last sentence boundary that keeps the part within the limit."""
    limit = start + max_length
    best = -1
    for marker in _SENTENCE_ENDS:
        index = text.rfind(marker, start, limit)
        if index >= start:
            best = max(best, index + len(marker))
    if best <= start:
        return min(limit, len(text))
    return best


def split_message_into_parts(
    content: Any,
    current_phase: ChatPhase | None = None,
    max_part_length: int = DEFAULT_MAX_PART_LENGTH,
) -> list[MessagePart]:
    """Split a reply into display parts.

    Structured content (a mapping with ``content``/``text``) becomes one
    unsplit part. Free text has its choice list removed and, in the recipe
    phases, its recipe extracted; it is then cut at sentence boundaries.
    Only the final part carries choices and recipe.

    Args:
        content: Reply text or structured reply.
        current_phase: Phase at send time; gates recipe extraction.
        max_part_length: Maximum characters per part.

    Returns:
        list[MessagePart]: At least one part.
    """
    if isinstance(content, dict):
        text = content.get("content") or content.get("text") or ""
        choices = normalize_choices(content.get("choices")) or None
        recipe = coerce_recipe(content.get("recipe"))
        return [MessagePart(content=str(text), choices=choices, recipe=recipe, should_split=False)]

    max_part_length = max(1, max_part_length)
    original = "" if content is None else str(content)
    text = original
    extracted = extract_choices_from_text(original)
    choices = extracted.choices or None
    if choices:
        first = find_first_choice_index(original)
        if first >= 0:
            text = original[:first].strip()

    recipe = extract_recipe(original, current_phase) if current_phase else None

    if len(text) <= max_part_length:
        return [MessagePart(content=text, choices=choices, recipe=recipe, should_split=False)]

    parts: list[MessagePart] = []
    start = 0
    while start < len(text):
        end = _find_sentence_end(text, start, max_part_length)
        piece = text[start:end].strip()
        if piece:
            parts.append(MessagePart(content=piece, should_split=True))
        start = end

    if not parts:
        return [MessagePart(content=text.strip(), choices=choices, recipe=recipe, should_split=False)]

    last = parts[-1]
    parts[-1] = MessagePart(content=last.content, choices=choices, recipe=recipe, should_split=False)
    return parts


def coerce_recipe(value: Any) -> FragranceRecipe | None:
    if isinstance(value, FragranceRecipe):
        return value
    if not isinstance(value, dict):
        return None
    try:
        return FragranceRecipe.model_validate(
            {
                "name": value.get("name") or DEFAULT_RECIPE_NAME,
                "description": value.get("description") or "",
                "top_notes": _as_notes(value.get("top_notes", value.get("topNotes"))),
                "middle_notes": _as_notes(value.get("middle_notes", value.get("middleNotes"))),
                "base_notes": _as_notes(value.get("base_notes", value.get("baseNotes"))),
            }
        )
    except (TypeError, ValueError):
        logger.warning("Discarding malformed recipe in reply: %r", value)
        return None


def _as_notes(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [note.strip() for note in _NOTE_SEPARATOR.split(value) if note.strip()]
    if not isinstance(value, list):
        return []
    return [str(note).strip() for note in value if str(note).strip()]


def extract_recipe(content: str, phase: ChatPhase | None) -> FragranceRecipe | None:
    """Pull a recipe out of free text in the recipe phases.

    Args:
        content: Reply text.
        phase: Phase at send time; outside finalized/complete nothing is
            extracted.

    Returns:
        FragranceRecipe | None: Recipe when at least one note line is found.
    """
    if phase not in RECIPE_PHASES or not content:
        return None

    notes: dict[str, list[str]] = {}
    for key, pattern in _NOTE_LINES.items():
        match = pattern.search(content)
        notes[key] = _as_notes(match.group(1)) if match else []

    if not any(notes.values()):
        return None

    name = DEFAULT_RECIPE_NAME
    title = _TITLE.match(content)
    if title:
        candidate = (title.group(1) or title.group(2) or "").strip()
        if candidate and not _ANY_NOTE_LINE.search(candidate):
            name = candidate

    return FragranceRecipe(
        name=name,
        description=_recipe_description(content) or name,
        **notes,
    )


def _recipe_description(content: str) -> str:
    """Up to three sentences of prose preceding the first note line."""
    marker = _ANY_NOTE_LINE.search(content)
    prose = content[: marker.start()] if marker else content
    sentences = [s.strip() for s in _SENTENCE.findall(prose) if s.strip()]
    if not sentences:
        return DEFAULT_RECIPE_DESCRIPTION

    description = ""
    for sentence in sentences[:3]:
        if description and not description.endswith(("。", "！", "？", "!", "?")):
            description += " "
        description += sentence
    return description


def create_message(role: MessageRole | str, content: str, **options: Any) -> ChatMessage:
    """Build a message with a fresh id and the current timestamp.

    Args:
        role: Message author.
        content: Message text.
        **options: choices, recipe or should_split.

    Returns:
        ChatMessage: New immutable message.
    """
    choices = options.get("choices")
    if choices is not None:
        options["choices"] = [normalize_choice(c) for c in choices]
    return ChatMessage(
        id=str(uuid.uuid4()),
        role=MessageRole(role),
        content=content,
        timestamp=int(time.time() * 1000),
        **options,
    )
