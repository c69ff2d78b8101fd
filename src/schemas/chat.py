"""Chat, recipe and scent selection schemas.

Python attributes are snake_case. The HTTP API speaks camelCase through
field aliases; storage writes plain ``model_dump()`` output (snake_case).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.message import MessageRole
from src.models.phase import ChatPhase, NoteCategory


class ChoiceOption(BaseModel):
    """A selectable option offered by the assistant."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    name: str = Field(description="Option label, e.g. an essential oil name")
    description: str | None = Field(default=None, description="Short explanation of the option")


def _coerce_choices(value: Any) -> Any:
    if value is None:
        return None
    if not isinstance(value, list):
        return value
    return [{"name": item} if isinstance(item, str) else item for item in value]


class FragranceRecipe(BaseModel):
    """A finished (or in-progress) fragrance recipe."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    name: str = Field(description="Recipe title")
    description: str = Field(default="", description="Recipe description")
    top_notes: list[str] = Field(default_factory=list, alias="topNotes", description="Top note oils")
    middle_notes: list[str] = Field(default_factory=list, alias="middleNotes", description="Middle note oils")
    base_notes: list[str] = Field(default_factory=list, alias="baseNotes", description="Base note oils")

    def notes_for(self, category: NoteCategory) -> list[str]:
        """Notes of one layer."""
        return {
            NoteCategory.TOP: self.top_notes,
            NoteCategory.MIDDLE: self.middle_notes,
            NoteCategory.BASE: self.base_notes,
        }[category]


class SelectedScents(BaseModel):
    """User's note choices per category.

    Immutable: updates return a new value so readers never see a
    half-applied change.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    top: list[str] = Field(default_factory=list, description="Top note selection")
    middle: list[str] = Field(default_factory=list, description="Middle note selection")
    base: list[str] = Field(default_factory=list, description="Base note selection")

    def get(self, category: NoteCategory) -> list[str]:
        """Selection of one category."""
        return list(getattr(self, category.value))

    def with_category(self, category: NoteCategory, notes: list[str]) -> "SelectedScents":
        """Copy with one category replaced."""
        return self.model_copy(update={category.value: list(notes)})

    def is_complete(self) -> bool:
        """True when every category holds at least one note."""
        return bool(self.top) and bool(self.middle) and bool(self.base)


class ChatMessage(BaseModel):
    """A message in the lab conversation.

    Build through ``create_message`` so ids and timestamps are assigned
    consistently.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    id: str = Field(description="Message identifier")
    role: MessageRole = Field(description="Message author")
    content: str = Field(description="Message text")
    timestamp: int = Field(description="Creation time in epoch milliseconds")
    choices: list[ChoiceOption] | None = Field(default=None, description="Options offered with this message")
    recipe: FragranceRecipe | None = Field(default=None, description="Recipe carried by this message")
    should_split: bool | None = Field(default=None, alias="shouldSplit", description="Followed by a paced part")

    @field_validator("choices", mode="before")
    @classmethod
    def coerce_choices(cls, value: Any) -> Any:
        return _coerce_choices(value)


class MessagePart(BaseModel):
    """One bubble of a split assistant reply."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    content: str = Field(description="Text of this part")
    choices: list[ChoiceOption] | None = Field(default=None, description="Choices, only on the last part")
    recipe: FragranceRecipe | None = Field(default=None, description="Recipe, only on the last part")
    should_split: bool = Field(default=False, alias="shouldSplit", description="Another part follows after a pause")


class ChatTurn(BaseModel):
    """Role and content of one transcript entry sent to the chat API."""

    model_config = ConfigDict(extra="ignore")

    role: MessageRole = Field(description="Message author")
    content: str = Field(description="Message text")


class ChatRequest(BaseModel):
    """Request body of the chat API."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatTurn] = Field(description="Full transcript including the newest user message")
    current_phase: ChatPhase = Field(default=ChatPhase.WELCOME, alias="currentPhase", description="Phase at send time")
    selected_scents: SelectedScents = Field(
        default_factory=SelectedScents,
        alias="selectedScents",
        description="Current note selection",
    )
    is_user_selection: bool = Field(default=False, alias="isUserSelection", description="Message is a choice click")


class ChatResponse(BaseModel):
    """Response body of the chat API."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(default="", description="Assistant reply text")
    choices: list[ChoiceOption] | None = Field(default=None, description="Options to offer")
    recipe: FragranceRecipe | None = Field(default=None, description="Recipe, when one was composed")
    should_split: bool | None = Field(default=None, alias="shouldSplit", description="Client should pace the reply")
    follow_up: str | None = Field(default=None, alias="followUp", description="Message the client should send next")
    error: str | None = Field(default=None, description="Error text; a present value means the call failed")

    @field_validator("choices", mode="before")
    @classmethod
    def coerce_choices(cls, value: Any) -> Any:
        return _coerce_choices(value)


class LabSessionSnapshot(BaseModel):
    """Serialisable state of one lab session."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    session_id: str = Field(alias="sessionId", description="Session identifier")
    messages: list[ChatMessage] = Field(default_factory=list, description="Conversation transcript")
    current_phase: ChatPhase = Field(default=ChatPhase.WELCOME, alias="currentPhase", description="Current phase")
    selected_scents: SelectedScents = Field(
        default_factory=SelectedScents,
        alias="selectedScents",
        description="Current note selection",
    )
