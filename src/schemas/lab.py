"""Lab session API request/response schemas."""

from pydantic import BaseModel, ConfigDict, Field

from src.models.phase import ChatPhase, NoteCategory, PhaseShortcut
from src.schemas.chat import ChoiceOption, FragranceRecipe, LabSessionSnapshot


class PhaseProgressSchema(BaseModel):
    """Position of the current phase in the flow."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    step: int = Field(description="Zero-based step of the current phase")
    total_steps: int = Field(alias="totalSteps", description="Number of steps after welcome")
    percentage: int = Field(description="Completion percentage")


class LabSessionResponse(BaseModel):
    """Full view of a lab session."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    snapshot: LabSessionSnapshot = Field(description="Transcript, phase and selection")
    phase_display_name: str = Field(alias="phaseDisplayName", description="Japanese label of the phase")
    progress: PhaseProgressSchema = Field(description="Flow progress")
    is_order_button_enabled: bool = Field(alias="isOrderButtonEnabled", description="Order hand-off is possible")
    is_loading: bool = Field(alias="isLoading", description="A chat exchange is in flight")
    error: str | None = Field(default=None, description="Last chat error message")
    recipe: FragranceRecipe | None = Field(default=None, description="Composed recipe, if any")
    degraded_storage: bool = Field(
        default=False,
        alias="degradedStorage",
        description="Persistence failed and the session runs from memory",
    )


class SendMessageRequest(BaseModel):
    """Free-text message from the user."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1, max_length=2000, description="Message text")


class ChoiceClickRequest(BaseModel):
    """A clicked choice, either its name or the full option."""

    model_config = ConfigDict(populate_by_name=True)

    choice: str | ChoiceOption = Field(description="Clicked option")


class PhaseChangeRequest(BaseModel):
    """Explicit phase change request."""

    model_config = ConfigDict(populate_by_name=True)

    phase: ChatPhase = Field(description="Requested phase")
    shortcut: PhaseShortcut | None = Field(default=None, description="Named shortcut that allows a non-default edge")


class SelectionResultSchema(BaseModel):
    """Outcome of recording a clicked scent."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    ok: bool = Field(description="Selection was recorded")
    category: NoteCategory | None = Field(default=None, description="Category the scent was stored under")
    reason: str | None = Field(default=None, description="Why the selection was refused")
    auto_transition_scheduled: bool = Field(
        default=False,
        alias="autoTransitionScheduled",
        description="All notes chosen and the finalize step is scheduled",
    )


class ChoiceClickResponse(LabSessionResponse):
    """Session view after a choice click."""

    selection: SelectionResultSchema | None = Field(default=None, description="Scent selection outcome")


class PhaseChangeResponse(LabSessionResponse):
    """Session view after a phase request; refused requests are not errors."""

    ok: bool = Field(description="Transition was applied")
    reason: str | None = Field(default=None, description="Why the transition was refused")


class AutoCreateResponse(LabSessionResponse):
    """Session view after an auto-create request."""

    ok: bool = Field(description="Recipe was created")
    reason: str | None = Field(default=None, description="Why auto-create was refused")


class OrderDecisionResponse(BaseModel):
    """Outcome of the order hand-off."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    allowed: bool = Field(description="Order can proceed")
    redirect_url: str | None = Field(default=None, alias="redirectUrl", description="Order page to navigate to")
    recipe: FragranceRecipe | None = Field(default=None, description="Recipe handed to the order page")
    reason: str | None = Field(default=None, description="Why the hand-off was refused")


class SaveSessionResponse(BaseModel):
    """Archive confirmation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(description="Snapshot was archived")
    session_id: str = Field(alias="sessionId", description="Archived session id")


class ChatErrorResponse(BaseModel):
    """Error body of the chat API."""

    error: str = Field(description="Error message")
