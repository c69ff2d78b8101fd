"""Lab session routes: the guided recipe-building conversation."""

import logging
from typing import Any

from fastapi import APIRouter, status

from src.api.deps import ChatRateLimit, CurrentLabSession
from src.schemas.lab import (
    AutoCreateResponse,
    ChoiceClickRequest,
    ChoiceClickResponse,
    LabSessionResponse,
    OrderDecisionResponse,
    PhaseChangeRequest,
    PhaseChangeResponse,
    PhaseProgressSchema,
    SaveSessionResponse,
    SelectionResultSchema,
    SendMessageRequest,
)
from src.services.lab_session import LabSession
from src.services.session_archive_service import SessionArchiveService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lab/session", tags=["lab"])


def _view_fields(session: LabSession) -> dict[str, Any]:
    view = session.view()
    return {
        "snapshot": view.snapshot,
        "phase_display_name": view.phase_display_name,
        "progress": PhaseProgressSchema(
            step=view.progress.step,
            total_steps=view.progress.total_steps,
            percentage=view.progress.percentage,
        ),
        "is_order_button_enabled": view.is_order_button_enabled,
        "is_loading": view.is_loading,
        "error": view.error,
        "recipe": view.recipe,
        "degraded_storage": view.degraded_storage,
    }


@router.get(
    "",
    response_model=LabSessionResponse,
    summary="Get lab session",
    description="Returns the client's lab session, creating it (and the client cookie) on first access.",
)
async def get_session(session: CurrentLabSession) -> LabSessionResponse:
    """Return the current session view."""
    return LabSessionResponse(**_view_fields(session))


@router.post(
    "/messages",
    response_model=LabSessionResponse,
    summary="Send free text",
    description="Sends a user message, appends the reply and advances the phase.",
)
async def send_message(
    data: SendMessageRequest,
    session: CurrentLabSession,
    _rate_limit: ChatRateLimit,
) -> LabSessionResponse:
    """Send a free-text message.

    Backend failures do not fail the request: the apology message and
    ``error`` are part of the returned view.

    Args:
        data: Message text.
        session: The client's lab session.

    Returns:
        LabSessionResponse: Session view after the exchange.
    """
    await session.send_message(data.content)
    return LabSessionResponse(**_view_fields(session))


@router.post(
    "/choices",
    response_model=ChoiceClickResponse,
    summary="Click a choice",
    description="Records the scent for the current note phase, sends it and steps the flow forward.",
)
async def click_choice(
    data: ChoiceClickRequest,
    session: CurrentLabSession,
    _rate_limit: ChatRateLimit,
) -> ChoiceClickResponse:
    """Handle a clicked choice.

    Args:
        data: Clicked option.
        session: The client's lab session.

    Returns:
        ChoiceClickResponse: Session view plus the selection outcome.
    """
    result = await session.handle_choice_click(data.choice)
    selection = None
    if result is not None:
        selection = SelectionResultSchema(
            ok=result.ok,
            category=result.category,
            reason=result.reason.value if result.reason else None,
            auto_transition_scheduled=result.auto_transition_scheduled,
        )
    return ChoiceClickResponse(**_view_fields(session), selection=selection)


@router.post(
    "/phase",
    response_model=PhaseChangeResponse,
    summary="Request a phase",
    description="Applies a permitted transition. Refused transitions return ok=false and leave the phase unchanged.",
)
async def change_phase(data: PhaseChangeRequest, session: CurrentLabSession) -> PhaseChangeResponse:
    """Request an explicit phase change."""
    result = session.update_phase(data.phase, data.shortcut)
    return PhaseChangeResponse(
        **_view_fields(session),
        ok=result.ok,
        reason=result.reason.value if result.reason else None,
    )


@router.post(
    "/auto-create",
    response_model=AutoCreateResponse,
    summary="Create recipe automatically",
    description="Picks the default note for each layer and composes the おまかせ recipe.",
)
async def auto_create(session: CurrentLabSession) -> AutoCreateResponse:
    """Compose the default recipe without asking the user."""
    result = await session.auto_create_recipe()
    return AutoCreateResponse(**_view_fields(session), ok=result.ok, reason=result.reason)


@router.post(
    "/order",
    response_model=OrderDecisionResponse,
    summary="Go to order",
    description="Checks the order gate and returns the order page URL with the stored recipe.",
)
async def go_to_order(session: CurrentLabSession) -> OrderDecisionResponse:
    """Order hand-off; refused when the recipe is not ready."""
    decision = session.go_to_order()
    return OrderDecisionResponse(
        allowed=decision.allowed,
        redirect_url=decision.redirect_url,
        recipe=decision.recipe,
        reason=decision.reason.value if decision.reason else None,
    )


@router.post(
    "/reset",
    response_model=LabSessionResponse,
    summary="Reset lab session",
    description="Clears transcript, phase, selection, recipe and pending timers.",
)
async def reset_session(session: CurrentLabSession) -> LabSessionResponse:
    """Start the conversation over."""
    session.reset()
    return LabSessionResponse(**_view_fields(session))


@router.post(
    "/save",
    response_model=SaveSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Archive lab session",
    description="Stores the session snapshot and recipe in the fragrance_sessions table.",
)
async def save_session(session: CurrentLabSession) -> SaveSessionResponse:
    """Archive the current snapshot."""
    service = SessionArchiveService()
    await service.save_session(session.snapshot(), session.recipes.recipe)
    logger.info("Archived lab session %s", session.session_id)
    return SaveSessionResponse(success=True, session_id=session.session_id)
