"""Checkout API routes for Stripe integration."""

from fastapi import APIRouter, HTTPException, status

from src.api.deps import ClientId, CurrentLabSession
from src.api.middleware.error_handler import ValidationError
from src.schemas.checkout import CheckoutSessionResponse, LabCheckoutCreate
from src.services.checkout_service import LabCheckoutService

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "/lab",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create lab Checkout Session",
    description="Creates a Stripe Checkout Session for the recipe composed in the client's lab session.",
)
async def create_lab_checkout_session(
    data: LabCheckoutCreate,
    client_id: ClientId,
    session: CurrentLabSession,
) -> CheckoutSessionResponse:
    """Create a Stripe Checkout Session for the lab recipe.

    The order gate of the lab session applies: the recipe must be complete
    and the conversation in the confirmation phases.

    Args:
        data: Optional redirect URLs and email.
        client_id: The requesting client's id.
        session: The client's lab session.

    Returns:
        CheckoutSessionResponse: Contains checkout_url for redirect.

    Raises:
        ValidationError: 422 if the recipe is not ready to order.
        HTTPException: 400 if Stripe is not configured.
    """
    decision = session.go_to_order()
    if not decision.allowed:
        raise ValidationError(
            message="Recipe is not ready to order",
            details=[{"reason": decision.reason, "phase": session.phases.current_phase.value}],
        )

    service = LabCheckoutService()
    try:
        result = await service.create_checkout_session(
            recipe=decision.recipe,
            client_id=client_id,
            lab_session_id=session.session_id,
            success_url=str(data.success_url) if data.success_url else None,
            cancel_url=str(data.cancel_url) if data.cancel_url else None,
            customer_email=data.customer_email,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    return CheckoutSessionResponse(
        checkout_url=result["checkout_url"],
        order_id=result["order_id"],
        stripe_session_id=result["stripe_session_id"],
    )
