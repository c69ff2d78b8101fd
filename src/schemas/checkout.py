"""Checkout Pydantic schemas for API request/response models."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class LabCheckoutCreate(BaseModel):
    """Schema for creating a lab checkout session via POST /checkout/lab."""

    model_config = ConfigDict(from_attributes=True)

    success_url: HttpUrl | None = Field(default=None, description="URL to redirect after successful checkout")
    cancel_url: HttpUrl | None = Field(default=None, description="URL to redirect if checkout is cancelled")
    customer_email: str | None = Field(default=None, description="Pre-fill customer email")


class CheckoutSessionResponse(BaseModel):
    """Schema for checkout session creation response."""

    model_config = ConfigDict(from_attributes=True)

    checkout_url: str = Field(description="Stripe Checkout URL to redirect to")
    order_id: UUID = Field(description="Created order UUID")
    stripe_session_id: str = Field(description="Stripe Checkout Session ID")
