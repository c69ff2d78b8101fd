"""Order model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID

from src.models.message import StoredRecipe

# Order status values matching the database enum
OrderStatus = Literal["pending", "processing", "completed", "cancelled", "refunded"]


class LabOrderLineItem(TypedDict):
    """Single custom-fragrance line item stored in the line_items JSONB array."""

    product_name: str
    quantity: int
    unit_amount: int
    recipe: StoredRecipe


class LabOrderCreate(TypedDict, total=False):
    """Data required to create a pending lab order before checkout."""

    client_id: str
    lab_session_id: str
    stripe_checkout_session_id: str
    status: OrderStatus
    line_items: list[LabOrderLineItem]
    total_amount: int
    currency: str
    customer_email: str | None
    metadata: dict


class LabOrder(LabOrderCreate):
    """orders table row for a lab purchase."""

    id: UUID
    created_at: datetime
    updated_at: datetime
