"""Stripe checkout for finished lab recipes."""

import json
import logging
from typing import Any
from uuid import UUID

import stripe

from src.core.config import get_settings
from src.core.stripe import get_stripe
from src.core.supabase import get_supabase_client
from src.schemas.chat import FragranceRecipe

logger = logging.getLogger(__name__)

CURRENCY = "jpy"


class LabCheckoutService:
    """Creates pending orders and Stripe Checkout Sessions for lab recipes."""

    def __init__(self) -> None:
        """Initialize checkout service with clients."""
        self.client = get_supabase_client()
        self.stripe = get_stripe()
        self.settings = get_settings()

    def _recipe_metadata(self, recipe: FragranceRecipe) -> str:
        # Stripe metadata values are strings of at most 500 characters.
        payload = json.dumps(recipe.model_dump(), ensure_ascii=False)
        return payload[:500]

    async def create_checkout_session(
        self,
        recipe: FragranceRecipe,
        client_id: str,
        lab_session_id: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
        customer_email: str | None = None,
    ) -> dict[str, Any]:
        """Create a pending order and its Stripe Checkout Session.

        Args:
            recipe: The recipe being purchased.
            client_id: Client namespace that owns the recipe.
            lab_session_id: Chat session the recipe came from.
            success_url: Redirect after payment; defaults to the frontend
                success page.
            cancel_url: Redirect when cancelled; defaults to the lab order page.
            customer_email: Optional pre-fill email.

        Returns:
            dict: Contains checkout_url, order_id, stripe_session_id.

        Raises:
            ValueError: If Stripe is not configured.
            stripe.StripeError: If the Stripe call fails; the order is
                cancelled first.
        """
        if not self.settings.stripe_secret_key:
            raise ValueError("Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.")

        frontend = self.settings.frontend_url.rstrip("/")
        success_url = success_url or f"{frontend}/success?session_id={{CHECKOUT_SESSION_ID}}"
        cancel_url = cancel_url or self.settings.order_url

        stored_recipe = recipe.model_dump()
        order_data = {
            "client_id": client_id,
            "lab_session_id": lab_session_id,
            "stripe_checkout_session_id": None,
            "status": "pending",
            "line_items": [
                {
                    "product_name": self.settings.lab_product_name,
                    "quantity": 1,
                    "unit_amount": self.settings.lab_price_jpy,
                    "recipe": stored_recipe,
                }
            ],
            "total_amount": self.settings.lab_price_jpy,
            "currency": CURRENCY,
            "customer_email": customer_email,
            "metadata": {"mode": "lab"},
        }

        order_response = self.client.table("orders").insert(order_data).execute()
        order_id = order_response.data[0]["id"]

        try:
            checkout_params: dict[str, Any] = {
                "mode": "payment",
                "payment_method_types": ["card"],
                "line_items": [
                    {
                        "price_data": {
                            "currency": CURRENCY,
                            "unit_amount": self.settings.lab_price_jpy,
                            "product_data": {
                                "name": f"{self.settings.lab_product_name}「{recipe.name}」",
                                "description": recipe.description or None,
                            },
                        },
                        "quantity": 1,
                    }
                ],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": {
                    "order_id": str(order_id),
                    "mode": "lab",
                    "fragrance_name": recipe.name,
                    "recipe": self._recipe_metadata(recipe),
                    "lab_session_id": lab_session_id,
                },
                "shipping_address_collection": {"allowed_countries": ["JP"]},
                "billing_address_collection": "required",
                "phone_number_collection": {"enabled": True},
            }
            if customer_email:
                checkout_params["customer_email"] = customer_email

            stripe_session = self.stripe.checkout.Session.create(**checkout_params)

            self.client.table("orders").update(
                {"stripe_checkout_session_id": stripe_session.id}
            ).eq("id", order_id).execute()

            logger.info("Created lab checkout %s for order %s", stripe_session.id, order_id)
            return {
                "checkout_url": stripe_session.url,
                "order_id": UUID(str(order_id)),
                "stripe_session_id": stripe_session.id,
            }

        except stripe.StripeError as e:
            logger.error("Stripe error creating checkout session: %s", str(e))
            self.client.table("orders").update(
                {"status": "cancelled"}
            ).eq("id", order_id).execute()
            raise
