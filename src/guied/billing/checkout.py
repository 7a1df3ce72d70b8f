"""Mercado Pago Checkout Pro preference creation for subscription signup."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from guied.billing.errors import UpstreamError
from guied.billing.identity import require_subscriber_id
from guied.billing.provider import MercadoPagoClient
from guied.billing.reference import encode_reference, parse_plan
from guied.billing.store import SubscriptionStore
from guied.config.settings import AppConfig
from guied.db.models import Plan

logger = logging.getLogger(__name__)

# PIX only: every other payment type is excluded from the checkout page
EXCLUDED_PAYMENT_TYPES = ("credit_card", "debit_card", "ticket")


@dataclass(frozen=True)
class CheckoutResult:
    """Link the client opens to pay."""

    init_point: str
    preference_id: str
    reference: str

    def to_dict(self) -> dict[str, Any]:
        return {"init_point": self.init_point, "preference_id": self.preference_id}


class CheckoutService:
    """Create checkout preferences that carry the subscriber's reference token."""

    def __init__(
        self,
        provider: MercadoPagoClient,
        store: SubscriptionStore,
        config: AppConfig,
    ) -> None:
        self._provider = provider
        self._store = store
        self._config = config

    def build_preference(self, user_id: str, plan: Plan) -> dict[str, Any]:
        """Preference request body for one month of ``plan``.

        The reference token goes out twice: as external_reference and in
        metadata. Mercado Pago returns both on the payment, and the webhook
        prefers metadata when it is present.
        """
        config = self._config
        reference = encode_reference(user_id, plan)

        return {
            "items": [
                {
                    "title": config.plan_titles.get(plan.value, f"Assinatura Guied – {plan.value}"),
                    "quantity": 1,
                    "unit_price": config.plan_prices[plan.value],
                    "currency_id": config.currency_id,
                }
            ],
            "payment_methods": {
                "default_payment_method_id": "pix",
                "excluded_payment_types": [{"id": t} for t in EXCLUDED_PAYMENT_TYPES],
            },
            "back_urls": {
                "success": config.checkout_success_url,
                "failure": config.checkout_failure_url,
                "pending": config.checkout_pending_url,
            },
            "auto_return": "approved",
            "notification_url": config.notification_url,
            "external_reference": reference,
            "metadata": {
                "user_id": user_id,
                "plan": plan.value,
                "reference": reference,
            },
        }

    async def create_checkout(self, user_id: str, plan: Optional[str] = None) -> CheckoutResult:
        """
        Create a checkout link for a subscriber.

        Args:
            user_id: Subscriber id (canonical UUID)
            plan: Plan name; absent means the baseline plan

        Returns:
            CheckoutResult with the provider's init_point and preference id

        Raises:
            ClientInputError: Invalid user_id, or a plan that is not offered
            UpstreamError: Provider failure or a response without id/init_point
            StoreError: If the checkout session cannot be recorded
            ValueError: If the plan has no configured price
        """
        require_subscriber_id(user_id)
        resolved_plan = parse_plan(plan)
        if resolved_plan.value not in self._config.plan_prices:
            raise ValueError(f"plan_prices has no entry for {resolved_plan.value}")

        body = self.build_preference(user_id, resolved_plan)
        response = await self._provider.create_preference(body)

        preference_id = response.get("id")
        init_point = response.get("init_point")
        if not preference_id or not init_point:
            raise UpstreamError(
                "provider response missing id or init_point",
                details=response,
            )

        preference_id = str(preference_id)
        reference = body["external_reference"]
        await self._store.record_checkout(preference_id, user_id, resolved_plan, reference)

        logger.info(
            f"Created checkout preference {preference_id} for {user_id} "
            f"(plan={resolved_plan.value})"
        )

        return CheckoutResult(
            init_point=str(init_point),
            preference_id=preference_id,
            reference=reference,
        )
