"""Webhook notification parsing and payment resolution.

Mercado Pago reaches the webhook through several emission paths (webhooks v1,
legacy IPN, merchant order feeds) and each one points at the payment
differently. parse_notification() turns the loose body/query pair into one of
a closed set of variants; PaymentFetcher resolves a variant to the
authoritative payment record.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from guied.billing.provider import MercadoPagoClient
from guied.db.models import PaymentStatus

logger = logging.getLogger(__name__)

PAYMENT_TOPIC = "payment"
ORDER_TOPIC = "merchant_order"

_ORDER_RESOURCE_RE = re.compile(r"/merchant_orders/(\d+)")
_PAYMENT_RESOURCE_RE = re.compile(r"/payments/(\w+)")

_STATUS_MAP = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
}


@dataclass(frozen=True)
class DirectPayment:
    """``{"data": {"id": ...}}`` (webhooks v1)."""

    payment_id: str


@dataclass(frozen=True)
class FlatAltKey:
    """``data.id`` as a flat body key or query parameter."""

    payment_id: str


@dataclass(frozen=True)
class TopLevelId:
    """``{"id": ...}`` or ``?id=...`` with a payment topic (IPN)."""

    payment_id: str


@dataclass(frozen=True)
class OrderPointer:
    """Merchant order reference; payments are listed on the order."""

    order_id: str


@dataclass(frozen=True)
class Unrecognized:
    """Heartbeat, test ping, or a topic this service does not handle."""

    reason: str = "no payment identifier"


Notification = Union[DirectPayment, FlatAltKey, TopLevelId, OrderPointer, Unrecognized]


@dataclass
class PaymentRecord:
    """Provider payment, reduced to what reconciliation reads."""

    id: str
    status: PaymentStatus
    user_id: Optional[str] = None
    plan: Optional[str] = None
    external_reference: Optional[str] = None
    order_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, payload: dict[str, Any], fallback_id: str = "") -> "PaymentRecord":
        """Build a record from a ``GET /v1/payments/{id}`` response."""
        metadata = payload.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}

        order = payload.get("order")
        order_id = _as_id(order.get("id")) if isinstance(order, dict) else None

        return cls(
            id=_as_id(payload.get("id")) or fallback_id,
            status=_STATUS_MAP.get(str(payload.get("status", "")).lower(), PaymentStatus.OTHER),
            user_id=_as_text(metadata.get("user_id")),
            plan=_as_text(metadata.get("plan")),
            external_reference=_as_text(payload.get("external_reference")),
            order_id=order_id,
            raw=payload,
        )


def _as_id(value: Any) -> Optional[str]:
    """Provider ids arrive as ints or strings; booleans and blanks are not ids."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _topic(body: Mapping[str, Any], query: Mapping[str, str]) -> Optional[str]:
    for source in (body, query):
        value = source.get("topic") or source.get("type")
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return None


def parse_notification(
    body: Optional[Mapping[str, Any]],
    query: Optional[Mapping[str, str]] = None,
) -> Notification:
    """
    Classify a webhook delivery.

    Identifier sources are tried in order: nested ``data.id``, flat
    ``data.id`` key, top-level ``id``, then a merchant order ``resource``
    URL. A ``merchant_order`` topic turns whichever id was found into an
    order pointer. Topics other than payment and merchant order are
    ignored.
    """
    body = body if isinstance(body, Mapping) else {}
    query = query or {}

    topic = _topic(body, query)
    if topic is not None and topic not in (PAYMENT_TOPIC, ORDER_TOPIC):
        return Unrecognized(reason=f"topic {topic!r} ignored")
    is_order = topic == ORDER_TOPIC

    data = body.get("data")
    nested_id = _as_id(data.get("id")) if isinstance(data, Mapping) else None
    if nested_id:
        return OrderPointer(nested_id) if is_order else DirectPayment(nested_id)

    flat_id = _as_id(body.get("data.id")) or _as_id(query.get("data.id"))
    if flat_id:
        return OrderPointer(flat_id) if is_order else FlatAltKey(flat_id)

    top_id = _as_id(body.get("id")) or _as_id(query.get("id"))
    if top_id:
        return OrderPointer(top_id) if is_order else TopLevelId(top_id)

    resource = _as_text(body.get("resource"))
    if resource:
        match = _ORDER_RESOURCE_RE.search(resource)
        if match:
            return OrderPointer(match.group(1))
        if is_order and resource.isdigit():
            return OrderPointer(resource)
        if topic == PAYMENT_TOPIC:
            match = _PAYMENT_RESOURCE_RE.search(resource)
            if match:
                return TopLevelId(match.group(1))
            if resource.isdigit():
                return TopLevelId(resource)

    return Unrecognized()


class PaymentFetcher:
    """Resolve a notification to the provider's authoritative payment record."""

    def __init__(self, provider: MercadoPagoClient) -> None:
        self._provider = provider

    async def fetch(self, notification: Notification) -> Optional[PaymentRecord]:
        """
        Fetch the payment a notification points at.

        Returns None when the notification carries no payment (including a
        merchant order that has no payments yet). Makes at most two provider
        calls: one for the order, one for the payment.

        Raises:
            UpstreamError: If a provider call fails
        """
        if isinstance(notification, Unrecognized):
            logger.debug(f"Notification without payment: {notification.reason}")
            return None

        if isinstance(notification, OrderPointer):
            payment_id = await self._first_order_payment(notification.order_id)
            if payment_id is None:
                logger.info(f"Merchant order {notification.order_id} has no payments yet")
                return None
        else:
            payment_id = notification.payment_id

        payload = await self._provider.get_payment(payment_id)
        record = PaymentRecord.from_api(payload, fallback_id=payment_id)
        logger.info(f"Fetched payment {record.id}: status={record.status.value}")
        return record

    async def _first_order_payment(self, order_id: str) -> Optional[str]:
        order = await self._provider.get_merchant_order(order_id)
        payments = order.get("payments")
        if not isinstance(payments, list):
            return None
        for payment in payments:
            if isinstance(payment, Mapping):
                payment_id = _as_id(payment.get("id"))
                if payment_id:
                    return payment_id
        return None
