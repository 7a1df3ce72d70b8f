"""Mercado Pago subscription billing.

Handles checkout preference creation, webhook reconciliation into the
subscription store, entitlement queries, cancellation and account erasure.
"""

from guied.billing.checkout import CheckoutService
from guied.billing.entitlement import Entitlement, EntitlementResolver
from guied.billing.notifications import PaymentFetcher, PaymentRecord, parse_notification
from guied.billing.reconcile import ReconcileOutcome, Reconciler
from guied.billing.server import build_app, create_app

__all__ = [
    "CheckoutService",
    "Entitlement",
    "EntitlementResolver",
    "PaymentFetcher",
    "PaymentRecord",
    "ReconcileOutcome",
    "Reconciler",
    "build_app",
    "create_app",
    "parse_notification",
]
