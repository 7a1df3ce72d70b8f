"""Payment reconciliation: the subscription state machine.

Turns a fetched provider payment into at most one subscription mutation.

    payment ──► not approved ─────────────► IGNORED_NOT_APPROVED
       │
       ├──► subscriber unresolvable/invalid ► IGNORED_INVALID_SUBSCRIBER
       │
       └──► store.apply_payment (atomic claim + upsert)
                ├─ payment already claimed ─► DUPLICATE
                ├─ no prior row ────────────► ACTIVATED
                ├─ prior row updated ───────► RENEWED
                └─ StoreError ──────────────► STORE_FAILED (logged, swallowed)

Nothing here raises for an expected outcome. The webhook has already
committed to acknowledging the delivery, and the provider will redeliver a
payment whose write was rolled back.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from guied.billing.errors import StoreError
from guied.billing.identity import is_valid_subscriber_id
from guied.billing.notifications import PaymentRecord
from guied.billing.reference import resolve_subscriber_and_plan
from guied.billing.store import Activation, ApplyResult, SubscriptionStore
from guied.db.models import PaymentStatus

logger = logging.getLogger(__name__)

SUBSCRIPTION_PERIOD = timedelta(days=30)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconcileOutcome(str, Enum):
    """What reconciling one payment did."""

    ACTIVATED = "activated"
    RENEWED = "renewed"
    DUPLICATE = "duplicate"
    IGNORED_NOT_APPROVED = "ignored_not_approved"
    IGNORED_INVALID_SUBSCRIBER = "ignored_invalid_subscriber"
    STORE_FAILED = "store_failed"

    @property
    def mutated(self) -> bool:
        return self in (ReconcileOutcome.ACTIVATED, ReconcileOutcome.RENEWED)


_APPLY_OUTCOMES = {
    ApplyResult.CREATED: ReconcileOutcome.ACTIVATED,
    ApplyResult.RENEWED: ReconcileOutcome.RENEWED,
    ApplyResult.DUPLICATE: ReconcileOutcome.DUPLICATE,
}


class Reconciler:
    """Apply approved payments to the subscription store exactly once."""

    def __init__(
        self,
        store: SubscriptionStore,
        clock: Callable[[], datetime] = utcnow,
        period: timedelta = SUBSCRIPTION_PERIOD,
    ) -> None:
        self._store = store
        self._clock = clock
        self._period = period

    async def reconcile(self, record: PaymentRecord) -> ReconcileOutcome:
        if record.status != PaymentStatus.APPROVED:
            logger.info(
                f"Payment {record.id} not approved (status={record.status.value}), ignoring"
            )
            return ReconcileOutcome.IGNORED_NOT_APPROVED

        user_id, plan = resolve_subscriber_and_plan(
            record.user_id,
            record.plan,
            record.external_reference,
        )
        if not is_valid_subscriber_id(user_id):
            logger.warning(f"Payment {record.id} has no valid subscriber, ignoring")
            return ReconcileOutcome.IGNORED_INVALID_SUBSCRIBER

        started_at = self._clock()
        activation = Activation(
            user_id=user_id,
            plan=plan,
            started_at=started_at,
            expires_at=started_at + self._period,
            external_payment_id=record.id,
            external_reference=record.external_reference,
        )

        try:
            result = await self._store.apply_payment(activation)
        except StoreError as e:
            logger.error(
                f"Could not apply payment {record.id} for {user_id}: {e}",
                exc_info=True,
            )
            return ReconcileOutcome.STORE_FAILED

        outcome = _APPLY_OUTCOMES[result]
        if outcome is ReconcileOutcome.DUPLICATE:
            logger.info(f"Payment {record.id} already processed, skipping")
        else:
            logger.info(
                f"Subscription {outcome.value} for {user_id}: plan={plan.value}, "
                f"payment={record.id}, expires_at={activation.expires_at.isoformat()}"
            )
        return outcome
