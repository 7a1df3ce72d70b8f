"""Entitlement lookup and cancellation."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from guied.billing.identity import require_subscriber_id
from guied.billing.reconcile import utcnow
from guied.billing.store import SubscriptionStore
from guied.db.models import FREE, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    """Answer to "what may this subscriber use right now"."""

    status: str
    plan: str
    expires_at: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "plan": self.plan,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class EntitlementResolver:
    """Serve subscription status from the store, applying expiry and cancellation."""

    def __init__(
        self,
        store: SubscriptionStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def status(self, user_id: str) -> Entitlement:
        """
        Current entitlement for a subscriber.

        Only an active row that has not yet expired entitles. A lapsed or
        canceled row still reports its expiry so clients can show when
        access ended.

        Raises:
            ClientInputError: If user_id is not a canonical id
            StoreError: On database errors
        """
        require_subscriber_id(user_id)

        row = await self._store.latest_for_user(user_id)
        if row is None:
            return Entitlement(status=FREE, plan=FREE, expires_at=None)

        if row.status == SubscriptionStatus.ACTIVE.value and row.expires_at > self._clock():
            return Entitlement(status=row.status, plan=row.plan, expires_at=row.expires_at)

        return Entitlement(status=FREE, plan=FREE, expires_at=row.expires_at)

    async def cancel(self, user_id: str) -> int:
        """
        Cancel the subscriber's active subscription, if any.

        Canceling with nothing active is not an error. Returns rows changed.

        Raises:
            ClientInputError: If user_id is not a canonical id
            StoreError: On database errors
        """
        require_subscriber_id(user_id)

        changed = await self._store.cancel_active(user_id)
        if changed:
            logger.info(f"Canceled subscription for {user_id}")
        else:
            logger.info(f"Cancel requested for {user_id} with no active subscription")
        return changed
