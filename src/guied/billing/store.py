"""Subscription persistence on PostgreSQL.

All SQL for the billing flow lives here. Driver failures are re-raised as
StoreError so callers handle one exception type regardless of whether the
database refused a statement or the connection dropped.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Optional

import asyncpg

from guied.billing.errors import StoreError
from guied.db.models import Plan, SubscriptionStatus, Table

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionRow:
    """One subscriber's subscription state."""

    user_id: str
    plan: str
    status: str
    started_at: datetime
    expires_at: datetime
    external_payment_id: Optional[str] = None
    external_reference: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "SubscriptionRow":
        return cls(
            id=record["id"],
            user_id=str(record["user_id"]),
            plan=record["plan"],
            status=record["status"],
            started_at=record["started_at"],
            expires_at=record["expires_at"],
            external_payment_id=record["external_payment_id"],
            external_reference=record["external_reference"],
            created_at=record["created_at"],
        )


@dataclass(frozen=True)
class Activation:
    """Everything needed to activate or renew a subscription from one payment."""

    user_id: str
    plan: Plan
    started_at: datetime
    expires_at: datetime
    external_payment_id: str
    external_reference: Optional[str] = None


class ApplyResult(str, Enum):
    """Effect of applying one payment."""

    CREATED = "created"
    RENEWED = "renewed"
    DUPLICATE = "duplicate"


_SUBSCRIPTION_COLUMNS = (
    "id, user_id, plan, status, started_at, expires_at, "
    "external_payment_id, external_reference, created_at"
)


class SubscriptionStore:
    """Reads and writes subscriptions, the payment ledger and checkout sessions."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Store failure during {action}: {e}")
            raise StoreError(f"{action} failed") from e

    async def apply_payment(self, activation: Activation) -> ApplyResult:
        """
        Claim a payment id and activate the subscriber, atomically.

        The payment id is inserted into the ledger first; its primary key
        makes a concurrent or repeated delivery of the same payment find the
        claim already taken and change nothing. The subscriber's row is then
        inserted or updated in place, in the same transaction.

        Raises:
            StoreError: On database errors (the transaction is rolled back)
        """
        async with self._connection("apply_payment") as conn:
            async with conn.transaction():
                claimed = await conn.fetchval(
                    f"""
                    INSERT INTO {Table.PROCESSED_PAYMENTS} (external_payment_id, user_id)
                    VALUES ($1, $2)
                    ON CONFLICT (external_payment_id) DO NOTHING
                    RETURNING external_payment_id
                    """,
                    activation.external_payment_id,
                    activation.user_id,
                )
                if claimed is None:
                    return ApplyResult.DUPLICATE

                inserted = await conn.fetchval(
                    f"""
                    INSERT INTO {Table.SUBSCRIPTIONS}
                        (user_id, plan, status, started_at, expires_at,
                         external_payment_id, external_reference)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (user_id) DO UPDATE SET
                        plan = EXCLUDED.plan,
                        status = EXCLUDED.status,
                        started_at = EXCLUDED.started_at,
                        expires_at = EXCLUDED.expires_at,
                        external_payment_id = EXCLUDED.external_payment_id,
                        external_reference = EXCLUDED.external_reference,
                        updated_at = now()
                    RETURNING (xmax = 0) AS inserted
                    """,
                    activation.user_id,
                    activation.plan.value,
                    SubscriptionStatus.ACTIVE.value,
                    activation.started_at,
                    activation.expires_at,
                    activation.external_payment_id,
                    activation.external_reference,
                )

        return ApplyResult.CREATED if inserted else ApplyResult.RENEWED

    async def latest_for_user(self, user_id: str) -> Optional[SubscriptionRow]:
        """Most recently created row for a subscriber, or None."""
        async with self._connection("latest_for_user") as conn:
            record = await conn.fetchrow(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS}
                FROM {Table.SUBSCRIPTIONS}
                WHERE user_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                user_id,
            )
        return SubscriptionRow.from_record(record) if record else None

    async def cancel_active(self, user_id: str) -> int:
        """Mark the subscriber's active rows canceled. Returns rows changed."""
        async with self._connection("cancel_active") as conn:
            result = await conn.execute(
                f"""
                UPDATE {Table.SUBSCRIPTIONS}
                SET status = $2, updated_at = now()
                WHERE user_id = $1 AND status = $3
                """,
                user_id,
                SubscriptionStatus.CANCELED.value,
                SubscriptionStatus.ACTIVE.value,
            )
        return _affected_rows(result)

    async def record_checkout(
        self,
        preference_id: str,
        user_id: str,
        plan: Plan,
        external_reference: str,
    ) -> None:
        """Remember an issued checkout preference."""
        async with self._connection("record_checkout") as conn:
            await conn.execute(
                f"""
                INSERT INTO {Table.CHECKOUT_SESSIONS}
                    (preference_id, user_id, plan, external_reference)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (preference_id) DO NOTHING
                """,
                preference_id,
                user_id,
                plan.value,
                external_reference,
            )

    async def delete_user(self, user_id: str) -> int:
        """
        Erase a subscriber's rows.

        Ledger entries keep their payment ids (with the user detached) so a
        late redelivery of an old payment is still recognized as processed.
        Returns the number of subscription rows removed.
        """
        async with self._connection("delete_user") as conn:
            async with conn.transaction():
                result = await conn.execute(
                    f"DELETE FROM {Table.SUBSCRIPTIONS} WHERE user_id = $1",
                    user_id,
                )
                await conn.execute(
                    f"DELETE FROM {Table.CHECKOUT_SESSIONS} WHERE user_id = $1",
                    user_id,
                )
                await conn.execute(
                    f"UPDATE {Table.PROCESSED_PAYMENTS} SET user_id = NULL WHERE user_id = $1",
                    user_id,
                )
        return _affected_rows(result)


def _affected_rows(command_tag: str) -> int:
    """Parse asyncpg's command tag ("UPDATE 3", "DELETE 0")."""
    try:
        return int(str(command_tag).rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0
