"""Tests for SubscriptionStore SQL against a mocked asyncpg connection."""

from datetime import timedelta

import pytest

from conftest import NOW, USER_ID, make_mock_pool
from guied.billing.errors import StoreError
from guied.billing.store import Activation, ApplyResult, SubscriptionRow, SubscriptionStore
from guied.db.models import Plan


def activation(payment_id="P1"):
    return Activation(
        user_id=USER_ID,
        plan=Plan.PRO,
        started_at=NOW,
        expires_at=NOW + timedelta(days=30),
        external_payment_id=payment_id,
        external_reference=f"{USER_ID}|pro",
    )


def db_row(**overrides):
    row = {
        "id": 7,
        "user_id": USER_ID,
        "plan": "pro",
        "status": "active",
        "started_at": NOW,
        "expires_at": NOW + timedelta(days=30),
        "external_payment_id": "P1",
        "external_reference": f"{USER_ID}|pro",
        "created_at": NOW,
    }
    row.update(overrides)
    return row


class TestApplyPayment:

    @pytest.mark.asyncio
    async def test_new_payment_inserts_subscription(self):
        pool, conn = make_mock_pool()
        conn.fetchval.side_effect = ["P1", True]

        result = await SubscriptionStore(pool).apply_payment(activation())

        assert result == ApplyResult.CREATED
        conn.transaction.assert_called_once()
        claim_sql, *claim_args = conn.fetchval.call_args_list[0].args
        assert "processed_payments" in claim_sql
        assert "ON CONFLICT (external_payment_id) DO NOTHING" in claim_sql
        assert claim_args == ["P1", USER_ID]

        upsert_sql, *upsert_args = conn.fetchval.call_args_list[1].args
        assert "ON CONFLICT (user_id) DO UPDATE" in upsert_sql
        assert upsert_args == [
            USER_ID,
            "pro",
            "active",
            NOW,
            NOW + timedelta(days=30),
            "P1",
            f"{USER_ID}|pro",
        ]

    @pytest.mark.asyncio
    async def test_existing_subscription_is_renewed(self):
        pool, conn = make_mock_pool()
        conn.fetchval.side_effect = ["P2", False]

        result = await SubscriptionStore(pool).apply_payment(activation("P2"))

        assert result == ApplyResult.RENEWED

    @pytest.mark.asyncio
    async def test_claimed_payment_is_duplicate(self):
        pool, conn = make_mock_pool()
        conn.fetchval.side_effect = [None]

        result = await SubscriptionStore(pool).apply_payment(activation())

        assert result == ApplyResult.DUPLICATE
        assert conn.fetchval.call_count == 1

    @pytest.mark.asyncio
    async def test_driver_error_becomes_store_error(self):
        pool, conn = make_mock_pool()
        conn.fetchval.side_effect = ConnectionResetError("connection lost")

        with pytest.raises(StoreError, match="apply_payment"):
            await SubscriptionStore(pool).apply_payment(activation())


class TestReads:

    @pytest.mark.asyncio
    async def test_latest_for_user(self):
        pool, conn = make_mock_pool()
        conn.fetchrow.return_value = db_row()

        row = await SubscriptionStore(pool).latest_for_user(USER_ID)

        assert isinstance(row, SubscriptionRow)
        assert row.user_id == USER_ID
        assert row.id == 7
        sql = conn.fetchrow.call_args.args[0]
        assert "ORDER BY created_at DESC, id DESC" in sql
        assert "LIMIT 1" in sql

    @pytest.mark.asyncio
    async def test_latest_for_user_absent(self):
        pool, conn = make_mock_pool()
        conn.fetchrow.return_value = None

        assert await SubscriptionStore(pool).latest_for_user(USER_ID) is None


class TestWrites:

    @pytest.mark.asyncio
    async def test_cancel_only_touches_active_rows(self):
        pool, conn = make_mock_pool()
        conn.execute.return_value = "UPDATE 1"

        changed = await SubscriptionStore(pool).cancel_active(USER_ID)

        assert changed == 1
        sql, *args = conn.execute.call_args.args
        assert "status = $3" in sql
        assert args == [USER_ID, "canceled", "active"]

    @pytest.mark.asyncio
    async def test_cancel_nothing_active(self):
        pool, conn = make_mock_pool()
        conn.execute.return_value = "UPDATE 0"

        assert await SubscriptionStore(pool).cancel_active(USER_ID) == 0

    @pytest.mark.asyncio
    async def test_record_checkout(self):
        pool, conn = make_mock_pool()

        await SubscriptionStore(pool).record_checkout("pref-1", USER_ID, Plan.PRO_PLUS, f"{USER_ID}|pro_plus")

        sql, *args = conn.execute.call_args.args
        assert "checkout_sessions" in sql
        assert args == ["pref-1", USER_ID, "pro_plus", f"{USER_ID}|pro_plus"]

    @pytest.mark.asyncio
    async def test_delete_user_keeps_ledger_ids(self):
        pool, conn = make_mock_pool()
        conn.execute.side_effect = ["DELETE 1", "DELETE 2", "UPDATE 3"]

        removed = await SubscriptionStore(pool).delete_user(USER_ID)

        assert removed == 1
        statements = [c.args[0] for c in conn.execute.call_args_list]
        assert "DELETE FROM subscriptions" in statements[0]
        assert "DELETE FROM checkout_sessions" in statements[1]
        assert "UPDATE processed_payments SET user_id = NULL" in statements[2]
