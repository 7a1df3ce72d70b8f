"""Tests for checkout preference creation."""

from unittest.mock import AsyncMock

import pytest

from conftest import USER_ID
from guied.billing.checkout import CheckoutService
from guied.billing.errors import ClientInputError, StoreError, UpstreamError
from guied.db.models import Plan


@pytest.fixture
def provider():
    provider = AsyncMock()
    provider.create_preference.return_value = {
        "id": "123456-pref",
        "init_point": "https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=123456-pref",
    }
    return provider


@pytest.fixture
def service(provider, fake_store, config):
    return CheckoutService(provider, fake_store, config)


class TestCreateCheckout:

    @pytest.mark.asyncio
    async def test_preference_carries_reference_token(self, service, provider, fake_store):
        result = await service.create_checkout(USER_ID, "pro")

        body = provider.create_preference.call_args.args[0]
        assert body["external_reference"] == "11111111-1111-1111-1111-111111111111|pro"
        assert body["metadata"] == {
            "user_id": USER_ID,
            "plan": "pro",
            "reference": "11111111-1111-1111-1111-111111111111|pro",
        }
        assert result.preference_id == "123456-pref"
        assert result.init_point.endswith("pref_id=123456-pref")
        assert result.to_dict() == {
            "init_point": result.init_point,
            "preference_id": "123456-pref",
        }
        assert fake_store.checkouts == [
            ("123456-pref", USER_ID, Plan.PRO, f"{USER_ID}|pro"),
        ]

    @pytest.mark.asyncio
    async def test_preference_body(self, service, provider):
        await service.create_checkout(USER_ID, "pro_plus")

        body = provider.create_preference.call_args.args[0]
        item = body["items"][0]
        assert item["quantity"] == 1
        assert item["unit_price"] == 19.9
        assert item["currency_id"] == "BRL"
        assert "PRO+" in item["title"]
        assert body["payment_methods"]["default_payment_method_id"] == "pix"
        assert {"id": "credit_card"} in body["payment_methods"]["excluded_payment_types"]
        assert body["notification_url"] == "https://api.example.com/webhook/mercadopago"
        assert body["back_urls"]["success"] == "https://guied.app/success"
        assert body["auto_return"] == "approved"

    @pytest.mark.asyncio
    async def test_plan_defaults_to_pro(self, service, provider):
        result = await service.create_checkout(USER_ID)

        assert result.reference == f"{USER_ID}|pro"

    @pytest.mark.asyncio
    async def test_plan_is_normalized(self, service, provider):
        result = await service.create_checkout(USER_ID, " PRO ")

        assert result.reference == f"{USER_ID}|pro"

    @pytest.mark.asyncio
    async def test_invalid_user_rejected_before_provider_call(self, service, provider):
        with pytest.raises(ClientInputError, match="user_id"):
            await service.create_checkout("abc", "pro")

        provider.create_preference.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_plan_rejected(self, service, provider):
        with pytest.raises(ClientInputError, match="plan"):
            await service.create_checkout(USER_ID, "platinum")

        provider.create_preference.assert_not_called()

    @pytest.mark.asyncio
    async def test_response_without_init_point(self, service, provider, fake_store):
        provider.create_preference.return_value = {"id": "123456-pref"}

        with pytest.raises(UpstreamError, match="init_point"):
            await service.create_checkout(USER_ID, "pro")

        assert fake_store.checkouts == []

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, service, provider):
        provider.create_preference.side_effect = UpstreamError("provider returned status 401", status=401)

        with pytest.raises(UpstreamError):
            await service.create_checkout(USER_ID, "pro")

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, service, fake_store):
        fake_store.fail = True

        with pytest.raises(StoreError):
            await service.create_checkout(USER_ID, "pro")
