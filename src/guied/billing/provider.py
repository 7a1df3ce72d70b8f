"""Mercado Pago REST client.

Thin wrapper over the three endpoints the service needs. Every call opens a
short-lived aiohttp session with a bounded total timeout and either returns
the decoded JSON object or raises UpstreamError. No retries happen here:
Mercado Pago redelivers notifications on its own schedule.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from guied.billing.errors import UpstreamError

logger = logging.getLogger(__name__)


class MercadoPagoClient:
    """Authenticated client for checkout preferences, payments and merchant orders."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config) -> "MercadoPagoClient":
        return cls(
            access_token=config.mp_access_token.get_secret_value(),
            base_url=config.mp_api_base_url,
            timeout_seconds=config.provider_timeout_seconds,
        )

    async def create_preference(self, body: dict[str, Any]) -> dict[str, Any]:
        """POST /checkout/preferences."""
        return await self._request("POST", "/checkout/preferences", body)

    async def get_payment(self, payment_id: str) -> dict[str, Any]:
        """GET /v1/payments/{id}."""
        return await self._request("GET", f"/v1/payments/{payment_id}")

    async def get_merchant_order(self, order_id: str) -> dict[str, Any]:
        """GET /merchant_orders/{id}."""
        return await self._request("GET", f"/merchant_orders/{order_id}")

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        if not self._access_token:
            raise UpstreamError("mp_access_token not configured")

        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=headers, json=body) as resp:
                    text = await resp.text()
                    status = resp.status
        except asyncio.TimeoutError as e:
            logger.warning(f"Mercado Pago {method} {path} timed out")
            raise UpstreamError(
                f"provider timed out after {self._timeout_seconds}s"
            ) from e
        except aiohttp.ClientError as e:
            logger.warning(f"Mercado Pago {method} {path} failed: {e}")
            raise UpstreamError(f"provider request failed: {e}") from e

        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = None

        if status < 200 or status >= 300:
            logger.warning(f"Mercado Pago {method} {path} returned status {status}")
            raise UpstreamError(
                f"provider returned status {status}",
                status=status,
                details=payload if payload is not None else text[:500],
            )

        if not isinstance(payload, dict):
            raise UpstreamError(
                "provider returned a non-object body",
                status=status,
                details=text[:500],
            )

        return payload
