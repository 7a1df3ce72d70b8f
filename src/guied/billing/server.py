"""HTTP routes for checkout, webhook, status, cancellation and account deletion."""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Optional

import asyncpg
from aiohttp import web

from guied.billing.accounts import AccountService, SupabaseDirectory
from guied.billing.checkout import CheckoutService
from guied.billing.entitlement import EntitlementResolver
from guied.billing.errors import ClientInputError, StoreError, UpstreamError
from guied.billing.notifications import PaymentFetcher, parse_notification
from guied.billing.provider import MercadoPagoClient
from guied.billing.reconcile import Reconciler
from guied.billing.store import SubscriptionStore
from guied.config.settings import AppConfig

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map the billing error taxonomy to HTTP responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ClientInputError as e:
        return web.json_response({"error": str(e)}, status=400)
    except UpstreamError as e:
        logger.warning(f"{request.method} {request.path}: upstream error: {e}")
        return web.json_response({"error": str(e), "details": e.details}, status=502)
    except StoreError as e:
        logger.error(f"{request.method} {request.path}: store error: {e}")
        return web.json_response({"error": "internal error"}, status=500)
    except Exception as e:
        logger.exception(f"{request.method} {request.path}: unexpected error: {e}")
        return web.json_response({"error": "internal error"}, status=500)


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ClientInputError("invalid JSON body")
    if not isinstance(body, dict):
        raise ClientInputError("JSON body must be an object")
    return body


async def create_checkout_endpoint(request: web.Request) -> web.Response:
    """POST /create-checkout  {user_id, plan?} -> {init_point, preference_id}."""
    body = await _json_body(request)
    checkout: CheckoutService = request.app["checkout"]
    result = await checkout.create_checkout(body.get("user_id"), body.get("plan"))
    return web.json_response(result.to_dict())


async def webhook_endpoint(request: web.Request) -> web.Response:
    """POST /webhook/mercadopago.

    Always answers 200 "ok". Mercado Pago retries any other status
    indefinitely, and it cannot do anything about our failures.
    """
    try:
        raw = await request.read()
        try:
            body = json.loads(raw) if raw else {}
        except ValueError:
            logger.warning("Webhook body is not JSON, using query parameters only")
            body = {}

        notification = parse_notification(body, request.query)
        fetcher: PaymentFetcher = request.app["fetcher"]
        record = await fetcher.fetch(notification)

        if record is not None:
            reconciler: Reconciler = request.app["reconciler"]
            outcome = await reconciler.reconcile(record)
            logger.info(f"Webhook payment {record.id}: {outcome.value}")

    except UpstreamError as e:
        logger.warning(f"Webhook could not fetch payment: {e}")
    except Exception as e:
        logger.exception(f"Webhook processing failed: {e}")

    return web.Response(status=200, text="ok")


async def subscription_status_endpoint(request: web.Request) -> web.Response:
    """GET /subscription-status?user_id=... -> {status, plan, expires_at}."""
    user_id = request.query.get("user_id") or request.query.get("userId")
    entitlements: EntitlementResolver = request.app["entitlements"]
    entitlement = await entitlements.status(user_id)
    return web.json_response(entitlement.to_dict())


async def cancel_subscription_endpoint(request: web.Request) -> web.Response:
    """POST /cancel-subscription  {user_id} -> {success: true}."""
    body = await _json_body(request)
    entitlements: EntitlementResolver = request.app["entitlements"]
    await entitlements.cancel(body.get("user_id"))
    return web.json_response({"success": True})


async def delete_account_endpoint(request: web.Request) -> web.Response:
    """POST /delete-account  {user_id} -> {success: true}."""
    body = await _json_body(request)
    accounts: AccountService = request.app["accounts"]
    await accounts.delete_account(body.get("user_id"))
    return web.json_response({"success": True})


async def health_endpoint(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app(
    checkout: CheckoutService,
    fetcher: PaymentFetcher,
    reconciler: Reconciler,
    entitlements: EntitlementResolver,
    accounts: AccountService,
) -> web.Application:
    """Create the aiohttp application around already-built services."""
    app = web.Application(middlewares=[error_middleware])
    app["checkout"] = checkout
    app["fetcher"] = fetcher
    app["reconciler"] = reconciler
    app["entitlements"] = entitlements
    app["accounts"] = accounts

    app.router.add_post("/create-checkout", create_checkout_endpoint)
    app.router.add_post("/webhook/mercadopago", webhook_endpoint)
    app.router.add_get("/subscription-status", subscription_status_endpoint)
    app.router.add_post("/cancel-subscription", cancel_subscription_endpoint)
    app.router.add_post("/delete-account", delete_account_endpoint)
    app.router.add_get("/health", health_endpoint)
    return app


def build_app(pool: asyncpg.Pool, config: AppConfig) -> web.Application:
    """Wire services from a database pool and configuration."""
    store = SubscriptionStore(pool)
    provider = MercadoPagoClient.from_config(config)

    return create_app(
        checkout=CheckoutService(provider, store, config),
        fetcher=PaymentFetcher(provider),
        reconciler=Reconciler(store, period=timedelta(days=config.subscription_period_days)),
        entitlements=EntitlementResolver(store),
        accounts=AccountService(store, SupabaseDirectory.from_config(config)),
    )


async def run_server(
    app: web.Application,
    host: str,
    port: int,
    shutdown_event: Optional[asyncio.Event] = None,
) -> None:
    """Serve ``app`` until ``shutdown_event`` is set (forever if None)."""
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Subscriptions API listening on {host}:{port}")

    try:
        if shutdown_event:
            await shutdown_event.wait()
        else:
            await asyncio.Event().wait()
    finally:
        logger.info("Shutting down HTTP server...")
        await runner.cleanup()
