"""Account erasure across the subscription store and the identity provider."""

import asyncio
import logging

import aiohttp

from guied.billing.errors import UpstreamError
from guied.billing.identity import require_subscriber_id
from guied.billing.store import SubscriptionStore

logger = logging.getLogger(__name__)


class SupabaseDirectory:
    """Supabase Auth admin API, used only to delete users."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config) -> "SupabaseDirectory":
        return cls(
            base_url=config.supabase_url,
            service_role_key=config.supabase_service_role_key.get_secret_value(),
            timeout_seconds=config.provider_timeout_seconds,
        )

    async def delete_user(self, user_id: str) -> None:
        """
        Delete an auth user. A user that no longer exists counts as deleted.

        Raises:
            UpstreamError: If Supabase is not configured or the call fails
        """
        if not self._base_url or not self._service_role_key:
            raise UpstreamError("supabase_url / supabase_service_role_key not configured")

        url = f"{self._base_url}/auth/v1/admin/users/{user_id}"
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }

        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.delete(url, headers=headers) as resp:
                    status = resp.status
                    text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Supabase user deletion failed for {user_id}: {e}")
            raise UpstreamError(f"identity provider request failed: {e}") from e

        if status == 404:
            logger.info(f"Supabase user {user_id} already absent")
            return
        if status < 200 or status >= 300:
            raise UpstreamError(
                f"identity provider returned status {status}",
                status=status,
                details=text[:500],
            )


class AccountService:
    """Erase everything this service and the identity provider hold for a user."""

    def __init__(self, store: SubscriptionStore, directory: SupabaseDirectory) -> None:
        self._store = store
        self._directory = directory

    async def delete_account(self, user_id: str) -> None:
        """
        Remove subscription data, then the identity provider account.

        Store rows go first so a failed identity deletion can be retried
        without leaving an entitled row behind.

        Raises:
            ClientInputError: If user_id is not a canonical id
            StoreError: On database errors
            UpstreamError: If the identity provider call fails
        """
        require_subscriber_id(user_id)

        removed = await self._store.delete_user(user_id)
        await self._directory.delete_user(user_id)

        logger.info(f"Deleted account {user_id} ({removed} subscription row(s))")
