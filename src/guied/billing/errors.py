"""Error taxonomy shared by billing components.

Components raise these; the HTTP layer maps them to status codes
(ClientInputError -> 400, UpstreamError -> 502, StoreError -> 500).
"""

from typing import Any, Optional


class BillingError(Exception):
    """Base class for billing failures."""


class ClientInputError(BillingError):
    """Caller supplied a malformed identifier, plan, or body."""


class UpstreamError(BillingError):
    """A provider call failed or returned an unexpected shape."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.details = details


class StoreError(BillingError):
    """The subscription store could not complete a read or write."""
