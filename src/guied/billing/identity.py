"""Subscriber identity validation."""

import re

from guied.billing.errors import ClientInputError

_SUBSCRIBER_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_subscriber_id(value: object) -> bool:
    """Return True only for canonical 8-4-4-4-12 hex UUID strings."""
    return isinstance(value, str) and _SUBSCRIBER_ID_RE.fullmatch(value) is not None


def require_subscriber_id(value: object) -> str:
    """Return value unchanged if it is a valid subscriber id.

    Raises:
        ClientInputError: If value is missing or not a canonical UUID
    """
    if not is_valid_subscriber_id(value):
        raise ClientInputError("invalid user_id")
    return value
