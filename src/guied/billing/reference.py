"""Reference token codec and plan normalization.

A reference token is ``"{subscriber}|{plan}"``. It is sent to the provider as
the preference's external_reference (and mirrored into metadata) and comes
back on the payment, so the webhook can recover who paid for what even when
structured metadata is missing.
"""

from typing import Optional

from guied.billing.errors import ClientInputError
from guied.billing.identity import is_valid_subscriber_id
from guied.db.models import DEFAULT_PLAN, Plan

SEPARATOR = "|"


def normalize_plan(value: object) -> Plan:
    """Map any input to a Plan, falling back to the baseline plan."""
    if isinstance(value, Plan):
        return value
    if isinstance(value, str):
        try:
            return Plan(value.strip().lower())
        except ValueError:
            pass
    return DEFAULT_PLAN


def parse_plan(value: object) -> Plan:
    """Strict plan parsing: absent means baseline, anything unknown is rejected.

    Raises:
        ClientInputError: If value is present but not a known plan
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_PLAN
    if isinstance(value, str):
        try:
            return Plan(value.strip().lower())
        except ValueError:
            pass
    raise ClientInputError("invalid plan")


def encode_reference(subscriber: str, plan: Plan | str) -> str:
    """Build the reference token for a checkout."""
    plan_value = plan.value if isinstance(plan, Plan) else plan
    return f"{subscriber}{SEPARATOR}{plan_value}"


def decode_reference(token: object) -> tuple[Optional[str], Optional[str]]:
    """
    Split a reference token into (subscriber, plan).

    Splits on the first separator only, so extra separators stay in the plan
    half. A token without a separator is all subscriber. Empty halves become
    None, and a subscriber half that is not a canonical id is dropped.
    """
    if not isinstance(token, str) or not token:
        return None, None

    subscriber, _, plan = token.partition(SEPARATOR)
    subscriber = subscriber.strip()
    plan = plan.strip()

    if not is_valid_subscriber_id(subscriber):
        subscriber = None

    return subscriber, plan or None


def resolve_subscriber_and_plan(
    metadata_user: Optional[str],
    metadata_plan: Optional[str],
    reference: Optional[str],
) -> tuple[Optional[str], Plan]:
    """
    Combine both channels the provider may use to hand back our context.

    Structured metadata wins field by field. The decoded reference token only
    fills fields the metadata left empty.
    """
    ref_user, ref_plan = decode_reference(reference)

    subscriber = metadata_user or ref_user
    plan = normalize_plan(metadata_plan or ref_plan)
    return subscriber, plan
