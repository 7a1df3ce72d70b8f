"""Table-name constants and column-value enums."""

from enum import Enum


class Table:
    """Database table names."""

    SUBSCRIPTIONS = "subscriptions"
    PROCESSED_PAYMENTS = "processed_payments"
    CHECKOUT_SESSIONS = "checkout_sessions"
    SCHEMA_MIGRATIONS = "schema_migrations"


class Plan(str, Enum):
    """Paid plan. PRO is the baseline plan."""

    PRO = "pro"
    PRO_PLUS = "pro_plus"


DEFAULT_PLAN = Plan.PRO

# Entitlement answer for subscribers without a live paid plan
FREE = "free"


class SubscriptionStatus(str, Enum):
    """Persisted subscription status. Absence of a row means free."""

    ACTIVE = "active"
    CANCELED = "canceled"


class PaymentStatus(str, Enum):
    """Provider payment status, collapsed to the states reconciliation cares about."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    OTHER = "other"
