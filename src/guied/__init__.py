"""Guied subscriptions service: Mercado Pago checkout, webhook reconciliation, entitlements."""

__version__ = "1.0.0"
