"""Database pool and schema helpers."""

from guied.db.pool import close_pool, get_pool

__all__ = ["get_pool", "close_pool"]
