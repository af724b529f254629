"""API Routes Package."""

from api.routes import health, reviews, audit

__all__ = [
    "health",
    "reviews",
    "audit",
]
