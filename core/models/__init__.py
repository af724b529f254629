"""Core data models shared across the deduplication packages.

Listings are read-only snapshots supplied by the scraping pipeline.
"""

from core.models.listing import (
    Listing,
    CandidatePair,
)

__all__ = [
    "Listing",
    "CandidatePair",
]
