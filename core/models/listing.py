"""Listing models consumed by the deduplication engine.

Listings are produced by the scraping pipeline and read here as immutable
snapshots. Every attribute except the identifiers is optional: calculators
degrade to neutral scores when a signal is missing.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Listing(BaseModel):
    """A scraped vehicle listing.

    Attributes:
        id: Listing identifier
        tenant_id: Owning tenant
        dealer_id: Dealer that published the listing (drives dealer rules)
        external_id: Identifier on the source site
        source_site: Site the listing was scraped from
        vin: Vehicle identification number
        title: Listing headline (e.g. "2020 Toyota Camry LE")
        make, model, year: Structured vehicle attributes
        price: Asking price
        mileage: Odometer reading
        latitude, longitude: Geocoded position
        postal_code, city, province: Address fields
        image_hashes: Perceptual hashes of listing photos (hex strings)
    """
    id: str = Field(..., description="Listing identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    dealer_id: Optional[str] = Field(default=None, description="Publishing dealer")

    external_id: Optional[str] = Field(default=None, description="Source-site identifier")
    source_site: Optional[str] = Field(default=None, description="Source site")

    vin: Optional[str] = None
    title: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None

    price: Optional[Decimal] = None
    mileage: Optional[int] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None

    image_hashes: List[str] = Field(default_factory=list, description="Perceptual image hashes")

    model_config = ConfigDict(from_attributes=True)


class CandidatePair(BaseModel):
    """A nominated pair of listings to adjudicate.

    The source is the incoming listing and the target the existing one it may
    duplicate. Dealer rules are resolved from the source listing.
    """
    source: Listing
    target: Listing

    @property
    def tenant_id(self) -> str:
        return self.source.tenant_id

    @property
    def key(self) -> str:
        """Order-independent key for the pair."""
        a, b = sorted([self.source.id, self.target.id])
        return f"{a}:{b}"
