"""
Pydantic schemas for the canonical records served by the market data service.

Upstream payloads are heterogeneous; everything returned to callers is one of
these shapes, whether it came from a live source, the cache, or synthesis.
"""
import enum
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

MAX_PHOTOS = 20
MAX_FEATURES = 15
TREND_LIMIT_PCT = 10.0


class ListingStatus(str, enum.Enum):
    """Listing status enumeration - ONLY these values allowed."""
    FOR_SALE = "for_sale"
    FOR_RENT = "for_rent"
    SOLD = "sold"
    PENDING = "pending"
    OFF_MARKET = "off_market"
    NOT_LISTED = "not_listed"
    UNKNOWN = "unknown"


class ListingHistoryEvent(BaseModel):
    """One entry in a property's listing history."""

    date: Optional[str] = None
    event: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)


class ListingRecord(BaseModel):
    """Canonical per-property listing record."""

    address: str
    status: ListingStatus = ListingStatus.UNKNOWN
    price: Optional[int] = Field(None, ge=0, description="Integer currency units")
    days_on_market: int = Field(0, ge=0)
    agent_name: Optional[str] = None
    agent_phone: Optional[str] = None
    listing_date: Optional[str] = None
    description: Optional[str] = None
    bedrooms: Optional[float] = Field(None, ge=0)
    bathrooms: Optional[float] = Field(None, ge=0)
    square_feet: Optional[int] = Field(None, ge=0)
    lot_size: Optional[int] = Field(None, ge=0)
    property_type: Optional[str] = None
    year_built: Optional[int] = None
    photos: List[str] = Field(default_factory=list, max_length=MAX_PHOTOS)
    features: List[str] = Field(default_factory=list, max_length=MAX_FEATURES)
    mls_number: Optional[str] = None
    virtual_tour_url: Optional[str] = None
    listing_history: List[ListingHistoryEvent] = Field(default_factory=list)

    @field_validator("photos")
    @classmethod
    def dedupe_photos(cls, v: List[str]) -> List[str]:
        """Drop repeated photo URLs, keeping first-seen order."""
        return list(dict.fromkeys(v))

    @field_validator("features")
    @classmethod
    def normalize_features(cls, v: List[str]) -> List[str]:
        """Features are compared case-insensitively and stored once each."""
        cleaned = [f.strip().lower() for f in v if f and f.strip()]
        return list(dict.fromkeys(cleaned))

    @property
    def is_active(self) -> bool:
        return self.status in (ListingStatus.FOR_SALE, ListingStatus.FOR_RENT)


class MarketSnapshot(BaseModel):
    """Per-ZIP market aggregate."""

    zip_code: str
    median_price: int = Field(..., ge=0)
    days_on_market: int = Field(..., ge=0, description="Average days on market")
    inventory_count: int = Field(..., ge=0)
    price_trend_30d: float = Field(..., ge=-TREND_LIMIT_PCT, le=TREND_LIMIT_PCT)
    active_listings: int = Field(..., ge=0)
    avg_price_per_sqft: int = Field(..., ge=0)
    market_velocity: float = Field(..., ge=0, description="days_on_market / 7")


class MarketContext(BaseModel):
    """Subset of a market snapshot shown next to a single property."""

    median_price: int
    avg_days_on_market: int
    price_trend_30d: float
    active_listings: int
    market_velocity: float

    @classmethod
    def from_snapshot(cls, snapshot: MarketSnapshot) -> "MarketContext":
        return cls(
            median_price=snapshot.median_price,
            avg_days_on_market=snapshot.days_on_market,
            price_trend_30d=snapshot.price_trend_30d,
            active_listings=snapshot.active_listings,
            market_velocity=snapshot.market_velocity,
        )


class InsightAnalysis(BaseModel):
    """Derived comparison of one listing against its ZIP market."""

    price_vs_market: Optional[float] = None
    market_position: Optional[str] = None
    investment_score: Optional[int] = Field(None, ge=0, le=100)


class PropertyInsights(BaseModel):
    """Listing lookup and market snapshot for one address, plus analysis."""

    address: str
    zip_code: str
    listing_status: ListingStatus
    property: Optional[ListingRecord] = None
    market_context: Optional[MarketContext] = None
    analysis: InsightAnalysis = Field(default_factory=InsightAnalysis)


class BulkListingRequestItem(BaseModel):
    """One address in a bulk listing check."""

    address: Optional[str] = None
    zip_code: Optional[str] = None


class BulkListingResult(BaseModel):
    """Outcome of one address in a bulk listing check."""

    address: str
    zip_code: str
    status: ListingStatus = ListingStatus.NOT_LISTED
    listing: Optional[ListingRecord] = None
    error: Optional[str] = None
