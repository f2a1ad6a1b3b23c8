"""
Deterministic stand-in data for when no upstream data is available.

Every output is a pure function of its input string (plus, for listings, the
reference date used for relative listing dates), so a ZIP code or address
always synthesizes to the same record.
"""
import logging
import math
import re
from datetime import date, timedelta
from typing import Optional

from marketdata.core.schemas import (
    ListingHistoryEvent,
    ListingRecord,
    ListingStatus,
    MarketSnapshot,
)
from marketdata.services.market_statistics import round_half_up, round_int

logger = logging.getLogger(__name__)

FALLBACK_ZIP_NUMBER = 10001

# (lowest ZIP number, base median price), checked top-down
PRICE_TIERS = [
    (90000, 750000),
    (80000, 450000),
    (70000, 400000),
    (60000, 320000),
    (50000, 380000),
    (40000, 280000),
    (30000, 350000),
    (20000, 420000),
    (10000, 650000),
]
DEFAULT_BASE_PRICE = 500000

STATUS_WEIGHTS = [
    (ListingStatus.NOT_LISTED, 0.7),
    (ListingStatus.FOR_SALE, 0.15),
    (ListingStatus.SOLD, 0.1),
    (ListingStatus.OFF_MARKET, 0.05),
]

LISTING_BASE_PRICE = 350000

STOCK_PHOTOS = [
    "https://images.unsplash.com/photo-1570129477492-45c003edd2be?w=800&h=600&fit=crop&crop=house",
    "https://images.unsplash.com/photo-1566908829077-8b4e1b6b8a12?w=800&h=600&fit=crop&crop=house",
    "https://images.unsplash.com/photo-1583608205776-bfd35f0d9f83?w=800&h=600&fit=crop&crop=house",
]
VIRTUAL_TOUR_URL = "https://example.com/virtual-tour"

_LEADING_DIGITS = re.compile(r"\s*(\d+)")


def zip_number(zip_code: str) -> int:
    """Leading digits of a ZIP code as an int; unparseable or zero ZIPs map to 10001."""
    match = _LEADING_DIGITS.match(zip_code or "")
    number = int(match.group(1)) if match else 0
    return number or FALLBACK_ZIP_NUMBER


def base_price_for(zip_num: int) -> int:
    for lowest, price in PRICE_TIERS:
        if zip_num >= lowest:
            return price
    return DEFAULT_BASE_PRICE


class MockDataSynthesizer:
    """Seed-based generator of plausible market snapshots and listing records."""

    def synthesize_market(self, zip_code: str) -> MarketSnapshot:
        """
        Synthesize a market snapshot for a ZIP code.

        The ZIP seeds two scalars in [0, 1]: variation (seed mod 1000) and
        market heat (a sine of the seed). All metrics are affine in those.
        """
        zip_num = zip_number(zip_code)
        seed = zip_num % 100000

        base_price = base_price_for(zip_num)
        variation = (seed % 1000) / 1000
        heat = math.sin(seed / 100) * 0.5 + 0.5

        median_price = round_int(base_price + variation * 300000 + heat * 200000)
        days_on_market = round_int(25 + (1 - heat) * 65)

        snapshot = MarketSnapshot(
            zip_code=zip_code,
            median_price=median_price,
            days_on_market=days_on_market,
            inventory_count=round_int(30 + variation * 150),
            price_trend_30d=round_half_up((heat - 0.5) * 8, 2),
            active_listings=round_int(15 + variation * 85),
            avg_price_per_sqft=round_int(150 + median_price / 5000),
            market_velocity=round_half_up(days_on_market / 7, 1),
        )
        logger.debug(f"Synthesized market snapshot for {zip_code}")
        return snapshot

    def synthesize_listing(
        self, address: str, today: Optional[date] = None
    ) -> ListingRecord:
        """
        Synthesize a listing record for an address.

        Args:
            address: Street address; its character-code sum is the seed
            today: Reference date for listing dates (defaults to today)

        Returns:
            ListingRecord. Photos, description, features and listing details
            are only populated when the synthesized status is for_sale.
        """
        address_hash = sum(ord(ch) for ch in address)
        r = (address_hash % 100) / 100

        status = ListingStatus.NOT_LISTED
        cumulative = 0.0
        for candidate, weight in STATUS_WEIGHTS:
            cumulative += weight
            if r <= cumulative:
                status = candidate
                break

        for_sale = status == ListingStatus.FOR_SALE
        price = LISTING_BASE_PRICE + (address_hash % 300000) + 100000
        days_on_market = math.floor(r * 120) + 1 if for_sale else 0
        bedrooms = math.floor(r * 3) + 2

        record = ListingRecord(
            address=address,
            status=status,
            price=price,
            days_on_market=days_on_market,
            bedrooms=bedrooms,
            bathrooms=math.floor(r * 2) + 1,
            square_feet=math.floor(r * 1000) + 1200,
            lot_size=math.floor(r * 5000) + 5000,
            property_type="Condo" if r > 0.8 else "Single Family",
            year_built=math.floor(r * 50) + 1970,
        )

        if for_sale:
            listed_on = ((today or date.today()) - timedelta(days=days_on_market)).isoformat()
            record = record.model_copy(update={
                "agent_name": "Listing Agent",
                "listing_date": listed_on,
                "description": (
                    f"Beautiful {bedrooms} bedroom home with modern updates and great "
                    f"location in a desirable neighborhood."
                ),
                "photos": list(STOCK_PHOTOS),
                "features": ["garage", "fireplace", "pool" if r > 0.5 else "patio", "hardwood floors"],
                "mls_number": f"MLS{math.floor(r * 100000)}",
                "virtual_tour_url": VIRTUAL_TOUR_URL if r > 0.7 else None,
                "listing_history": [
                    ListingHistoryEvent(date=listed_on, event="Listed", price=price)
                ],
            })

        logger.debug(f"Synthesized listing for '{address}': {status.value}")
        return record
