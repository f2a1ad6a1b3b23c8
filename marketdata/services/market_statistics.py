"""
Market statistics over noisy per-listing search results.

Turns the property records of one ZIP search into a MarketSnapshot: median
price, average days on market, price-per-square-foot, 30-day price trend and
market velocity. One malformed record never aborts the aggregation, and a
total failure yields a fixed conservative snapshot.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Sequence

from marketdata.core.schemas import ListingStatus, MarketSnapshot, TREND_LIMIT_PCT
from marketdata.sources.realtor.metadata import (
    best_estimate,
    first_present,
    list_price,
    normalize_status,
    to_number,
)

logger = logging.getLogger(__name__)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves away from zero for positives (2.5 -> 3, not 2)."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_int(value: float) -> int:
    return int(round_half_up(value))


class StatisticsEngine:
    """Median, trend and derived-metric computation for market snapshots."""

    # Fallbacks used when a sample is empty
    DEFAULT_MEDIAN_PRICE = 400000
    DEFAULT_AVG_SQFT = 1200
    DEFAULT_PRICE_PER_SQFT = 300
    DEFAULT_DAYS_ON_MARKET = 45
    DEFAULT_INVENTORY = 50
    DEFAULT_ACTIVE_SHARE = 0.3
    DEFAULT_VELOCITY = 6.4

    @staticmethod
    def median(values: Sequence[float]) -> float:
        """
        Median of a numeric sequence.

        Examples:
            median([]) -> 0
            median([5]) -> 5
            median([1, 3, 5, 7]) -> 4
        """
        if not values:
            return 0
        ordered = sorted(values)
        mid = len(ordered) // 2
        if len(ordered) % 2:
            return ordered[mid]
        return (ordered[mid - 1] + ordered[mid]) / 2

    @staticmethod
    def clamp_trend(trend_pct: float) -> float:
        """Clamp a percentage trend to [-10, 10] and round to 2 decimals."""
        clamped = max(-TREND_LIMIT_PCT, min(TREND_LIMIT_PCT, trend_pct))
        return round_half_up(clamped, 2)

    def compute_metrics(
        self, zip_code: str, properties: List[Dict[str, Any]]
    ) -> MarketSnapshot:
        """
        Aggregate one ZIP's search results into a snapshot.

        Args:
            zip_code: ZIP the records were searched for
            properties: Raw property records

        Returns:
            MarketSnapshot; the default snapshot if aggregation fails outright
        """
        try:
            return self._compute(zip_code, properties)
        except Exception as e:
            logger.error(f"Market metrics for {zip_code} failed: {e}", exc_info=True)
            return self.default_snapshot(zip_code, len(properties or []))

    def _compute(self, zip_code: str, properties: List[Dict[str, Any]]) -> MarketSnapshot:
        prices: List[float] = []
        list_prices: List[float] = []
        estimates: List[float] = []
        square_feet: List[float] = []
        days_on_market: List[float] = []
        for_sale_count = 0
        skipped = 0

        for record in properties:
            try:
                price = list_price(record)
                estimate = best_estimate(record)
                sqft = to_number(first_present(
                    record, ("description", "sqft"), ("sqft",), ("square_feet",)
                ))
                days = to_number(first_present(
                    record, ("days_on_mls",), ("days_on_market",)
                ))
                status = normalize_status(record.get("status"))
            except (AttributeError, TypeError, ValueError) as e:
                skipped += 1
                logger.debug(f"Skipping malformed record in {zip_code}: {e}")
                continue

            if price is not None:
                prices.append(price)
                list_prices.append(price)
            if estimate is not None:
                estimates.append(estimate)
                # Estimate stands in for a missing list price
                if price is None:
                    prices.append(estimate)
            if sqft is not None and sqft > 0:
                square_feet.append(sqft)
            if days is not None and days > 0:
                days_on_market.append(days)
            if status == ListingStatus.FOR_SALE:
                for_sale_count += 1

        if skipped:
            logger.warning(f"Skipped {skipped} malformed records for {zip_code}")

        if prices:
            median_price = self.median(prices)
        elif estimates:
            median_price = self.median(estimates)
        else:
            median_price = self.DEFAULT_MEDIAN_PRICE

        avg_sqft = (
            sum(square_feet) / len(square_feet) if square_feet else self.DEFAULT_AVG_SQFT
        )
        price_per_sqft = (
            median_price / avg_sqft if avg_sqft > 0 else self.DEFAULT_PRICE_PER_SQFT
        )
        avg_days = (
            sum(days_on_market) / len(days_on_market)
            if days_on_market else self.DEFAULT_DAYS_ON_MARKET
        )

        trend = 0.0
        if list_prices and estimates:
            avg_list = sum(list_prices) / len(list_prices)
            avg_estimate = sum(estimates) / len(estimates)
            trend = (avg_list - avg_estimate) / avg_estimate * 100

        logger.debug(
            f"Metrics for {zip_code}: {len(prices)} prices, {len(estimates)} estimates, "
            f"{for_sale_count} for sale"
        )

        days = round_int(avg_days)
        return MarketSnapshot(
            zip_code=zip_code,
            median_price=round_int(median_price),
            days_on_market=days,
            inventory_count=len(properties),
            price_trend_30d=self.clamp_trend(trend),
            active_listings=for_sale_count,
            avg_price_per_sqft=round_int(price_per_sqft),
            market_velocity=round_half_up(days / 7, 1),
        )

    def default_snapshot(self, zip_code: str, record_count: int = 0) -> MarketSnapshot:
        """Conservative fixed snapshot used when aggregation fails."""
        inventory = record_count or self.DEFAULT_INVENTORY
        return MarketSnapshot(
            zip_code=zip_code,
            median_price=self.DEFAULT_MEDIAN_PRICE,
            days_on_market=self.DEFAULT_DAYS_ON_MARKET,
            inventory_count=inventory,
            price_trend_30d=0.0,
            active_listings=round_int(inventory * self.DEFAULT_ACTIVE_SHARE),
            avg_price_per_sqft=self.DEFAULT_PRICE_PER_SQFT,
            market_velocity=self.DEFAULT_VELOCITY,
        )
