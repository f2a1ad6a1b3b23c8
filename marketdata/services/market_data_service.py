"""
Market data aggregation service.

Answers listing and market questions through one fixed precedence:

    cache  >  upstream strategies  >  synthesis

Per request:
1. CACHE_CHECK      - a live cache entry is returned as-is
2. UPSTREAM_ATTEMPT - strategies run one at a time in priority order
3. EXTRACT          - property records pulled out of the payload
4. MATCH/AGGREGATE  - address matching (listings) or statistics (markets)
5. SYNTHESIZE       - deterministic stand-in when upstream gave nothing usable
6. CACHE_WRITE      - best effort, never fails the request

"Not listed" is a terminal answer of its own: a listing search that worked
but matched nothing is cached as not-found and returned as None, it is not
synthesized.
"""
import asyncio
import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from marketdata.core.api_errors import (
    AddressNotFound,
    MalformedUpstreamPayload,
    UpstreamQuotaExceeded,
    UpstreamRejected,
)
from marketdata.core.cache import BaseCache, CacheEntry, DatabaseCache
from marketdata.core.config import MissingRapidAPIKeyError, Settings, get_settings
from marketdata.core.database import (
    build_engine,
    create_tables,
    get_engine,
    get_session_factory,
)
from marketdata.core.schemas import (
    BulkListingRequestItem,
    BulkListingResult,
    InsightAnalysis,
    ListingRecord,
    ListingStatus,
    MarketContext,
    MarketSnapshot,
    PropertyInsights,
)
from marketdata.services.address_matcher import ListingMatcher
from marketdata.services.market_statistics import StatisticsEngine, round_half_up
from marketdata.services.synthesizer import MockDataSynthesizer
from marketdata.sources.realtor.client import RealtorSearchClient
from marketdata.sources.realtor.extractor import ResponseExtractor
from marketdata.sources.realtor.metadata import build_listing_record
from marketdata.strategies import (
    BaseQueryStrategy,
    QueryParams,
    StrategyResult,
    build_default_strategies,
)

logger = logging.getLogger(__name__)

HOUR = 3600

# Insight thresholds
SLOW_SELLER_FACTOR = 1.5
FAST_SELLER_FACTOR = 0.5
BASE_INVESTMENT_SCORE = 50
BELOW_MEDIAN_BONUS = 20
STALE_LISTING_DAYS = 60
STALE_LISTING_BONUS = 15
RISING_MARKET_BONUS = 10


def market_cache_key(zip_code: str) -> str:
    return f"market_{zip_code}"


def listing_cache_key(zip_code: str, address: str) -> str:
    slug = re.sub(r"\s+", "_", address.strip())
    return f"listing_{zip_code}_{slug}"


class UpstreamOutcome(str, enum.Enum):
    """How a run of the strategy chain ended."""
    SUCCESS = "success"              # some strategy returned records
    EMPTY = "empty"                  # a strategy answered, nothing usable
    QUOTA_EXCEEDED = "quota_exceeded"
    REJECTED = "rejected"            # non-429 4xx, chain stopped
    FAILED = "failed"                # every attempt errored
    NO_CREDENTIALS = "no_credentials"


@dataclass
class UpstreamRun:
    """Result of trying the strategy chain once."""

    outcome: UpstreamOutcome
    records: List[Dict[str, Any]] = field(default_factory=list)
    strategy_name: Optional[str] = None
    attempts: List[StrategyResult] = field(default_factory=list)

    @property
    def strategies_attempted(self) -> List[str]:
        return [a.strategy_name for a in self.attempts]


class MarketDataService:
    """
    Top-level entry point for listing status and market snapshot lookups.

    Every collaborator is passed in, so the service runs without a network
    or database when given fakes.
    """

    def __init__(
        self,
        cache: BaseCache,
        strategies: Sequence[BaseQueryStrategy],
        extractor: Optional[ResponseExtractor] = None,
        matcher: Optional[ListingMatcher] = None,
        statistics: Optional[StatisticsEngine] = None,
        synthesizer: Optional[MockDataSynthesizer] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            cache: Store consulted before and populated after aggregation
            strategies: Upstream strategies in priority order
            extractor: Pulls property records out of raw payloads
            matcher: Picks the record matching an address
            statistics: Aggregates records into a MarketSnapshot
            synthesizer: Deterministic fallback generator
            settings: TTLs, limits and bulk pacing (defaults to get_settings())
        """
        self.cache = cache
        self.strategies = list(strategies)
        self.extractor = extractor or ResponseExtractor()
        self.matcher = matcher or ListingMatcher()
        self.statistics = statistics or StatisticsEngine()
        self.synthesizer = synthesizer or MockDataSynthesizer()
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Market snapshots
    # ------------------------------------------------------------------

    async def get_market_data(self, zip_code: str) -> MarketSnapshot:
        """
        Market snapshot for a ZIP code.

        Never raises: upstream and cache failures end in a synthesized
        snapshot.
        """
        key = market_cache_key(zip_code)
        try:
            entry = await self._cache_get(key)
            if entry is not None and entry.payload is not None:
                try:
                    snapshot = MarketSnapshot.model_validate(entry.payload)
                except ValidationError as e:
                    await self._discard_unreadable(key, e)
                else:
                    logger.debug(f"Cache hit for {key}")
                    return snapshot

            run = await self._run_strategies(
                QueryParams(postal_code=zip_code, limit=self.settings.search_result_limit)
            )
            if run.outcome == UpstreamOutcome.SUCCESS:
                snapshot = self.statistics.compute_metrics(zip_code, run.records)
                logger.info(
                    f"Market data for {zip_code} from {run.strategy_name} "
                    f"({len(run.records)} records)"
                )
                await self._cache_put(
                    key,
                    snapshot.model_dump(mode="json"),
                    self.settings.market_cache_ttl_hours * HOUR,
                    kind="market",
                )
                return snapshot

            logger.info(f"No upstream market data for {zip_code} ({run.outcome.value})")
            return await self._synthesize_market(zip_code, key)

        except Exception as e:
            logger.error(f"Market lookup for {zip_code} failed: {e}", exc_info=True)
            return self.synthesizer.synthesize_market(zip_code)

    async def _synthesize_market(self, zip_code: str, key: str) -> MarketSnapshot:
        snapshot = self.synthesizer.synthesize_market(zip_code)
        await self._cache_put(
            key,
            snapshot.model_dump(mode="json"),
            self.settings.synthetic_cache_ttl_hours * HOUR,
            kind="market",
            is_synthetic=True,
        )
        return snapshot

    # ------------------------------------------------------------------
    # Listing lookups
    # ------------------------------------------------------------------

    async def check_listing_status(
        self, address: str, zip_code: str
    ) -> Optional[ListingRecord]:
        """
        Listing record for one address.

        Returns:
            ListingRecord (genuine or synthesized), or None when the address
            is legitimately not listed
        """
        key = listing_cache_key(zip_code, address)
        try:
            entry = await self._cache_get(key)
            if entry is not None:
                if entry.is_not_found:
                    logger.debug(f"Cache hit for {key}: not listed")
                    return None
                try:
                    record = ListingRecord.model_validate(entry.payload)
                except ValidationError as e:
                    await self._discard_unreadable(key, e)
                else:
                    logger.debug(f"Cache hit for {key}")
                    return record

            run = await self._run_strategies(
                QueryParams(
                    postal_code=zip_code,
                    address=address,
                    limit=self.settings.search_result_limit,
                )
            )

            if run.outcome == UpstreamOutcome.SUCCESS:
                match = self.matcher.find_best_match(run.records, address)
                if match is not None:
                    record = build_listing_record(match, address)
                    logger.info(
                        f"Listing for '{address}' found via {run.strategy_name}: "
                        f"{record.status.value}"
                    )
                    await self._cache_put(
                        key,
                        record.model_dump(mode="json"),
                        self.settings.listing_cache_ttl_hours * HOUR,
                        kind="listing",
                    )
                    return record
                return await self._not_listed(
                    key, AddressNotFound(address, zip_code, source=run.strategy_name)
                )

            if run.outcome == UpstreamOutcome.EMPTY:
                return await self._not_listed(key, AddressNotFound(address, zip_code))

            logger.info(f"No upstream listing data for '{address}' ({run.outcome.value})")
            return await self._synthesize_listing(key, address)

        except Exception as e:
            logger.error(f"Listing lookup for '{address}' failed: {e}", exc_info=True)
            return self.synthesizer.synthesize_listing(address)

    async def _not_listed(self, key: str, not_found: AddressNotFound) -> None:
        via = f" via {not_found.source}" if not_found.source else ""
        logger.info(f"{not_found}{via}; caching not-listed marker")
        await self._cache_put(
            key,
            None,
            self.settings.not_found_cache_ttl_hours * HOUR,
            kind="listing",
        )
        return None

    async def _synthesize_listing(self, key: str, address: str) -> ListingRecord:
        record = self.synthesizer.synthesize_listing(address)
        await self._cache_put(
            key,
            record.model_dump(mode="json"),
            self.settings.synthetic_cache_ttl_hours * HOUR,
            kind="listing",
            is_synthetic=True,
        )
        return record

    # ------------------------------------------------------------------
    # Strategy chain
    # ------------------------------------------------------------------

    async def _run_strategies(self, params: QueryParams) -> UpstreamRun:
        """
        Try strategies strictly one after another until one returns records.

        - quota exceeded stops the chain at once
        - a non-429 4xx stops the chain
        - empty, malformed and transient failures fall through to the next
        """
        applicable = []
        for strategy in self.strategies:
            is_applicable, reason = strategy.is_applicable(params)
            if is_applicable:
                applicable.append(strategy)
            else:
                logger.debug(f"Skipping {strategy.name}: {reason}")

        if not applicable:
            return UpstreamRun(outcome=UpstreamOutcome.NO_CREDENTIALS)

        attempts: List[StrategyResult] = []
        answered = False

        for strategy in applicable:
            result = await strategy.execute(params, self.extractor)
            attempts.append(result)
            logger.debug(
                f"{strategy.name}: success={result.success} "
                f"records={len(result.records)} ({result.duration_seconds}s)"
            )

            if result.success:
                if result.records:
                    return UpstreamRun(
                        outcome=UpstreamOutcome.SUCCESS,
                        records=result.records,
                        strategy_name=strategy.name,
                        attempts=attempts,
                    )
                answered = True
                continue

            error = result.error
            if isinstance(error, UpstreamQuotaExceeded):
                logger.warning(f"{strategy.name}: quota exceeded, skipping remaining strategies")
                return UpstreamRun(outcome=UpstreamOutcome.QUOTA_EXCEEDED, attempts=attempts)
            if isinstance(error, MalformedUpstreamPayload):
                logger.warning(f"{strategy.name}: {error}; treating as empty")
                answered = True
                continue
            if isinstance(error, UpstreamRejected):
                logger.warning(f"{strategy.name}: rejected ({error}), skipping remaining strategies")
                return UpstreamRun(outcome=UpstreamOutcome.REJECTED, attempts=attempts)

            logger.warning(f"{strategy.name} unavailable: {error}")

        outcome = UpstreamOutcome.EMPTY if answered else UpstreamOutcome.FAILED
        return UpstreamRun(outcome=outcome, attempts=attempts)

    # ------------------------------------------------------------------
    # Cache access (never raises)
    # ------------------------------------------------------------------

    async def _cache_get(self, key: str) -> Optional[CacheEntry]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}; treating as miss")
            return None

    async def _cache_put(
        self,
        key: str,
        payload: Optional[Dict[str, Any]],
        ttl_seconds: float,
        kind: str,
        is_synthetic: bool = False,
    ) -> bool:
        try:
            return await self.cache.put(
                key, payload, ttl_seconds, kind=kind, is_synthetic=is_synthetic
            )
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    async def _discard_unreadable(self, key: str, error: ValidationError) -> None:
        """Drop a cached payload that no longer parses; the lookup continues as a miss."""
        logger.warning(f"Unreadable cache entry {key}, discarding: {error.error_count()} errors")
        try:
            await self.cache.invalidate(key)
        except Exception as e:
            logger.warning(f"Cache invalidate failed for {key}: {e}")

    async def invalidate(self, key: str) -> bool:
        """Drop one cache entry so the next lookup goes upstream."""
        return await self.cache.invalidate(key)

    async def purge_expired_cache(self) -> int:
        """Physically remove expired cache entries."""
        return await self.cache.purge_expired()

    # ------------------------------------------------------------------
    # Combined operations
    # ------------------------------------------------------------------

    async def get_property_insights(self, address: str, zip_code: str) -> PropertyInsights:
        """
        Listing and market snapshot for one address, plus a comparison.

        The two lookups are independent and run concurrently.
        """
        listing, market = await asyncio.gather(
            self.check_listing_status(address, zip_code),
            self.get_market_data(zip_code),
        )

        analysis = InsightAnalysis()
        if listing is not None and listing.price:
            analysis = self.analyze(listing, market)

        return PropertyInsights(
            address=address,
            zip_code=zip_code,
            listing_status=listing.status if listing else ListingStatus.NOT_LISTED,
            property=listing,
            market_context=MarketContext.from_snapshot(market),
            analysis=analysis,
        )

    @staticmethod
    def analyze(listing: ListingRecord, market: MarketSnapshot) -> InsightAnalysis:
        """
        Compare a priced listing against its market.

        Score starts at 50: +20 below median, +15 after 60 days on market,
        +10 in a rising market, capped at 100.
        """
        price = listing.price or 0

        price_vs_market = None
        if market.median_price > 0:
            price_vs_market = round_half_up(
                (price - market.median_price) / market.median_price * 100, 1
            )

        position = "average"
        if listing.days_on_market > market.days_on_market * SLOW_SELLER_FACTOR:
            position = "slow_seller"
        elif listing.days_on_market < market.days_on_market * FAST_SELLER_FACTOR:
            position = "fast_seller"

        score = BASE_INVESTMENT_SCORE
        if price < market.median_price:
            score += BELOW_MEDIAN_BONUS
        if listing.days_on_market > STALE_LISTING_DAYS:
            score += STALE_LISTING_BONUS
        if market.price_trend_30d > 0:
            score += RISING_MARKET_BONUS

        return InsightAnalysis(
            price_vs_market=price_vs_market,
            market_position=position,
            investment_score=min(score, 100),
        )

    async def bulk_listing_check(
        self,
        items: Iterable[Union[BulkListingRequestItem, Dict[str, Any]]],
    ) -> List[BulkListingResult]:
        """
        Check listing status for several addresses.

        Lookups run sequentially with a fixed pause between them. A bad item
        yields an error entry and never aborts the batch.

        Raises:
            ValueError: More items than bulk_max_properties
        """
        requests = [
            item if isinstance(item, BulkListingRequestItem)
            else BulkListingRequestItem.model_validate(item)
            for item in items
        ]
        if len(requests) > self.settings.bulk_max_properties:
            raise ValueError(
                f"Maximum {self.settings.bulk_max_properties} properties per request, "
                f"got {len(requests)}"
            )

        results: List[BulkListingResult] = []
        looked_up = 0

        for item in requests:
            if not item.address or not item.zip_code:
                results.append(BulkListingResult(
                    address=item.address or "",
                    zip_code=item.zip_code or "",
                    status=ListingStatus.UNKNOWN,
                    error="Address and zip_code are required",
                ))
                continue

            if looked_up and self.settings.bulk_request_delay_seconds > 0:
                await asyncio.sleep(self.settings.bulk_request_delay_seconds)
            looked_up += 1

            try:
                listing = await self.check_listing_status(item.address, item.zip_code)
            except Exception as e:
                logger.error(f"Bulk lookup for '{item.address}' failed: {e}")
                results.append(BulkListingResult(
                    address=item.address,
                    zip_code=item.zip_code,
                    status=ListingStatus.UNKNOWN,
                    error=str(e),
                ))
                continue

            results.append(BulkListingResult(
                address=item.address,
                zip_code=item.zip_code,
                status=listing.status if listing else ListingStatus.NOT_LISTED,
                listing=listing,
            ))

        logger.info(f"Bulk listing check: {looked_up} lookups, {len(results)} results")
        return results

    async def close(self) -> None:
        """Close the upstream clients used by the strategies."""
        clients = {id(s.client): s.client for s in self.strategies if hasattr(s, "client")}
        for client in clients.values():
            await client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def build_market_data_service(settings: Optional[Settings] = None) -> MarketDataService:
    """
    Wire the service with the realtor search client and the database cache.

    Creates the cache table if needed.
    """
    if settings is None:
        settings = get_settings()
        create_tables(get_engine())
        session_factory = get_session_factory()
    else:
        engine = build_engine(settings.database_url)
        create_tables(engine)
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        settings.require_rapidapi_key()
    except MissingRapidAPIKeyError as e:
        logger.warning(f"{e}")

    client = RealtorSearchClient.from_settings(settings)

    return MarketDataService(
        cache=DatabaseCache(session_factory),
        strategies=build_default_strategies(
            client, timeout_seconds=settings.upstream_timeout_seconds
        ),
        settings=settings,
    )
