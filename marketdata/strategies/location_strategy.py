"""
Free-text location search strategy.

Fallback for when the postal code query comes back empty: the source's
location search sometimes resolves addresses the structured query misses.
"""
import logging
from typing import Any

from marketdata.strategies.base import BaseQueryStrategy, QueryParams

logger = logging.getLogger(__name__)


class LocationSearchStrategy(BaseQueryStrategy):
    """Search by location text: location=<address, zip | zip>&limit=N."""

    name = "location_search"
    display_name = "Location Search"
    source_type = "realtor_search"
    requires_api_key = True

    @staticmethod
    def location_text(params: QueryParams) -> str:
        if params.address:
            return f"{params.address}, {params.postal_code}"
        return params.postal_code

    async def query(self, params: QueryParams) -> Any:
        location = self.location_text(params)
        logger.debug(f"Searching properties at location '{location}'")
        return await self.client.search_properties({
            "location": location,
            "limit": params.limit,
        })
