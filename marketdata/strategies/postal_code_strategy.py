"""
Postal code search strategy.

Asks the realtor search source for every property it knows in a ZIP code.
Preferred first: a structured postal-code query is the most precise.
"""
import logging
from typing import Any

from marketdata.strategies.base import BaseQueryStrategy, QueryParams

logger = logging.getLogger(__name__)


class PostalCodeSearchStrategy(BaseQueryStrategy):
    """Search by postal code: postal_code=<zip>&limit=N."""

    name = "postal_code_search"
    display_name = "Postal Code Search"
    source_type = "realtor_search"
    requires_api_key = True

    async def query(self, params: QueryParams) -> Any:
        logger.debug(f"Searching properties in {params.postal_code}")
        return await self.client.search_properties({
            "postal_code": params.postal_code,
            "limit": params.limit,
        })
