"""
Realtor search data source (RapidAPI).

Provides:
- client: HTTP transport and error classification for the search endpoint
- extractor: locating the property list inside variably shaped payloads
- metadata: mapping raw property records onto ListingRecord
"""

__all__ = ["client", "extractor", "metadata"]
