"""
Pull the list of property records out of a search payload.

The search source nests its results under different keys depending on the
endpoint version and query type. The extractor tries a fixed, ordered list
of paths and returns the first non-empty list of records it finds.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# Probed in order; first non-empty list of objects wins
SEARCH_RESULT_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("data", "home_search", "results"),
    ("data", "home_search", "properties"),
    ("data", "results"),
    ("results",),
    ("properties",),
    ("data", "properties"),
    ("data", "listings"),
    ("listings",),
    ("data",),
)


class ResponseExtractor:
    """
    Extracts raw property records from arbitrarily shaped JSON.

    Never raises: undecodable or unrecognized input yields an empty list.
    """

    def __init__(self, paths: Sequence[Tuple[str, ...]] = SEARCH_RESULT_PATHS):
        self.paths = tuple(paths)

    def extract(self, raw: Any) -> List[Dict[str, Any]]:
        """
        Args:
            raw: Parsed JSON, or a JSON string/bytes

        Returns:
            List of property records (dicts); empty if nothing usable was found
        """
        data = self._decode(raw)
        if data is None:
            return []

        # Some endpoints return the result list at the top level
        if isinstance(data, list):
            records = self._records(data)
            if records:
                logger.debug(f"Extracted {len(records)} properties from top-level list")
            return records

        for path in self.paths:
            records = self._records(self._resolve(data, path))
            if records:
                logger.debug(
                    f"Extracted {len(records)} properties from {'.'.join(path)}"
                )
                return records

        logger.debug("No property list found in response")
        return []

    def _decode(self, raw: Any) -> Optional[Any]:
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Undecodable response bytes")
                return None
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except ValueError:
                logger.debug("Response body is not valid JSON")
                return None
        if isinstance(raw, (dict, list)):
            return raw
        return None

    @staticmethod
    def _resolve(data: Any, path: Tuple[str, ...]) -> Any:
        node = data
        for key in path:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        return node

    @staticmethod
    def _records(node: Any) -> List[Dict[str, Any]]:
        if not isinstance(node, list):
            return []
        return [item for item in node if isinstance(item, dict)]
