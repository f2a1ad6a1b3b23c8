"""
Street address matching for listing lookups.

Picks the search result that refers to the address a caller asked about.
Comparison is a token-overlap heuristic over normalized addresses:

- "123 Main St" vs "123 Main Street"  -> match (street types expanded)
- "123 Main St" vs "456 Oak Ave"      -> no match
"""

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Set

from marketdata.sources.realtor.metadata import extract_address_line

logger = logging.getLogger(__name__)


class AddressNormalizer:
    """
    Canonicalizes free-text street addresses for comparison.

    Lowercases, strips punctuation, collapses whitespace and expands common
    street-type abbreviations.
    """

    ABBREVIATIONS = {
        "st": "street",
        "ave": "avenue",
        "rd": "road",
        "dr": "drive",
        "ln": "lane",
        "ct": "court",
        "pl": "place",
        "blvd": "boulevard",
        "pkwy": "parkway",
    }

    # Tokens this short (unit numbers, directions) carry no signal
    MIN_TOKEN_LENGTH = 3
    MIN_SHARED_TOKENS = 2

    def __init__(self):
        self._abbrev_patterns = [
            (re.compile(rf"\b{abbrev}\b"), full)
            for abbrev, full in self.ABBREVIATIONS.items()
        ]

    def normalize(self, address: str) -> str:
        """
        Normalize an address for comparison.

        Args:
            address: Raw address text

        Returns:
            Normalized address ("" for empty input)
        """
        if not address:
            return ""

        normalized = address.lower()
        normalized = re.sub(r"[^\w\s]", " ", normalized)
        normalized = re.sub(r"\s+", " ", normalized).strip()

        for pattern, full in self._abbrev_patterns:
            normalized = pattern.sub(full, normalized)

        return normalized

    def significant_tokens(self, address: str) -> Set[str]:
        """Normalized tokens long enough to count towards a match."""
        return {
            token for token in self.normalize(address).split()
            if len(token) >= self.MIN_TOKEN_LENGTH
        }

    def addresses_match(self, candidate: str, target: str) -> bool:
        """True if the two addresses share at least two significant tokens."""
        if not candidate or not target:
            return False
        shared = self.significant_tokens(candidate) & self.significant_tokens(target)
        return len(shared) >= self.MIN_SHARED_TOKENS


class ListingMatcher:
    """Selects the best-matching property record for a target address."""

    def __init__(self, normalizer: Optional[AddressNormalizer] = None):
        self.normalizer = normalizer or AddressNormalizer()

    def find_best_match(
        self,
        candidates: Sequence[Dict[str, Any]],
        target_address: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Find the first candidate whose address matches the target.

        Two passes: the raw target first, then the normalized target against
        the raw candidate lines. First candidate in iteration order wins.

        Args:
            candidates: Raw property records from a search
            target_address: Address the caller asked about

        Returns:
            The matching record, or None
        """
        if not candidates or not target_address:
            return None

        lines: List[str] = [extract_address_line(c) for c in candidates]

        for candidate, line in zip(candidates, lines):
            if self.normalizer.addresses_match(line, target_address):
                logger.debug(f"Matched '{target_address}' to '{line}'")
                return candidate

        normalized_target = self.normalizer.normalize(target_address)
        for candidate, line in zip(candidates, lines):
            if self.normalizer.addresses_match(line, normalized_target):
                logger.debug(f"Matched normalized '{normalized_target}' to '{line}'")
                return candidate

        logger.debug(
            f"No match for '{target_address}' among {len(candidates)} candidates"
        )
        return None
