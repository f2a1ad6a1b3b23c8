"""
Command-line entry point for the market data service.

Usage:
    market-data market 90210
    market-data listing "123 Main St" 90210
    market-data insights "123 Main St" 90210
    market-data bulk properties.json      # [{"address": ..., "zip_code": ...}, ...]
    market-data purge-cache

Requires DATABASE_URL (and RAPIDAPI_KEY for live data) in the environment
or a .env file. Results are printed as JSON.
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from marketdata.core.config import get_settings
from marketdata.core.database import reset_engine
from marketdata.services.market_data_service import (
    MarketDataService,
    build_market_data_service,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _dump(model) -> Any:
    if model is None:
        return None
    return model.model_dump(mode="json")


async def run(args: argparse.Namespace, service: MarketDataService) -> Any:
    async with service:
        if args.command == "market":
            return _dump(await service.get_market_data(args.zip_code))

        if args.command == "listing":
            listing = await service.check_listing_status(args.address, args.zip_code)
            if listing is None:
                return {"address": args.address, "zip_code": args.zip_code, "status": "not_listed"}
            return _dump(listing)

        if args.command == "insights":
            return _dump(await service.get_property_insights(args.address, args.zip_code))

        if args.command == "bulk":
            items = json.loads(Path(args.file).read_text())
            results = await service.bulk_listing_check(items)
            return [_dump(r) for r in results]

        if args.command == "purge-cache":
            return {"purged": await service.purge_expired_cache()}

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="market-data",
        description="Real-estate listing status and market snapshots",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    market = subparsers.add_parser("market", help="Market snapshot for a ZIP code")
    market.add_argument("zip_code")

    for name, help_text in (
        ("listing", "Listing status for one address"),
        ("insights", "Listing, market context and analysis for one address"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("address")
        sub.add_argument("zip_code")

    bulk = subparsers.add_parser("bulk", help="Listing status for up to 10 addresses")
    bulk.add_argument("file", help="JSON file with a list of {address, zip_code} objects")

    subparsers.add_parser("purge-cache", help="Delete expired cache entries")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        # Settings errors (missing DATABASE_URL) are ValueErrors too
        settings = get_settings()
        setup_logging(settings.log_level)
        result = asyncio.run(run(args, build_market_data_service()))
    except (ValueError, OSError) as e:
        logger.error(str(e))
        return 1
    finally:
        reset_engine()

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
