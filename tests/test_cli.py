"""
Tests for the market-data command line.
"""
import argparse
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marketdata.cli import build_parser, main, run
from marketdata.core.schemas import BulkListingResult, ListingStatus, MarketSnapshot

SNAPSHOT = MarketSnapshot(
    zip_code="90210", median_price=2000000, days_on_market=40, inventory_count=12,
    price_trend_30d=1.5, active_listings=8, avg_price_per_sqft=900, market_velocity=5.7,
)


def _service():
    service = MagicMock()
    service.__aenter__ = AsyncMock(return_value=service)
    service.__aexit__ = AsyncMock(return_value=False)
    service.get_market_data = AsyncMock(return_value=SNAPSHOT)
    service.check_listing_status = AsyncMock(return_value=None)
    service.bulk_listing_check = AsyncMock(return_value=[
        BulkListingResult(address="1 Main St", zip_code="90210", status=ListingStatus.NOT_LISTED)
    ])
    service.purge_expired_cache = AsyncMock(return_value=3)
    return service


class TestParser:

    @pytest.mark.unit
    def test_listing_command(self):
        args = build_parser().parse_args(["listing", "123 Main St", "90210"])
        assert args.command == "listing"
        assert args.address == "123 Main St"
        assert args.zip_code == "90210"

    @pytest.mark.unit
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestRun:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_market(self):
        service = _service()
        result = await run(argparse.Namespace(command="market", zip_code="90210"), service)

        assert result["median_price"] == 2000000
        service.get_market_data.assert_awaited_once_with("90210")
        service.__aexit__.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listing_not_listed(self):
        args = argparse.Namespace(command="listing", address="1 Main St", zip_code="90210")
        result = await run(args, _service())

        assert result == {"address": "1 Main St", "zip_code": "90210", "status": "not_listed"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bulk_reads_file(self, tmp_path):
        path = tmp_path / "props.json"
        path.write_text(json.dumps([{"address": "1 Main St", "zip_code": "90210"}]))
        service = _service()

        result = await run(argparse.Namespace(command="bulk", file=str(path)), service)

        assert result[0]["status"] == "not_listed"
        service.bulk_listing_check.assert_awaited_once_with(
            [{"address": "1 Main St", "zip_code": "90210"}]
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_purge(self):
        result = await run(argparse.Namespace(command="purge-cache"), _service())
        assert result == {"purged": 3}


class TestMain:

    @pytest.mark.unit
    def test_prints_json(self, clean_env, monkeypatch, capsys):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        with patch("marketdata.cli.build_market_data_service", return_value=_service()), \
                patch("marketdata.cli.reset_engine") as reset:
            code = main(["market", "90210"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["zip_code"] == "90210"
        reset.assert_called_once()

    @pytest.mark.unit
    def test_missing_bulk_file_exits_nonzero(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        with patch("marketdata.cli.build_market_data_service", return_value=_service()), \
                patch("marketdata.cli.reset_engine"):
            assert main(["bulk", str(tmp_path / "missing.json")]) == 1

    @pytest.mark.unit
    def test_missing_database_url_exits_nonzero(self, clean_env, monkeypatch, tmp_path, caplog):
        monkeypatch.chdir(tmp_path)  # no .env to fall back on
        with patch("marketdata.cli.build_market_data_service") as build, \
                patch("marketdata.cli.reset_engine") as reset:
            code = main(["market", "90210"])

        assert code == 1
        assert "database_url" in caplog.text
        build.assert_not_called()
        reset.assert_called_once()
