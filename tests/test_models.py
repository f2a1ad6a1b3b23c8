"""
Unit tests for the cache table model and the canonical record schemas.
"""
import pytest
from datetime import datetime, timedelta
from pydantic import ValidationError

from marketdata.core.api_errors import (
    AddressNotFound,
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    UpstreamQuotaExceeded,
    UpstreamRejected,
    UpstreamUnavailable,
    classify_http_error,
)
from marketdata.core.models import CachedPayload
from marketdata.core.schemas import (
    ListingRecord,
    ListingStatus,
    MarketContext,
    MarketSnapshot,
    MAX_PHOTOS,
)


def _snapshot(**overrides):
    fields = dict(
        zip_code="90210", median_price=1500000, days_on_market=30, inventory_count=20,
        price_trend_30d=2.5, active_listings=12, avg_price_per_sqft=800, market_velocity=4.3,
    )
    fields.update(overrides)
    return MarketSnapshot(**fields)


@pytest.mark.unit
def test_cached_payload_creation(session_factory):
    """Test storing a cache row."""
    now = datetime(2024, 1, 1, 12)
    session = session_factory()
    try:
        session.add(CachedPayload(
            cache_key="market_90210",
            kind="market",
            payload={"median_price": 1500000},
            cached_at=now,
            expires_at=now + timedelta(hours=24),
        ))
        session.commit()

        row = session.get(CachedPayload, "market_90210")
        assert row.kind == "market"
        assert row.payload["median_price"] == 1500000
        assert row.is_synthetic is False
        assert "market_90210" in repr(row)
    finally:
        session.close()


@pytest.mark.unit
def test_cached_not_found_marker(session_factory):
    """Test that a listing row may carry no payload."""
    now = datetime(2024, 1, 1, 12)
    session = session_factory()
    try:
        session.add(CachedPayload(
            cache_key="listing_90210_1_Main_St",
            kind="listing",
            payload=None,
            cached_at=now,
            expires_at=now + timedelta(hours=12),
        ))
        session.commit()

        assert session.get(CachedPayload, "listing_90210_1_Main_St").payload is None
    finally:
        session.close()


@pytest.mark.unit
def test_listing_record_defaults():
    record = ListingRecord(address="1 Main St")

    assert record.status == ListingStatus.UNKNOWN
    assert record.days_on_market == 0
    assert record.photos == []
    assert record.is_active is False


@pytest.mark.unit
def test_listing_record_dedupes_photos_and_features():
    record = ListingRecord(
        address="1 Main St",
        status=ListingStatus.FOR_RENT,
        photos=["a.jpg", "b.jpg", "a.jpg"],
        features=["Pool", " pool ", "Garage", ""],
    )

    assert record.photos == ["a.jpg", "b.jpg"]
    assert record.features == ["pool", "garage"]
    assert record.is_active is True


@pytest.mark.unit
def test_listing_record_rejects_too_many_photos():
    with pytest.raises(ValidationError):
        ListingRecord(address="1 Main St", photos=[f"{i}.jpg" for i in range(MAX_PHOTOS + 1)])


@pytest.mark.unit
def test_listing_record_rejects_negative_price():
    with pytest.raises(ValidationError):
        ListingRecord(address="1 Main St", price=-1)


@pytest.mark.unit
def test_listing_status_values():
    assert {s.value for s in ListingStatus} == {
        "for_sale", "for_rent", "sold", "pending", "off_market", "not_listed", "unknown",
    }


@pytest.mark.unit
@pytest.mark.parametrize("trend", [10.01, -10.5])
def test_snapshot_trend_bounded(trend):
    with pytest.raises(ValidationError):
        _snapshot(price_trend_30d=trend)


@pytest.mark.unit
def test_market_context_from_snapshot():
    context = MarketContext.from_snapshot(_snapshot())

    assert context.median_price == 1500000
    assert context.avg_days_on_market == 30
    assert context.price_trend_30d == 2.5
    assert context.active_listings == 12
    assert context.market_velocity == 4.3


@pytest.mark.unit
@pytest.mark.parametrize("status,expected", [
    (429, UpstreamQuotaExceeded),
    (401, AuthenticationError),
    (403, AuthenticationError),
    (404, NotFoundError),
    (422, UpstreamRejected),
    (500, UpstreamUnavailable),
    (503, UpstreamUnavailable),
])
def test_classify_http_error(status, expected):
    error = classify_http_error(status, "body", source="realtor_search")

    assert isinstance(error, expected)
    assert error.source == "realtor_search"
    assert error.retryable is (expected is UpstreamUnavailable)


@pytest.mark.unit
def test_api_error_to_dict():
    error = classify_http_error(503, "maintenance", source="realtor_search")

    assert error.to_dict() == {
        "error_type": "UpstreamUnavailable",
        "message": "Server error: maintenance",
        "source": "realtor_search",
        "status_code": 503,
        "retryable": True,
        "response_data": None,
    }


@pytest.mark.unit
def test_configuration_error_is_a_rejection():
    error = ConfigurationError("key missing", missing_config="RAPIDAPI_KEY")

    assert isinstance(error, UpstreamRejected)
    assert error.retryable is False
    assert error.to_dict()["error_type"] == "ConfigurationError"


@pytest.mark.unit
def test_address_not_found_message():
    assert str(AddressNotFound("1 Main St", "90210")) == "No listing for '1 Main St' in 90210"
    assert AddressNotFound("1 Main St").zip_code is None
