"""
Unit tests for mapping realtor search records onto ListingRecord.
"""
import pytest

from marketdata.core.schemas import ListingStatus, MAX_FEATURES, MAX_PHOTOS
from marketdata.sources.realtor.metadata import (
    best_estimate,
    build_listing_record,
    extract_address_line,
    extract_features,
    extract_listing_history,
    extract_photos,
    normalize_status,
    to_number,
)


SAMPLE_RECORD = {
    "property_id": "1234567890",
    "status": "for_sale",
    "list_price": 825000,
    "list_date": "2024-03-01",
    "days_on_mls": 21,
    "location": {"address": {"line": "123 Main St", "postal_code": "90210"}},
    "description": {
        "beds": 3,
        "baths": 2.5,
        "sqft": 1850,
        "lot_sqft": 6200,
        "type": "single_family",
        "year_built": 1962,
        "text": "Charming home with a fireplace and a two-car garage.",
    },
    "advertisers": [{"name": "Jane Agent", "phones": [{"number": "555-0100"}]}],
    "photos": [{"href": "https://img/1.jpg"}, {"href": "https://img/2.jpg"}],
    "mls": {"id": "SR24012345"},
    "virtual_tour": {"href": "https://tour/1"},
    "property_history": [
        {"date": "2024-03-01", "event_name": "Listed", "price": 825000},
        {"date": "2019-06-15", "event_name": "Sold", "price": "640,000"},
    ],
}


class TestStatusNormalization:

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("for_sale", ListingStatus.FOR_SALE),
        ("FOR_SALE", ListingStatus.FOR_SALE),
        ("not_listed", ListingStatus.NOT_LISTED),
        ("for_rent", ListingStatus.FOR_RENT),
        ("Rental", ListingStatus.FOR_RENT),
        ("recently_sold", ListingStatus.SOLD),
        ("Closed", ListingStatus.SOLD),
        ("under contract", ListingStatus.PENDING),
        ("contingent", ListingStatus.PENDING),
        ("withdrawn", ListingStatus.OFF_MARKET),
        ("expired", ListingStatus.OFF_MARKET),
        ("Active", ListingStatus.FOR_SALE),
        ("coming soon", ListingStatus.FOR_SALE),
        ("new_listing", ListingStatus.FOR_SALE),
        ("mystery", ListingStatus.UNKNOWN),
        ("", ListingStatus.UNKNOWN),
        (None, ListingStatus.UNKNOWN),
        (7, ListingStatus.UNKNOWN),
    ])
    def test_normalize_status(self, raw, expected):
        assert normalize_status(raw) == expected


class TestFieldHelpers:

    @pytest.mark.unit
    @pytest.mark.parametrize("value,expected", [
        (5, 5.0),
        (2.5, 2.5),
        ("1,250", 1250.0),
        ("$300,000", 300000.0),
        ("n/a", None),
        (None, None),
        (True, None),
        ([1], None),
        ("NaN", None),
        ("inf", None),
        (float("nan"), None),
        (float("-inf"), None),
    ])
    def test_to_number(self, value, expected):
        assert to_number(value) == expected

    @pytest.mark.unit
    def test_address_line_sources(self):
        assert extract_address_line(SAMPLE_RECORD) == "123 Main St"
        assert extract_address_line({"address": {"line": "9 Elm Ct "}}) == "9 Elm Ct"
        assert extract_address_line({"address": "1 Bay Rd"}) == "1 Bay Rd"
        assert extract_address_line({"formatted_address": "5 Hill Pl"}) == "5 Hill Pl"
        assert extract_address_line({}) == ""

    @pytest.mark.unit
    def test_best_estimate_prefers_flagged(self):
        record = {"current_estimates": [
            {"estimate": 500000},
            {"estimate": 520000, "isbest_homevalue": True},
        ]}
        assert best_estimate(record) == 520000

    @pytest.mark.unit
    def test_best_estimate_falls_back_to_first(self):
        assert best_estimate({"current_estimates": [{"estimate": 410000}, {"estimate": 1}]}) == 410000

    @pytest.mark.unit
    @pytest.mark.parametrize("estimates", [None, [], [{"estimate": 0}], ["bad"], "bad"])
    def test_best_estimate_missing(self, estimates):
        assert best_estimate({"current_estimates": estimates}) is None

    @pytest.mark.unit
    def test_photos_deduplicated_and_bounded(self):
        record = {
            "photos": [{"href": f"https://img/{i}.jpg"} for i in range(15)],
            "images": ["https://img/0.jpg"] + [f"https://alt/{i}.jpg" for i in range(15)],
            "media": {"photos": [{"url": "https://img/1.jpg"}]},
        }
        photos = extract_photos(record)

        assert len(photos) == MAX_PHOTOS
        assert len(set(photos)) == len(photos)
        assert photos[0] == "https://img/0.jpg"

    @pytest.mark.unit
    def test_features_from_lists_and_description(self):
        record = {
            "features": ["Pool", {"name": "Garage"}, "pool"],
            "description": {"text": "Bright kitchen with granite counters and hardwood floors."},
        }
        assert extract_features(record) == ["pool", "garage", "hardwood floors", "granite"]

    @pytest.mark.unit
    def test_features_bounded(self):
        record = {"amenities": [f"feature {i}" for i in range(30)]}
        assert len(extract_features(record)) == MAX_FEATURES

    @pytest.mark.unit
    def test_listing_history(self):
        events = extract_listing_history(SAMPLE_RECORD)

        assert [e.event for e in events] == ["Listed", "Sold"]
        assert events[1].price == 640000
        assert extract_listing_history({"property_history": "none"}) == []


class TestBuildListingRecord:

    @pytest.mark.unit
    def test_full_record(self):
        record = build_listing_record(SAMPLE_RECORD, "123 Main Street")

        assert record.address == "123 Main St"
        assert record.status == ListingStatus.FOR_SALE
        assert record.price == 825000
        assert record.days_on_market == 21
        assert record.agent_name == "Jane Agent"
        assert record.agent_phone == "555-0100"
        assert record.listing_date == "2024-03-01"
        assert record.bedrooms == 3
        assert record.bathrooms == 2.5
        assert record.square_feet == 1850
        assert record.lot_size == 6200
        assert record.property_type == "single_family"
        assert record.year_built == 1962
        assert record.photos == ["https://img/1.jpg", "https://img/2.jpg"]
        assert "fireplace" in record.features
        assert "garage" in record.features
        assert record.mls_number == "SR24012345"
        assert record.virtual_tour_url == "https://tour/1"
        assert len(record.listing_history) == 2

    @pytest.mark.unit
    def test_sparse_record(self):
        record = build_listing_record({"status": "sold"}, "77 Harbor Blvd")

        assert record.address == "77 Harbor Blvd"
        assert record.status == ListingStatus.SOLD
        assert record.price is None
        assert record.days_on_market == 0
        assert record.agent_name is None
        assert record.photos == []
        assert record.features == []

    @pytest.mark.unit
    def test_price_falls_back_to_estimate(self):
        raw = {"status": "off_market", "current_estimates": [{"estimate": 612345.6}]}
        assert build_listing_record(raw, "1 Bay Rd").price == 612346

    @pytest.mark.unit
    def test_flat_alternate_fields(self):
        raw = {
            "status": "active",
            "bedrooms": "4",
            "bathrooms": 3,
            "square_feet": "2,400",
            "listing_agent": {"name": "Sam Broker", "phone": "555-0199"},
            "remarks": "Huge deck and a pool.",
            "mls_id": 998877,
        }
        record = build_listing_record(raw, "5 Hill Pl")

        assert record.status == ListingStatus.FOR_SALE
        assert record.bedrooms == 4.0
        assert record.square_feet == 2400
        assert record.agent_name == "Sam Broker"
        assert record.agent_phone == "555-0199"
        assert record.description == "Huge deck and a pool."
        assert record.features == ["pool", "deck"]
        assert record.mls_number == "998877"

    @pytest.mark.unit
    def test_non_finite_numbers_are_dropped(self):
        raw = {"status": "for_sale", "list_price": "NaN", "description": {"beds": float("inf")}}
        record = build_listing_record(raw, "9 Elm Ct")

        assert record.price is None
        assert record.bedrooms is None

    @pytest.mark.unit
    def test_structured_agent_name(self):
        raw = {
            "status": "for_sale",
            "advertisers": [{
                "name": {"first": "Jane", "middle": None, "last": "Agent"},
                "phones": [{"number": 5550100}],
            }],
        }
        record = build_listing_record(raw, "1 Main St")

        assert record.agent_name == "Jane Agent"
        assert record.agent_phone == "5550100"

    @pytest.mark.unit
    @pytest.mark.parametrize("name", [["Jane", "Agent"], {"nickname": "JA"}, "   "])
    def test_unusable_agent_name_is_dropped(self, name):
        raw = {"status": "for_sale", "advertisers": [{"name": name}]}
        assert build_listing_record(raw, "1 Main St").agent_name is None
