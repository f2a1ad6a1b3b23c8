"""
Field mapping for realtor search property records.

Search records are loosely typed and the same value can live under several
keys (e.g. beds in description.beds, beds or bedrooms). Each helper tries
the known locations in priority order and coerces what it finds.
"""
import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from marketdata.core.schemas import (
    ListingHistoryEvent,
    ListingRecord,
    ListingStatus,
    MAX_FEATURES,
    MAX_PHOTOS,
)

logger = logging.getLogger(__name__)

# Keywords picked out of free-text descriptions
COMMON_FEATURES = [
    "garage", "parking", "pool", "spa", "fireplace", "deck", "patio",
    "basement", "attic", "balcony", "garden", "yard", "fence",
    "dishwasher", "washer", "dryer", "refrigerator", "microwave",
    "air conditioning", "heating", "hardwood floors", "carpet",
    "tile", "granite", "marble", "stainless steel",
]

PHOTO_SOURCES = [
    ("photos",),
    ("images",),
    ("pictures",),
    ("media", "photos"),
    ("listing_photos",),
    ("photo_urls",),
]

FEATURE_SOURCES = [
    ("features",),
    ("amenities",),
    ("appliances",),
    ("description", "features"),
    ("listing_features",),
    ("property_features",),
]

_ENUM_VALUES = {status.value for status in ListingStatus}


def dig(record: Any, *path: str) -> Any:
    """Follow a key path through nested dicts, returning None on any miss."""
    node = record
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def first_present(record: Dict[str, Any], *paths: Iterable[str]) -> Any:
    """Value of the first path that holds something truthy."""
    for path in paths:
        value = dig(record, *path)
        if value:
            return value
    return None


def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings ("1,250") to a finite float."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace("$", "").strip()
    elif not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    # NaN and infinities pass every comparison check downstream
    return number if math.isfinite(number) else None


def to_positive_int(value: Any) -> Optional[int]:
    number = to_number(value)
    if number is None or number <= 0:
        return None
    return int(round(number))


def normalize_status(raw_status: Any) -> ListingStatus:
    """
    Map a source status string onto ListingStatus.

    Examples:
        normalize_status("for_sale") -> ListingStatus.FOR_SALE
        normalize_status("Active") -> ListingStatus.FOR_SALE
        normalize_status("contingent") -> ListingStatus.PENDING
        normalize_status("recently_sold") -> ListingStatus.SOLD
    """
    if not raw_status or not isinstance(raw_status, str):
        return ListingStatus.UNKNOWN

    status = raw_status.strip().lower().replace(" ", "_").replace("-", "_")
    if status in _ENUM_VALUES:
        return ListingStatus(status)

    if "rent" in status:
        return ListingStatus.FOR_RENT
    if "sold" in status or "closed" in status:
        return ListingStatus.SOLD
    if "pending" in status or "contract" in status or "contingent" in status:
        return ListingStatus.PENDING
    if "off" in status or "withdrawn" in status or "expired" in status:
        return ListingStatus.OFF_MARKET
    if (
        "sale" in status or "active" in status
        or "list" in status or "coming_soon" in status
    ):
        return ListingStatus.FOR_SALE

    return ListingStatus.UNKNOWN


def extract_address_line(record: Dict[str, Any]) -> str:
    """Street line of a record, or "" when none is present."""
    line = first_present(
        record,
        ("location", "address", "line"),
        ("address", "line"),
        ("formatted_address",),
        ("address_line",),
    )
    if not line:
        address = record.get("address")
        if isinstance(address, str):
            line = address
    return line.strip() if isinstance(line, str) else ""


def best_estimate(record: Dict[str, Any]) -> Optional[float]:
    """
    Value estimate of a record: the one flagged as best, else the first.

    Returns None unless the chosen estimate is a positive number.
    """
    estimates = record.get("current_estimates")
    if not isinstance(estimates, list) or not estimates:
        return None

    chosen = next(
        (e for e in estimates if isinstance(e, dict) and e.get("isbest_homevalue")),
        estimates[0],
    )
    if not isinstance(chosen, dict):
        return None

    value = to_number(chosen.get("estimate"))
    if value is None or value <= 0:
        return None
    return value


def list_price(record: Dict[str, Any]) -> Optional[float]:
    """Positive list price of a record, else None."""
    value = to_number(record.get("list_price"))
    if value is None or value <= 0:
        return None
    return value


def extract_photos(record: Dict[str, Any]) -> List[str]:
    """Photo URLs from every known photo field, de-duplicated, at most 20."""
    photos: List[str] = []
    for path in PHOTO_SOURCES:
        source = dig(record, *path)
        if not isinstance(source, list):
            continue
        for photo in source:
            if isinstance(photo, str):
                url = photo
            elif isinstance(photo, dict):
                url = photo.get("href") or photo.get("url") or photo.get("image_url")
            else:
                url = None
            if isinstance(url, str) and url:
                photos.append(url)

    return list(dict.fromkeys(photos))[:MAX_PHOTOS]


def _description_text(record: Dict[str, Any]) -> Optional[str]:
    text = first_present(
        record,
        ("description", "text"),
        ("listing_description",),
        ("remarks",),
        ("public_remarks",),
    )
    if not text:
        description = record.get("description")
        if isinstance(description, str):
            text = description
    return text if isinstance(text, str) else None


def extract_features(record: Dict[str, Any]) -> List[str]:
    """Feature names from feature lists plus keywords found in the description."""
    features: List[str] = []
    for path in FEATURE_SOURCES:
        source = dig(record, *path)
        if not isinstance(source, list):
            continue
        for feature in source:
            if isinstance(feature, dict):
                feature = feature.get("name") or feature.get("text")
            if isinstance(feature, str) and feature.strip():
                features.append(feature.strip().lower())

    description = (_description_text(record) or "").lower()
    for keyword in COMMON_FEATURES:
        if keyword in description:
            features.append(keyword)

    return list(dict.fromkeys(features))[:MAX_FEATURES]


def extract_listing_history(record: Dict[str, Any]) -> List[ListingHistoryEvent]:
    history = record.get("property_history") or record.get("listing_history")
    if not isinstance(history, list):
        return []

    events = []
    for item in history:
        if not isinstance(item, dict):
            continue
        event = item.get("event_name") or item.get("event")
        events.append(
            ListingHistoryEvent(
                date=str(item["date"]) if item.get("date") else None,
                event=str(event) if event else None,
                price=to_positive_int(item.get("price")),
            )
        )
    return events


def _agent(record: Dict[str, Any]) -> Dict[str, Any]:
    advertisers = record.get("advertisers")
    if isinstance(advertisers, list) and advertisers and isinstance(advertisers[0], dict):
        return advertisers[0]
    for key in ("listing_agent", "agent"):
        if isinstance(record.get(key), dict):
            return record[key]
    return {}


def _text(value: Any) -> Optional[str]:
    """Strings and numbers as stripped text; any other shape is dropped."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _agent_name(agent: Dict[str, Any]) -> Optional[str]:
    name = agent.get("name")
    if isinstance(name, dict):
        parts = [_text(name.get(k)) for k in ("first", "middle", "last")]
        return " ".join(p for p in parts if p) or _text(name.get("full"))
    return _text(name)


def _agent_phone(agent: Dict[str, Any]) -> Optional[str]:
    phone = agent.get("phone")
    if not phone:
        phones = agent.get("phones")
        if isinstance(phones, list) and phones:
            first = phones[0]
            phone = first.get("number") if isinstance(first, dict) else first
    return _text(phone)


def build_listing_record(record: Dict[str, Any], original_address: str) -> ListingRecord:
    """
    Normalize one search record into a ListingRecord.

    Args:
        record: Raw property record from the search payload
        original_address: Address the caller asked about (used when the
                          record carries no street line)
    """
    price = list_price(record)
    if price is None:
        estimates = record.get("current_estimates")
        if isinstance(estimates, list) and estimates and isinstance(estimates[0], dict):
            price = to_number(estimates[0].get("estimate"))

    agent = _agent(record)
    days = to_positive_int(first_present(record, ("days_on_mls",), ("days_on_market",)))
    bedrooms = to_number(first_present(record, ("description", "beds"), ("beds",), ("bedrooms",)))
    bathrooms = to_number(first_present(record, ("description", "baths"), ("baths",), ("bathrooms",)))
    mls_number = first_present(record, ("mls", "id"), ("mls_id",), ("listing_id",))
    listing_date = first_present(record, ("list_date",), ("listing_date",), ("date_listed",))
    property_type = first_present(
        record, ("description", "type"), ("prop_type",), ("property_type",)
    )
    virtual_tour = first_present(record, ("virtual_tour", "href"), ("virtual_tour_url",))

    return ListingRecord(
        address=extract_address_line(record) or original_address,
        status=normalize_status(record.get("status")),
        price=int(round(price)) if price and price > 0 else None,
        days_on_market=days or 0,
        agent_name=_agent_name(agent),
        agent_phone=_agent_phone(agent),
        listing_date=str(listing_date) if listing_date else None,
        description=_description_text(record),
        bedrooms=bedrooms if bedrooms is not None and bedrooms >= 0 else None,
        bathrooms=bathrooms if bathrooms is not None and bathrooms >= 0 else None,
        square_feet=to_positive_int(first_present(
            record,
            ("description", "sqft"),
            ("sqft",),
            ("square_feet",),
            ("building_size", "size"),
        )),
        lot_size=to_positive_int(first_present(
            record, ("description", "lot_sqft"), ("lot_size", "size"), ("lot_sqft",)
        )),
        property_type=str(property_type) if property_type else None,
        year_built=to_positive_int(first_present(record, ("description", "year_built"), ("year_built",))),
        photos=extract_photos(record),
        features=extract_features(record),
        mls_number=str(mls_number) if mls_number else None,
        virtual_tour_url=str(virtual_tour) if virtual_tour else None,
        listing_history=extract_listing_history(record),
    )
