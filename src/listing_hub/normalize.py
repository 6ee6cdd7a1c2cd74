"""Map scraped Lamudi dataLayer payloads onto NormalizedListing.

The scraper stores each page verbatim as::

    {"listingUrl": ..., "images": [{"src": ...}, ...],
     "dataLayer": {"title": ..., "agent_name": ...,
                   "location": {"region": ..., "city": ..., "rooms_total": ...},
                   "attributes": {"listing_region_id": ..., "price": ..., ...},
                   "description": {"text": ...}}}
"""

import json
import math
from typing import Any

from pydantic import ValidationError

from listing_hub.errors import RawDataValidationError
from listing_hub.models import JsonBlob, NormalizedListing, OfferType, PropertyType, RawRecord
from listing_hub.utils.text import clean_text


def to_int(value: Any) -> int | None:
    """Coerce a scraped numeric value to int.

    Accepts ints, floats and numeric strings with thousands separators
    ("6,000,000", "6000000.00"). Returns None for anything else.
    """
    number = to_float(value)
    if number is None:
        return None
    return int(number)


def to_float(value: Any) -> float | None:
    """Coerce a scraped numeric value to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_json_blob(value: Any) -> JsonBlob:
    """Parse a feature blob that may arrive as an object, a list or a JSON string.

    Anything missing or unparseable becomes an empty object.
    """
    if isinstance(value, dict | list):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        if isinstance(parsed, dict | list):
            return parsed
    return {}


def extract_image_urls(images: Any) -> list[str]:
    """Extract image source URLs from the scraped images list."""
    if isinstance(images, str):
        try:
            images = json.loads(images)
        except json.JSONDecodeError:
            return []
    if not isinstance(images, list):
        return []
    urls: list[str] = []
    for image in images:
        if isinstance(image, str):
            src = image
        elif isinstance(image, dict):
            src = image.get("src") or image.get("dataSrc") or ""
        else:
            continue
        if src and src not in urls:
            urls.append(src)
    return urls


def build_listing_url(base_url: str, urlkey: str | None, fallback: str | None) -> str | None:
    """Build the canonical listing URL from the scraped urlkey."""
    if urlkey:
        return f"{base_url.rstrip('/')}/{str(urlkey).lstrip('/')}"
    return fallback or None


def _require_section(container: dict[str, Any], key: str) -> dict[str, Any]:
    section = container.get(key)
    if not isinstance(section, dict):
        raise RawDataValidationError(f"missing {key}", field=key)
    return section


def _require_text(value: Any, field: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise RawDataValidationError(f"missing {field}", field=field)
    return str(value).strip()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_raw_record(
    record: RawRecord,
    *,
    base_url: str,
    min_price: int,
) -> NormalizedListing:
    """Validate a raw record and map it onto Property/Listing columns.

    Args:
        record: Raw record as stored by the ingestion step.
        base_url: Site base URL joined with ``urlkey_details``.
        min_price: Prices at or below this are rejected as scrape noise.

    Returns:
        The normalized listing.

    Raises:
        RawDataValidationError: Required sections or fields are missing,
            or the record fails the minimum-quality filters.
    """
    data_layer = _require_section(record.json_data, "dataLayer")
    location = _require_section(data_layer, "location")
    attributes = _require_section(data_layer, "attributes")

    price = to_int(attributes.get("price"))
    if price is None or price <= min_price:
        raise RawDataValidationError(
            f"price {attributes.get('price')!r} at or below minimum {min_price}",
            field="price",
        )

    url = build_listing_url(
        base_url, _optional_text(attributes.get("urlkey_details")), record.listing_url
    ) or _optional_text(record.json_data.get("listingUrl"))
    if not url:
        raise RawDataValidationError("missing listing url", field="url")

    description = data_layer.get("description")
    description_text = description.get("text") if isinstance(description, dict) else description

    longitude = to_float(attributes.get("location_longitude"))
    latitude = to_float(attributes.get("location_latitude"))
    if longitude is None or latitude is None or abs(longitude) > 180 or abs(latitude) > 90:
        longitude = latitude = None

    try:
        return NormalizedListing(
            raw_id=record.id,
            title=_require_text(data_layer.get("title"), "title"),
            url=url,
            description=clean_text(description_text if isinstance(description_text, str) else None),
            address=_optional_text(attributes.get("listing_address")) or "-",
            price=price,
            price_formatted=_optional_text(attributes.get("price_formatted")),
            offer_type=OfferType.from_label(attributes.get("offer_type")),
            agent_name=_require_text(data_layer.get("agent_name"), "agent_name"),
            product_owner_name=_require_text(
                attributes.get("product_owner_name"), "product_owner_name"
            ),
            project_name=_optional_text(attributes.get("project_name")),
            region_key=_require_text(attributes.get("listing_region_id"), "listing_region_id"),
            region_name=_require_text(location.get("region"), "region"),
            city_key=_require_text(attributes.get("listing_city_id"), "listing_city_id"),
            city_name=_require_text(location.get("city"), "city"),
            area_key=_optional_text(attributes.get("listing_area_id")),
            area_name=_optional_text(attributes.get("listing_area")),
            property_type=PropertyType.from_attributes(
                attributes.get("attribute_set_name"), attributes.get("subcategory")
            ),
            rooms_total=to_int(location.get("rooms_total")) or 0,
            floor_size=to_float(attributes.get("floor_size")) or 0,
            lot_size=to_float(attributes.get("lot_size")) or 0,
            land_size=to_float(attributes.get("land_size")) or 0,
            building_size=to_float(attributes.get("building_size")) or 0,
            bedrooms=to_int(attributes.get("bedrooms")) or 0,
            bathrooms=to_int(attributes.get("bathrooms")) or 0,
            parking_spaces=to_int(attributes.get("car_spaces")) or 0,
            ceiling_height=to_float(attributes.get("ceiling_height")) or 0,
            year_built=to_int(attributes.get("year_built")) or 0,
            longitude=longitude,
            latitude=latitude,
            primary_image_url=_optional_text(attributes.get("image_url")),
            images=extract_image_urls(record.json_data.get("images")),
            amenities=parse_json_blob(attributes.get("amenities")),
            indoor_features=parse_json_blob(attributes.get("indoor_features")),
            outdoor_features=parse_json_blob(attributes.get("outdoor_features")),
            property_features=parse_json_blob(attributes.get("other_features")),
        )
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or None
        raise RawDataValidationError(f"invalid raw data: {first['msg']}", field=field) from e
