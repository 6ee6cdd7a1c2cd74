"""PropertyFilter model and FastAPI dependency for listing search parameters."""

from __future__ import annotations

from typing import Annotated, Final

from fastapi import Depends
from pydantic import BaseModel, field_validator

from listing_hub.models import SQLITE_MAX_INTEGER, OfferType, PropertyType

VALID_SORT_OPTIONS: Final = {"newest", "price_asc", "price_desc"}

_PROPERTY_TYPE_NAMES: Final = {t.name.lower(): t for t in PropertyType}


def _parse_optional_int(value: str | None) -> int | None:
    """Parse a string to int, returning None for empty/whitespace/non-numeric values."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def _coerce_int(v: object) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    return _parse_optional_int(str(v))


class PropertyFilter(BaseModel):
    """Validated listing search parameters.

    All fields default to None (no filter). Validators coerce strings to the
    correct type and silently discard invalid values.
    """

    min_price: int | None = None
    max_price: int | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    property_type: PropertyType | None = None
    offer_type: OfferType | None = None
    region_id: int | None = None
    city_id: int | None = None
    area_id: int | None = None
    search: str | None = None
    sort: str = "newest"

    @field_validator("min_price", "max_price", "region_id", "city_id", "area_id", mode="before")
    @classmethod
    def coerce_int(cls, v: object) -> int | None:
        parsed = _coerce_int(v)
        if parsed is None or parsed < 0 or parsed > SQLITE_MAX_INTEGER:
            return None
        return parsed

    @field_validator("bedrooms", "bathrooms", mode="before")
    @classmethod
    def coerce_rooms(cls, v: object) -> int | None:
        parsed = _coerce_int(v)
        if parsed is None:
            return None
        return max(0, min(10, parsed))

    @field_validator("property_type", mode="before")
    @classmethod
    def validate_property_type(cls, v: object) -> PropertyType | None:
        if v is None or v == "":
            return None
        if isinstance(v, PropertyType):
            return v
        cleaned = str(v).strip().lower()
        if cleaned in _PROPERTY_TYPE_NAMES:
            return _PROPERTY_TYPE_NAMES[cleaned]
        parsed = _parse_optional_int(cleaned)
        if parsed is not None and parsed in PropertyType._value2member_map_:
            return PropertyType(parsed)
        return None

    @field_validator("offer_type", mode="before")
    @classmethod
    def validate_offer_type(cls, v: object) -> OfferType | None:
        if v is None or isinstance(v, OfferType):
            return v
        return OfferType.from_label(str(v))

    @field_validator("search", mode="before")
    @classmethod
    def clean_search(cls, v: object) -> str | None:
        if v is None:
            return None
        s = str(v).strip()
        return s[:100] if s else None

    @field_validator("sort", mode="before")
    @classmethod
    def validate_sort(cls, v: object) -> str:
        if not v:
            return "newest"
        cleaned = str(v).strip().lower()
        return cleaned if cleaned in VALID_SORT_OPTIONS else "newest"


def parse_filters(
    min_price: str | None = None,
    max_price: str | None = None,
    bedrooms: str | None = None,
    bathrooms: str | None = None,
    property_type: str | None = None,
    offer_type: str | None = None,
    region_id: str | None = None,
    city_id: str | None = None,
    area_id: str | None = None,
    search: str | None = None,
    sort: str | None = None,
) -> PropertyFilter:
    """FastAPI dependency that parses query params into a PropertyFilter."""
    return PropertyFilter.model_validate(
        {
            "min_price": min_price,
            "max_price": max_price,
            "bedrooms": bedrooms,
            "bathrooms": bathrooms,
            "property_type": property_type,
            "offer_type": offer_type,
            "region_id": region_id,
            "city_id": city_id,
            "area_id": area_id,
            "search": search,
            "sort": sort,
        }
    )


FilterDep = Annotated[PropertyFilter, Depends(parse_filters)]
