"""Tests for domain models."""

import pytest
from pydantic import ValidationError

from listing_hub.models import (
    SQLITE_MAX_INTEGER,
    BatchResult,
    MessageType,
    NormalizedListing,
    OfferType,
    PropertyType,
    QueueMessage,
    RecordOutcome,
)


class TestPropertyType:
    @pytest.mark.parametrize(
        ("attribute_set", "subcategory", "expected"),
        [
            ("Condominium", "Condominium", PropertyType.CONDOMINIUM),
            ("House", "Townhouse", PropertyType.HOUSE),
            ("Commercial", "Warehouse", PropertyType.WAREHOUSE),
            ("Land", "Lot", PropertyType.LAND),
            ("Commercial", "Office", PropertyType.OTHER),
            (None, None, PropertyType.OTHER),
        ],
    )
    def test_from_attributes(
        self, attribute_set: str | None, subcategory: str | None, expected: PropertyType
    ) -> None:
        assert PropertyType.from_attributes(attribute_set, subcategory) is expected

    def test_ids_are_stable(self) -> None:
        assert [int(t) for t in PropertyType] == [1, 2, 3, 4, 5]

    def test_display_name(self) -> None:
        assert PropertyType.CONDOMINIUM.display_name == "Condominium"


class TestOfferType:
    def test_from_label(self) -> None:
        assert OfferType.from_label("Buy") is OfferType.BUY
        assert OfferType.from_label(" rent ") is OfferType.RENT
        assert OfferType.from_label("Lease") is None
        assert OfferType.from_label(None) is None


class TestQueueMessage:
    def test_frozen(self) -> None:
        message = QueueMessage(type=MessageType.CREATE_LISTING_FROM_RAW_LAMUDI_DATA)
        with pytest.raises(ValidationError):
            message.type = MessageType.CREATE_AI_GENERATED_DESCRIPTION  # type: ignore[misc]

    def test_raw_page_requires_url_and_data_layer(self) -> None:
        with pytest.raises(ValidationError, match="listingUrl"):
            QueueMessage(
                type=MessageType.CREATE_RAW_LAMUDI_LISTING_DATA, data={"dataLayer": {}}
            )
        with pytest.raises(ValidationError, match="dataLayer"):
            QueueMessage(
                type=MessageType.CREATE_RAW_LAMUDI_LISTING_DATA, data={"listingUrl": "https://x/1"}
            )

    def test_other_types_ignore_payload(self) -> None:
        message = QueueMessage(type=MessageType.CREATE_AI_GENERATED_DESCRIPTION, data=[1, 2])
        assert message.data == [1, 2]


class TestNormalizedListing:
    def _fields(self, **overrides: object) -> dict[str, object]:
        fields: dict[str, object] = {
            "raw_id": 1,
            "title": "Condo",
            "url": "https://x/1",
            "price": 6000000,
            "agent_name": "Agent",
            "product_owner_name": "Owner",
            "region_key": "R",
            "region_name": "Region",
            "city_key": "C",
            "city_name": "City",
        }
        fields.update(overrides)
        return fields

    def test_defaults(self) -> None:
        listing = NormalizedListing(**self._fields())
        assert listing.bedrooms == 0
        assert listing.amenities == {}
        assert listing.images == []
        assert listing.property_type is PropertyType.OTHER

    def test_none_blob_becomes_empty_object(self) -> None:
        listing = NormalizedListing(**self._fields(indoor_features=None))
        assert listing.indoor_features == {}

    def test_blank_area_becomes_none(self) -> None:
        listing = NormalizedListing(**self._fields(area_key=" ", area_name=""))
        assert listing.area_key is None

    def test_area_key_requires_name(self) -> None:
        with pytest.raises(ValidationError, match="area_name"):
            NormalizedListing(**self._fields(area_key="A-1"))

    @pytest.mark.parametrize(("field", "value"), [("latitude", 91), ("longitude", -181), ("price", -1)])
    def test_out_of_range(self, field: str, value: float) -> None:
        with pytest.raises(ValidationError):
            NormalizedListing(**self._fields(**{field: value}))

    @pytest.mark.parametrize("field", ["price", "bedrooms", "year_built"])
    def test_integer_beyond_sqlite_range(self, field: str) -> None:
        with pytest.raises(ValidationError, match=field):
            NormalizedListing(**self._fields(**{field: SQLITE_MAX_INTEGER + 1}))

    def test_largest_sqlite_integer_accepted(self) -> None:
        listing = NormalizedListing(**self._fields(price=SQLITE_MAX_INTEGER))
        assert listing.price == SQLITE_MAX_INTEGER


class TestBatchResult:
    def test_counts(self) -> None:
        result = BatchResult(
            batch_id="b",
            raw_ids=[1, 2, 3],
            outcomes={
                1: RecordOutcome.CREATED,
                2: RecordOutcome.REJECTED,
                3: RecordOutcome.CREATED,
            },
        )
        assert result.created == 2
        assert result.updated == 0
        assert result.rejected == 1
        assert result.count(RecordOutcome.SKIPPED) == 0
