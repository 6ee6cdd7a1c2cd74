"""Pydantic models for raw records, normalized listings and queue messages."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Annotated, Any, Final, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

JsonBlob = dict[str, Any] | list[Any]

# SQLite stores INTEGER as a signed 64-bit value
SQLITE_MIN_INTEGER: Final = -(2**63)
SQLITE_MAX_INTEGER: Final = 2**63 - 1

SqliteInt = Annotated[int, Field(ge=SQLITE_MIN_INTEGER, le=SQLITE_MAX_INTEGER)]


class PropertyType(IntEnum):
    """Property classification, stored as property_type_id."""

    CONDOMINIUM = 1
    HOUSE = 2
    WAREHOUSE = 3
    LAND = 4
    OTHER = 5

    @property
    def display_name(self) -> str:
        """Human-readable name for this property type."""
        return self.name.title()

    @classmethod
    def from_attributes(cls, attribute_set_name: str | None, subcategory: str | None) -> Self:
        """Classify a scraped listing from its attribute set and subcategory.

        Warehouses are only identifiable by subcategory; everything
        unrecognised falls back to OTHER.
        """
        if attribute_set_name == "Condominium":
            return cls.CONDOMINIUM
        if attribute_set_name == "House":
            return cls.HOUSE
        if subcategory == "Warehouse":
            return cls.WAREHOUSE
        if attribute_set_name == "Land":
            return cls.LAND
        return cls.OTHER


class OfferType(IntEnum):
    """Market offer type, stored as offer_type_id."""

    BUY = 1
    RENT = 2

    @classmethod
    def from_label(cls, label: str | None) -> Self | None:
        """Map the scraped offer_type label ("Buy"/"Rent") to an OfferType."""
        if not label:
            return None
        return _OFFER_LABELS.get(label.strip().lower())  # type: ignore[return-value]


_OFFER_LABELS: Final[dict[str, OfferType]] = {"buy": OfferType.BUY, "rent": OfferType.RENT}


class MessageType(StrEnum):
    """Work messages understood by the queue consumer."""

    CREATE_RAW_LAMUDI_LISTING_DATA = "CREATE_RAW_LAMUDI_LISTING_DATA"
    CREATE_LISTING_FROM_RAW_LAMUDI_DATA = "CREATE_LISTING_FROM_RAW_LAMUDI_DATA"
    CREATE_AI_GENERATED_DESCRIPTION = "CREATE_AI_GENERATED_DESCRIPTION"


class MessageSource(StrEnum):
    """Producer of a queue message."""

    LAMUDI = "LAMUDI"
    APP = "APP"


class QueueMessage(BaseModel):
    """A typed unit of work delivered through the message queue."""

    model_config = ConfigDict(frozen=True)

    type: MessageType
    source: MessageSource = MessageSource.APP
    data: Any = None

    @model_validator(mode="after")
    def check_payload(self) -> Self:
        """Raw page messages must carry the scraped page."""
        if self.type is MessageType.CREATE_RAW_LAMUDI_LISTING_DATA:
            if not isinstance(self.data, dict):
                raise ValueError("CREATE_RAW_LAMUDI_LISTING_DATA requires an object payload")
            if not self.data.get("listingUrl"):
                raise ValueError("CREATE_RAW_LAMUDI_LISTING_DATA requires listingUrl")
            if not isinstance(self.data.get("dataLayer"), dict):
                raise ValueError("CREATE_RAW_LAMUDI_LISTING_DATA requires a dataLayer object")
        return self


class RawRecord(BaseModel):
    """A scraped page awaiting reconciliation."""

    id: int
    json_data: dict[str, Any]
    listing_url: str | None = None
    is_processed: bool = False


class NormalizedListing(BaseModel):
    """A raw record mapped onto Property and Listing columns.

    Numeric fields the source does not provide default to 0 and feature
    blobs default to an empty object, so downstream readers never see null.
    """

    model_config = ConfigDict(frozen=True)

    raw_id: int

    # Listing
    title: str = Field(min_length=1)
    url: str = Field(min_length=1)
    description: str = ""
    address: str = "-"
    price: int = Field(ge=0, le=SQLITE_MAX_INTEGER)
    price_formatted: str | None = None
    offer_type: OfferType | None = None

    # Attribution
    agent_name: str
    product_owner_name: str
    project_name: str | None = None

    # Location natural keys
    region_key: str = Field(min_length=1)
    region_name: str = Field(min_length=1)
    city_key: str = Field(min_length=1)
    city_name: str = Field(min_length=1)
    area_key: str | None = None
    area_name: str | None = None

    # Property metrics
    property_type: PropertyType = PropertyType.OTHER
    rooms_total: SqliteInt = 0
    floor_size: float = 0
    lot_size: float = 0
    land_size: float = 0
    building_size: float = 0
    bedrooms: SqliteInt = 0
    bathrooms: SqliteInt = 0
    parking_spaces: SqliteInt = 0
    ceiling_height: float = 0
    year_built: SqliteInt = 0
    longitude: float | None = Field(default=None, ge=-180, le=180)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    primary_image_url: str | None = None

    # Schemaless blobs
    images: list[str] = Field(default_factory=list)
    amenities: JsonBlob = Field(default_factory=dict)
    indoor_features: JsonBlob = Field(default_factory=dict)
    outdoor_features: JsonBlob = Field(default_factory=dict)
    property_features: JsonBlob = Field(default_factory=dict)

    @field_validator(
        "amenities", "indoor_features", "outdoor_features", "property_features", mode="before"
    )
    @classmethod
    def default_empty_blob(cls, v: object) -> object:
        return {} if v is None else v

    @field_validator("area_key", "area_name", "project_name", mode="before")
    @classmethod
    def blank_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_area_pair(self) -> Self:
        """An area key without a name cannot create a dimension row."""
        if self.area_key and not self.area_name:
            raise ValueError("area_name is required when area_key is present")
        return self


class LocationIds(BaseModel):
    """Surrogate ids of the dimension rows a property references."""

    model_config = ConfigDict(frozen=True)

    region_id: int
    city_id: int
    area_id: int | None = None


class ExistingListing(BaseModel):
    """The stored listing a raw record was matched against."""

    model_config = ConfigDict(frozen=True)

    id: int
    property_id: int
    url: str
    title: str
    price: int | None = None


@dataclass(frozen=True)
class WriteResult:
    """Ids produced by the create path."""

    property_id: int
    listing_id: int


class RecordOutcome(StrEnum):
    """What reconciliation did with one raw record."""

    CREATED = "created"
    UPDATED = "updated"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class PipelineState(StrEnum):
    """Reconciliation batch lifecycle."""

    IDLE = "idle"
    BATCH_FETCHING = "batch_fetching"
    RECORD_PROCESSING = "record_processing"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class BatchResult:
    """Summary of one reconciliation batch."""

    batch_id: str
    state: PipelineState = PipelineState.IDLE
    raw_ids: list[int] = field(default_factory=list)
    outcomes: dict[int, RecordOutcome] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def count(self, outcome: RecordOutcome) -> int:
        """Number of records that ended with the given outcome."""
        return sum(1 for o in self.outcomes.values() if o is outcome)

    @property
    def created(self) -> int:
        return self.count(RecordOutcome.CREATED)

    @property
    def updated(self) -> int:
        return self.count(RecordOutcome.UPDATED)

    @property
    def rejected(self) -> int:
        return self.count(RecordOutcome.REJECTED)
