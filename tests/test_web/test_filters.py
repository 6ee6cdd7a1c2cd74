"""Tests for PropertyFilter validation and query param parsing."""

from listing_hub.models import OfferType, PropertyType
from listing_hub.web.filters import PropertyFilter, parse_filters


class TestPropertyFilterValidation:
    """Validator tests: coercion, clamping, enum validation, graceful None."""

    def test_default_all_none(self) -> None:
        f = PropertyFilter()
        assert f.min_price is None
        assert f.max_price is None
        assert f.bedrooms is None
        assert f.property_type is None
        assert f.offer_type is None
        assert f.search is None
        assert f.sort == "newest"

    def test_str_to_int_coercion_prices(self) -> None:
        f = PropertyFilter(min_price="1500000", max_price="2500000")
        assert f.min_price == 1500000
        assert f.max_price == 2500000

    def test_invalid_price_becomes_none(self) -> None:
        f = PropertyFilter(min_price="abc", max_price="")
        assert f.min_price is None
        assert f.max_price is None

    def test_negative_ids_become_none(self) -> None:
        f = PropertyFilter(city_id="-3", region_id="7")
        assert f.city_id is None
        assert f.region_id == 7

    def test_values_beyond_sqlite_integer_become_none(self) -> None:
        f = PropertyFilter(min_price="99999999999999999999", city_id="9223372036854775808")
        assert f.min_price is None
        assert f.city_id is None
        assert PropertyFilter(max_price="9223372036854775807").max_price == 9223372036854775807

    def test_rooms_clamped(self) -> None:
        assert PropertyFilter(bedrooms="-1").bedrooms == 0
        assert PropertyFilter(bedrooms="10").bedrooms == 10
        assert PropertyFilter(bathrooms="99").bathrooms == 10

    def test_rooms_invalid_becomes_none(self) -> None:
        assert PropertyFilter(bedrooms="abc").bedrooms is None
        assert PropertyFilter(bathrooms=True).bathrooms is None

    def test_property_type_by_name_or_id(self) -> None:
        assert PropertyFilter(property_type="Condominium").property_type is PropertyType.CONDOMINIUM
        assert PropertyFilter(property_type=" warehouse ").property_type is PropertyType.WAREHOUSE
        assert PropertyFilter(property_type="2").property_type is PropertyType.HOUSE

    def test_unknown_property_type_becomes_none(self) -> None:
        assert PropertyFilter(property_type="castle").property_type is None
        assert PropertyFilter(property_type="42").property_type is None

    def test_offer_type(self) -> None:
        assert PropertyFilter(offer_type="Rent").offer_type is OfferType.RENT
        assert PropertyFilter(offer_type="buy").offer_type is OfferType.BUY
        assert PropertyFilter(offer_type="lease").offer_type is None

    def test_search_trimmed_and_truncated(self) -> None:
        assert PropertyFilter(search="  condo  ").search == "condo"
        assert PropertyFilter(search="   ").search is None
        assert PropertyFilter(search="x" * 150).search == "x" * 100

    def test_sort_normalized(self) -> None:
        assert PropertyFilter(sort="PRICE_ASC").sort == "price_asc"
        assert PropertyFilter(sort="random").sort == "newest"
        assert PropertyFilter(sort="").sort == "newest"


class TestParseFilters:
    def test_all_params(self) -> None:
        f = parse_filters(
            min_price="100",
            max_price="900",
            bedrooms="2",
            property_type="house",
            offer_type="rent",
            city_id="4",
            search="garden",
            sort="price_desc",
        )
        assert f.min_price == 100
        assert f.max_price == 900
        assert f.bedrooms == 2
        assert f.property_type is PropertyType.HOUSE
        assert f.offer_type is OfferType.RENT
        assert f.city_id == 4
        assert f.search == "garden"
        assert f.sort == "price_desc"

    def test_no_params(self) -> None:
        assert parse_filters() == PropertyFilter()
