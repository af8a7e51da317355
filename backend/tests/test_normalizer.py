"""
Tests for upstream payload normalization.
These are pure functions with no database dependencies.
"""
import math
import pytest

from conftest import make_off_product, make_search_payload


class TestFieldParsing:
    """Permissive field parsers."""

    def test_as_number_accepts_numbers_and_numeric_strings(self):
        """Numbers and numeric strings parse; comma decimals are accepted."""
        from foodsync.services.normalizer import as_number

        assert as_number(3) == 3.0
        assert as_number(2.5) == 2.5
        assert as_number("4.7") == 4.7
        assert as_number(" 1,5 ") == 1.5
        assert as_number("0") == 0.0

    def test_as_number_rejects_unusable_values(self):
        """Non-finite, negative, boolean and garbage values become None."""
        from foodsync.services.normalizer import as_number

        assert as_number(None) is None
        assert as_number("") is None
        assert as_number("abc") is None
        assert as_number(float("nan")) is None
        assert as_number(float("inf")) is None
        assert as_number("Infinity") is None
        assert as_number("NaN") is None
        assert as_number(-1) is None
        assert as_number(True) is None
        assert as_number({"value": 1}) is None
        assert as_number([1]) is None

    def test_as_string_trims_and_drops_empty(self):
        from foodsync.services.normalizer import as_string

        assert as_string("  Mleko ") == "Mleko"
        assert as_string("   ") is None
        assert as_string(None) is None
        assert as_string(123) is None

    def test_split_tags_from_string(self):
        """Comma-delimited strings are split and trimmed."""
        from foodsync.services.normalizer import split_tags

        assert split_tags("en:milk, en:dairies ,, ") == ["en:milk", "en:dairies"]

    def test_split_tags_from_list(self):
        """Lists keep non-empty entries, stringified and trimmed."""
        from foodsync.services.normalizer import split_tags

        assert split_tags(["en:milk", " ", None, "en:dairies ", 7]) == ["en:milk", "en:dairies", "7"]

    def test_split_tags_empty_inputs(self):
        from foodsync.services.normalizer import split_tags

        assert split_tags(None) == []
        assert split_tags("") == []
        assert split_tags([]) == []
        assert split_tags({"a": 1}) == []


class TestNameResolution:
    """Ordered fallback for product names."""

    def test_name_keys_order(self):
        """Locale-specific name comes first, then English, then generic."""
        from foodsync.services.normalizer import name_keys

        assert name_keys("pl") == ["product_name_pl", "product_name_en", "product_name", "generic_name"]

    def test_name_keys_english_locale_not_duplicated(self):
        from foodsync.services.normalizer import name_keys

        assert name_keys("en") == ["product_name_en", "product_name", "generic_name"]

    def test_locale_name_preferred(self):
        from foodsync.services.normalizer import resolve_name

        product = {"product_name_pl": "Mleko", "product_name_en": "Milk", "product_name": "Lait"}
        assert resolve_name(product, "pl") == "Mleko"

    def test_english_name_fallback(self):
        from foodsync.services.normalizer import resolve_name

        product = {"product_name_pl": "  ", "product_name_en": "Milk", "product_name": "Lait"}
        assert resolve_name(product, "pl") == "Milk"

    def test_generic_name_fallback(self):
        from foodsync.services.normalizer import resolve_name

        assert resolve_name({"product_name": "Lait"}, "pl") == "Lait"

    def test_placeholder_when_no_name(self):
        from foodsync.services.normalizer import resolve_name, UNKNOWN_PRODUCT_NAME

        assert resolve_name({}, "pl") == UNKNOWN_PRODUCT_NAME
        assert UNKNOWN_PRODUCT_NAME == "Unknown product"


class TestNutrition:
    """Per-100g macro parsing."""

    def test_parse_full_nutriments(self):
        from foodsync.services.normalizer import parse_nutrition

        nutrition = parse_nutrition(make_off_product()['nutriments'])

        assert nutrition.kcal == 50
        assert nutrition.protein_g == 3.2
        assert nutrition.fat_g == 2.0
        assert nutrition.carbs_g == 4.7
        assert nutrition.sugar_g == 4.7
        assert nutrition.fiber_g == 0
        assert nutrition.salt_g == 0.1

    def test_kcal_underscore_fallback(self):
        """energy_kcal_100g is used when energy-kcal_100g is absent or unusable."""
        from foodsync.services.normalizer import parse_nutrition

        assert parse_nutrition({"energy_kcal_100g": "120"}).kcal == 120
        assert parse_nutrition({"energy-kcal_100g": "n/a", "energy_kcal_100g": 80}).kcal == 80

    def test_missing_values_are_unknown_not_zero(self):
        from foodsync.services.normalizer import parse_nutrition

        nutrition = parse_nutrition({"proteins_100g": "7"})

        assert nutrition.protein_g == 7
        assert nutrition.kcal is None
        assert nutrition.fat_g is None
        assert nutrition.salt_g is None

    def test_non_dict_nutriments(self):
        from foodsync.services.normalizer import parse_nutrition

        nutrition = parse_nutrition("garbage")
        assert all(value is None for value in vars(nutrition).values())


class TestNormalizeSearchResults:
    """normalize_search_results never raises and drops products without a code."""

    @pytest.mark.parametrize("payload", [
        None, {}, [], "text", 42,
        {"products": None},
        {"products": "nope"},
        {"products": {}},
        {"products": [None, 1, "x", []]},
    ])
    def test_malformed_payloads_give_empty_list(self, payload):
        from foodsync.services.normalizer import normalize_search_results

        assert normalize_search_results(payload, "pl") == []

    def test_products_without_code_are_dropped(self):
        from foodsync.services.normalizer import normalize_search_results

        payload = make_search_payload([
            make_off_product(code="111"),
            {"product_name": "No code"},
            make_off_product(code="  "),
            make_off_product(code="222"),
        ])

        items = normalize_search_results(payload, "pl")

        assert [item.barcode for item in items] == ["111", "222"]

    def test_numeric_code_is_stringified(self):
        from foodsync.services.normalizer import normalize_search_results

        items = normalize_search_results({"products": [{"code": 5901234123457}]}, "pl")
        assert items[0].barcode == "5901234123457"

    def test_full_item_mapping(self):
        from foodsync.services.normalizer import normalize_search_results

        product = make_off_product(code="5900000000001", product_name_pl="Mleko UHT",
                                   product_name_en="UHT milk")
        item = normalize_search_results(make_search_payload([product]), "pl")[0]

        assert item.name == "Mleko UHT"
        assert item.name_en == "UHT milk"
        assert item.brand == "Mlekovita"
        assert item.quantity == "1 l"
        assert item.nutriscore == "b"
        assert item.nova == 1
        assert item.image_url == "https://images.example/5900000000001.jpg"
        assert item.categories == ["en:dairies", "en:milks"]
        assert item.allergens == ["en:milk"]
        assert item.nutriments_raw == product["nutriments"]

    def test_categories_from_plain_string(self):
        """Plain categories string is used when categories_tags is missing."""
        from foodsync.services.normalizer import normalize_search_results

        product = make_off_product(categories_tags=None, categories="Dairies, Milks")
        item = normalize_search_results({"products": [product]}, "pl")[0]

        assert item.categories == ["Dairies", "Milks"]

    def test_image_fallback_order(self):
        from foodsync.services.normalizer import normalize_search_results

        product = make_off_product(image_front_small_url=None,
                                   image_small_url="https://images.example/small.jpg")
        item = normalize_search_results({"products": [product]}, "pl")[0]

        assert item.image_url == "https://images.example/small.jpg"

    @pytest.mark.parametrize("nutriments", [
        None,
        {},
        {"energy-kcal_100g": None, "proteins_100g": "abc"},
        {"energy-kcal_100g": "NaN", "fat_100g": "-Infinity", "salt_100g": -0.5},
        {"energy-kcal_100g": "1e400", "sugars_100g": [1, 2], "fiber_100g": {"x": 1}},
        {"energy-kcal_100g": "250", "proteins_100g": 12, "carbohydrates_100g": "3,5"},
        {"energy-kcal_100g": True, "fat_100g": False},
    ])
    def test_macros_are_none_or_finite_non_negative(self, nutriments):
        """Every macro field is None or a finite number >= 0 whatever upstream sends."""
        from foodsync.services.normalizer import normalize_search_results

        product = make_off_product(nutriments=nutriments)
        item = normalize_search_results({"products": [product]}, "pl")[0]

        for value in vars(item.nutrition_per_100g).values():
            assert value is None or (math.isfinite(value) and value >= 0)


class TestNormalizeSingleProduct:
    """normalize_single_product returns None when upstream has no product."""

    @pytest.mark.parametrize("payload", [
        None, {}, {"status": 0, "status_verbose": "product not found"},
        {"product": None}, {"product": "x"}, {"product": {}},
    ])
    def test_absent_product_gives_none(self, payload):
        from foodsync.services.normalizer import normalize_single_product

        assert normalize_single_product(payload, "123456", "pl") is None

    def test_single_product_uses_requested_barcode_and_large_image(self):
        from foodsync.services.normalizer import normalize_single_product

        product = make_off_product(code="999", image_front_url="https://images.example/front.jpg")
        item = normalize_single_product({"product": product, "status": 1}, "5900000000001", "pl")

        assert item.barcode == "5900000000001"
        assert item.image_url == "https://images.example/front.jpg"
        assert item.name == "Mleko 2%"

    def test_labels_and_serving_size(self):
        from foodsync.services.normalizer import normalize_single_product

        product = make_off_product(labels_tags=['en:organic', 'en:no-gluten'], serving_size=' 250 ml ')
        item = normalize_single_product({'product': product}, '5900000000001', 'pl')

        assert item.labels == ['en:organic', 'en:no-gluten']
        assert item.serving_size == '250 ml'
        assert item.to_dict()['labels'] == ['en:organic', 'en:no-gluten']
        assert item.to_dict()['serving_size'] == '250 ml'

    def test_labels_from_plain_string(self):
        from foodsync.services.normalizer import normalize_single_product

        item = normalize_single_product({'product': make_off_product(labels='Organic, Vegan')},
                                        '5900000000001', 'pl')

        assert item.labels == ['Organic', 'Vegan']
        assert item.serving_size is None

    def test_search_items_carry_no_labels(self):
        """Search results are not asked for labels or serving size."""
        from foodsync.services.normalizer import normalize_search_results

        product = make_off_product(labels_tags=['en:organic'], serving_size='250 ml')
        item = normalize_search_results({'products': [product]}, 'pl')[0]

        assert item.labels == []
        assert item.serving_size is None

    def test_item_dict_round_trip(self):
        """from_dict(to_dict()) rebuilds an equal item (used for cached payloads)."""
        from foodsync.services.normalizer import CanonicalProductItem, normalize_single_product

        product = make_off_product(labels_tags=['en:organic'], serving_size='250 ml')
        item = normalize_single_product({"product": product}, "5900000000001", "pl")
        assert CanonicalProductItem.from_dict(item.to_dict()) == item
