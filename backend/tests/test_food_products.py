"""
Tests for the canonical food_products table.
"""
from datetime import timedelta

from conftest import FIXED_NOW, make_off_product, make_search_payload


def _items(*products):
    from foodsync.services.normalizer import normalize_search_results
    return normalize_search_results(make_search_payload(list(products)), 'pl')


class TestItemToRow:
    """Mapping normalized items onto table columns."""

    def test_row_columns(self):
        from foodsync.services.food_products import item_to_row

        item = _items(make_off_product(product_name_pl='Mleko', product_name_en='Milk'))[0]
        row = item_to_row(item)

        assert row['source'] == 'openfoodfacts'
        assert row['source_id'] == '5900000000001'
        assert row['barcode'] == '5900000000001'
        assert row['name_local'] == 'Mleko'
        assert row['name_en'] == 'Milk'
        assert row['kcal_100g'] == 50
        assert row['protein_100g'] == 3.2
        assert row['salt_100g'] == 0.1

    def test_name_en_falls_back_to_name(self):
        from foodsync.services.food_products import item_to_row

        row = item_to_row(_items(make_off_product(name='Chleb'))[0])
        assert row['name_en'] == 'Chleb'


class TestUpsertFoodProducts:
    """upsert_food_products keyed by (source, source_id)."""

    def test_inserts_rows(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products, get_product_by_barcode

        written = upsert_food_products(
            sqlite_conn,
            _items(make_off_product(code='111', name='Mleko'), make_off_product(code='222', name='Ser')),
            now=FIXED_NOW,
        )

        assert written == 2
        record = get_product_by_barcode(sqlite_conn, '222')
        assert record['name_local'] == 'Ser'
        assert record['categories'] == ['en:dairies', 'en:milks']
        assert record['nutriments_raw']['energy-kcal_100g'] == 50

    def test_empty_batch(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products

        assert upsert_food_products(sqlite_conn, []) == 0

    def test_idempotent_only_updated_at_changes(self, sqlite_conn):
        """Upserting the same item twice leaves one row; only updated_at moves."""
        from foodsync.services.food_products import upsert_food_products, get_product_by_barcode

        items = _items(make_off_product(code='111'))
        upsert_food_products(sqlite_conn, items, now=FIXED_NOW)
        first = get_product_by_barcode(sqlite_conn, '111')

        later = FIXED_NOW + timedelta(hours=1)
        upsert_food_products(sqlite_conn, items, now=later)
        second = get_product_by_barcode(sqlite_conn, '111')

        count = sqlite_conn.execute('SELECT COUNT(*) FROM food_products').fetchone()[0]
        assert count == 1
        assert second['updated_at'] == later.isoformat()
        assert second['created_at'] == first['created_at']
        for key in first:
            if key != 'updated_at':
                assert first[key] == second[key], key

    def test_update_overwrites_fields(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products, get_product_by_barcode

        upsert_food_products(sqlite_conn, _items(make_off_product(code='111', name='Old')), now=FIXED_NOW)
        upsert_food_products(sqlite_conn, _items(make_off_product(code='111', name='New')), now=FIXED_NOW)

        assert get_product_by_barcode(sqlite_conn, '111')['name_local'] == 'New'

    def test_same_barcode_other_source_is_separate_row(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products

        items = _items(make_off_product(code='111'))
        upsert_food_products(sqlite_conn, items, source='openfoodfacts', now=FIXED_NOW)
        upsert_food_products(sqlite_conn, items, source='manual', now=FIXED_NOW)

        count = sqlite_conn.execute('SELECT COUNT(*) FROM food_products').fetchone()[0]
        assert count == 2


class TestLookups:
    """Reads by barcode and local search."""

    def test_get_products_by_barcodes(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products, get_products_by_barcodes

        upsert_food_products(sqlite_conn, _items(make_off_product(code='111'), make_off_product(code='222')),
                             now=FIXED_NOW)

        found = get_products_by_barcodes(sqlite_conn, ['111', '333', '111', ''])

        assert list(found) == ['111']
        assert get_products_by_barcodes(sqlite_conn, []) == {}

    def test_missing_barcode(self, sqlite_conn):
        from foodsync.services.food_products import get_product_by_barcode

        assert get_product_by_barcode(sqlite_conn, '404') is None

    def test_search_local_products(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products, search_local_products

        upsert_food_products(sqlite_conn, _items(make_off_product(code='111', name='Mleko UHT')),
                             now=FIXED_NOW)
        upsert_food_products(sqlite_conn, _items(make_off_product(code='222', name='Mleko zsiadłe')),
                             now=FIXED_NOW + timedelta(minutes=1))
        upsert_food_products(sqlite_conn, _items(make_off_product(code='333', name='Chleb', brands='Oskroba')),
                             now=FIXED_NOW)

        results = search_local_products(sqlite_conn, 'MLEKO')

        assert [r['barcode'] for r in results] == ['222', '111']
        assert [r['barcode'] for r in search_local_products(sqlite_conn, 'oskr')] == ['333']
        assert len(search_local_products(sqlite_conn, 'mleko', limit=1)) == 1

    def test_search_escapes_wildcards(self, sqlite_conn):
        from foodsync.services.food_products import upsert_food_products, search_local_products

        upsert_food_products(sqlite_conn, _items(make_off_product(code='111', name='Mleko 2%')),
                             now=FIXED_NOW)
        upsert_food_products(sqlite_conn, _items(make_off_product(code='222', name='Mleko 20')),
                             now=FIXED_NOW)

        assert [r['barcode'] for r in search_local_products(sqlite_conn, '2%')] == ['111']

    def test_record_to_result_and_item(self, sqlite_conn):
        from foodsync.services.food_products import (
            upsert_food_products, get_product_by_barcode, record_to_item, record_to_result,
        )

        upsert_food_products(sqlite_conn, _items(make_off_product(code='111', name='Mleko')), now=FIXED_NOW)
        record = get_product_by_barcode(sqlite_conn, '111')

        result = record_to_result(record)
        assert result['id'] == record['id']
        assert result['source'] == 'openfoodfacts'
        assert result['name'] == 'Mleko'
        assert result['kcal_100g'] == 50

        item = record_to_item(record)
        assert item.barcode == '111'
        assert item.name == 'Mleko'
        assert item.nutrition_per_100g.protein_g == 3.2
