"""
Canonical product table (food_products).

This is the only write path for upstream-derived product data. Rows are
keyed by (source, source_id) with source_id equal to the barcode, and are
only ever inserted or updated, never deleted here.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..config import OFF_SOURCE
from .database import (
    db_json,
    db_placeholder,
    db_timestamp,
    fetch_all,
    fetch_one,
    is_postgres,
    load_json,
    utcnow,
)
from .normalizer import UNKNOWN_PRODUCT_NAME, CanonicalProductItem

MACRO_COLUMNS = {
    'kcal': 'kcal_100g',
    'protein_g': 'protein_100g',
    'fat_g': 'fat_100g',
    'carbs_g': 'carbs_100g',
    'sugar_g': 'sugar_100g',
    'fiber_g': 'fiber_100g',
    'salt_g': 'salt_100g',
}

UPSERT_COLUMNS = [
    'source', 'source_id', 'barcode', 'name_local', 'name_en', 'brand',
    'categories', 'image_url', 'nutriments_raw', *MACRO_COLUMNS.values(),
    'created_at', 'updated_at',
]

# Columns refreshed on conflict; created_at keeps its first value
UPDATE_COLUMNS = [col for col in UPSERT_COLUMNS if col not in ('source', 'source_id', 'created_at')]

SELECT_COLUMNS = ', '.join(['id', *UPSERT_COLUMNS])

MAX_LOCAL_SEARCH_LIMIT = 50


def item_to_row(item: CanonicalProductItem, source: str = OFF_SOURCE) -> Dict[str, Any]:
    """Map a normalized item onto food_products columns."""
    nutrition = item.nutrition_per_100g
    row = {
        'source': source,
        'source_id': item.barcode,
        'barcode': item.barcode,
        'name_local': item.name,
        'name_en': item.name_en or item.name,
        'brand': item.brand,
        'categories': list(item.categories),
        'image_url': item.image_url,
        'nutriments_raw': dict(item.nutriments_raw or {}),
    }
    for field_name, column in MACRO_COLUMNS.items():
        row[column] = getattr(nutrition, field_name)
    return row


def upsert_food_products(conn, items: Iterable[CanonicalProductItem],
                         source: str = OFF_SOURCE,
                         now: Optional[datetime] = None) -> int:
    """
    Insert or update canonical products in one batch.

    Idempotent: repeating the call with the same items changes nothing but
    updated_at. A failure raises for the whole batch.

    Returns:
        Number of rows written
    """
    rows = [item_to_row(item, source) for item in items if item.barcode]
    if not rows:
        return 0

    now = now or utcnow()
    ph = db_placeholder(conn)
    stamp = db_timestamp(conn, now)

    params = []
    for row in rows:
        values = []
        for col in UPSERT_COLUMNS:
            if col in ('created_at', 'updated_at'):
                values.append(stamp)
            elif col in ('categories', 'nutriments_raw'):
                values.append(db_json(conn, row[col]))
            else:
                values.append(row[col])
        params.append(values)

    updates = ', '.join(f'{col} = excluded.{col}' for col in UPDATE_COLUMNS)
    cursor = conn.cursor()
    try:
        cursor.executemany(
            f'''INSERT INTO food_products ({', '.join(UPSERT_COLUMNS)})
               VALUES ({', '.join([ph] * len(UPSERT_COLUMNS))})
               ON CONFLICT (source, source_id) DO UPDATE SET {updates}''',
            params
        )
    finally:
        cursor.close()
    return len(rows)


def _decode_record(row: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(row)
    record['categories'] = load_json(record.get('categories'), []) or []
    record['nutriments_raw'] = load_json(record.get('nutriments_raw'), {}) or {}
    if record.get('id') is not None:
        record['id'] = str(record['id'])
    for col in ('created_at', 'updated_at'):
        value = record.get(col)
        if isinstance(value, datetime):
            record[col] = value.isoformat()
    return record


def get_products_by_barcodes(conn, barcodes: List[str],
                             source: str = OFF_SOURCE) -> Dict[str, Dict[str, Any]]:
    """Look up canonical records by barcode. Returns barcode -> record."""
    barcodes = [b for b in dict.fromkeys(barcodes) if b]
    if not barcodes:
        return {}

    ph = db_placeholder(conn)
    if is_postgres(conn):
        rows = fetch_all(
            conn,
            f'SELECT {SELECT_COLUMNS} FROM food_products '
            f'WHERE source = %s AND source_id = ANY(%s)',
            (source, barcodes)
        )
    else:
        rows = fetch_all(
            conn,
            f'SELECT {SELECT_COLUMNS} FROM food_products '
            f'WHERE source = {ph} AND source_id IN ({", ".join([ph] * len(barcodes))})',
            (source, *barcodes)
        )
    return {row['source_id']: _decode_record(row) for row in rows}


def get_product_by_barcode(conn, barcode: str,
                           source: str = OFF_SOURCE) -> Optional[Dict[str, Any]]:
    ph = db_placeholder(conn)
    row = fetch_one(
        conn,
        f'SELECT {SELECT_COLUMNS} FROM food_products WHERE source = {ph} AND source_id = {ph}',
        (source, barcode)
    )
    return _decode_record(row) if row else None


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def search_local_products(conn, query: str, limit: int = 12) -> List[Dict[str, Any]]:
    """Case-insensitive substring search over names and brand, newest first."""
    limit = max(1, min(MAX_LOCAL_SEARCH_LIMIT, int(limit)))
    pattern = f'%{_escape_like(query.strip().lower())}%'
    ph = db_placeholder(conn)
    rows = fetch_all(
        conn,
        f'''SELECT {SELECT_COLUMNS} FROM food_products
           WHERE LOWER(name_local) LIKE {ph} ESCAPE '\\'
              OR LOWER(name_en) LIKE {ph} ESCAPE '\\'
              OR LOWER(brand) LIKE {ph} ESCAPE '\\'
           ORDER BY updated_at DESC
           LIMIT {ph}''',
        (pattern, pattern, pattern, limit)
    )
    return [_decode_record(row) for row in rows]


def record_to_item(record: Dict[str, Any]) -> CanonicalProductItem:
    """Rebuild a canonical item from a stored record."""
    return CanonicalProductItem.from_dict({
        'barcode': record.get('barcode') or record.get('source_id'),
        'name': record.get('name_local') or record.get('name_en'),
        'name_en': record.get('name_en'),
        'brand': record.get('brand'),
        'image_url': record.get('image_url'),
        'categories': record.get('categories') or [],
        'nutrition_per_100g': {
            field_name: record.get(column) for field_name, column in MACRO_COLUMNS.items()
        },
        'nutriments_raw': record.get('nutriments_raw') or {},
    })


def record_to_result(record: Dict[str, Any]) -> Dict[str, Any]:
    """Flat search-result shape for local catalog listings."""
    result = {
        'id': record.get('id'),
        'product_id': record.get('id'),
        'source': record.get('source'),
        'source_id': record.get('source_id'),
        'barcode': record.get('barcode'),
        'name': record.get('name_local') or record.get('name_en') or UNKNOWN_PRODUCT_NAME,
        'brand': record.get('brand'),
        'categories': record.get('categories') or [],
        'image_url': record.get('image_url'),
    }
    for column in MACRO_COLUMNS.values():
        result[column] = record.get(column)
    return result
