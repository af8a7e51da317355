"""
Cached search and barcode lookup against Open Food Facts.

Flow for both operations: fresh cache hit returns immediately; on a miss
the upstream catalog is queried, the payload normalized, and the result
written to food_products and the cache. Those writes are best effort: a
failure is logged and rolled back and the fetched result is still returned.
"""

import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..config import (
    DEFAULT_LOCALE,
    MIN_QUERY_LENGTH,
    OFF_SOURCE,
    SEARCH_CACHE_PRECEDENCE,
    SEARCH_PAGE_SIZE,
)
from ..errors import ProductNotFound, UpstreamUnavailable, ValidationError
from ..logger import get_logger
from .cache_store import PRODUCT_CACHE, SEARCH_CACHE, make_search_key, normalize_query
from .database import utcnow
from .food_products import (
    get_product_by_barcode,
    get_products_by_barcodes,
    record_to_item,
    upsert_food_products,
)
from .normalizer import normalize_search_results, normalize_single_product

logger = get_logger(__name__)

LOCALE_PATTERN = re.compile(r'^[a-z]{2,3}$')
BARCODE_PATTERN = re.compile(r'^\d{4,24}$')

PRECEDENCE_LOCAL = 'local'
PRECEDENCE_CACHE = 'cache'

LOCALE_FIELDS = ('name', 'name_en')


def clean_locale(raw: Optional[str]) -> str:
    lc = (raw or DEFAULT_LOCALE).strip().lower() or DEFAULT_LOCALE
    if not LOCALE_PATTERN.match(lc):
        raise ValidationError('Locale must be a 2-3 letter language code.')
    return lc


def clean_query(raw: Optional[str]) -> str:
    query = normalize_query(raw or '')
    if len(query) < MIN_QUERY_LENGTH:
        raise ValidationError(f'Query must be at least {MIN_QUERY_LENGTH} characters.')
    return query


def clean_barcode(raw: Optional[str]) -> str:
    barcode = (raw or '').strip()
    if not barcode:
        raise ValidationError('Missing barcode.')
    if not BARCODE_PATTERN.match(barcode):
        raise ValidationError('Barcode must contain 4-24 digits.')
    return barcode


def best_effort(conn, description: str, func: Callable, *args, **kwargs) -> Any:
    """Run a side write; on failure log, roll back and return None."""
    try:
        result = func(conn, *args, **kwargs)
        conn.commit()
        return result
    except Exception as e:
        conn.rollback()
        logger.warning("%s failed: %s", description, e)
        return None


def _merge_local(cached: Dict[str, Any], record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Overlay non-empty fields of the local record onto a cached item.

    Names stay as cached: the row holds whichever locale wrote it last,
    while the cached item was resolved for the locale of its cache key.
    """
    merged = dict(cached)
    local = record_to_item(record).to_dict()
    for key, value in local.items():
        if key in LOCALE_FIELDS:
            continue
        if key == 'nutrition_per_100g':
            nutrition = dict(cached.get('nutrition_per_100g') or {})
            nutrition.update({k: v for k, v in value.items() if v is not None})
            merged[key] = nutrition
        elif value not in (None, [], {}):
            merged[key] = value
    return merged


def resolve_cached_search(conn, payload: Any,
                          precedence: str = SEARCH_CACHE_PRECEDENCE) -> Dict[str, Any]:
    """
    Build the results for a search cache hit.

    With "local" precedence the cached barcodes are looked up in
    food_products and locally enriched rows replace the cached items. If no
    barcode resolves (or precedence is "cache") the cached payload is
    returned verbatim.
    """
    cached_items = payload if isinstance(payload, list) else []
    if precedence != PRECEDENCE_LOCAL or not cached_items:
        return {'source': 'cache', 'results': payload}

    barcodes = [item.get('barcode') for item in cached_items if isinstance(item, dict)]
    try:
        local = get_products_by_barcodes(conn, barcodes)
    except Exception as e:
        conn.rollback()
        logger.warning("Local lookup for cached search failed: %s", e)
        local = {}

    if not local:
        return {'source': 'cache', 'results': payload}

    results = []
    for item in cached_items:
        if not isinstance(item, dict):
            continue
        record = local.get(item.get('barcode'))
        results.append(_merge_local(item, record) if record else item)
    return {'source': 'local', 'results': results}


def search_products(conn, client, raw_query: str, raw_locale: Optional[str] = None,
                    now: Optional[datetime] = None,
                    precedence: str = SEARCH_CACHE_PRECEDENCE) -> Dict[str, Any]:
    """
    Cached free-text search.

    Returns:
        {source, query, lc, results}

    Raises:
        ValidationError: query shorter than the minimum or bad locale
        UpstreamUnavailable: cache miss and the upstream call failed
    """
    query = clean_query(raw_query)
    lc = clean_locale(raw_locale)
    now = now or utcnow()
    cache_key = make_search_key(query, lc)

    try:
        cached = SEARCH_CACHE.get_fresh(conn, cache_key, now)
    except Exception as e:
        conn.rollback()
        logger.warning("Search cache read failed: %s", e)
        cached = None

    if cached is not None:
        resolved = resolve_cached_search(conn, cached.payload, precedence)
        return {'source': resolved['source'], 'query': query, 'lc': lc,
                'results': resolved['results']}

    try:
        raw_payload = client.search(query, lc, 1, SEARCH_PAGE_SIZE)
    except UpstreamUnavailable as e:
        logger.error("OFF search failed: query=%s lc=%s error=%s", query, lc, e)
        raise

    items = normalize_search_results(raw_payload, lc)
    results = [item.to_dict() for item in items]

    if items:
        best_effort(conn, "OFF search product upsert", upsert_food_products,
                    items, OFF_SOURCE, now=now)
    best_effort(conn, "OFF search cache write", SEARCH_CACHE.put,
                cache_key, results, now=now, lc=lc)

    return {'source': 'off', 'query': query, 'lc': lc, 'results': results}


def lookup_product(conn, client, raw_barcode: str, raw_locale: Optional[str] = None,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Cached single product lookup by barcode.

    Returns:
        {source, barcode, lc, product, local}

    Raises:
        ValidationError: malformed barcode or locale
        ProductNotFound: upstream has no such product
        UpstreamUnavailable: cache miss and the upstream call failed
    """
    barcode = clean_barcode(raw_barcode)
    lc = clean_locale(raw_locale)
    now = now or utcnow()

    try:
        cached = PRODUCT_CACHE.get_fresh(conn, barcode, now)
    except Exception as e:
        conn.rollback()
        logger.warning("Product cache read failed: %s", e)
        cached = None

    if cached is not None:
        return {'source': 'cache', 'barcode': barcode, 'lc': lc,
                'product': cached.payload, 'local': _local_record(conn, barcode)}

    try:
        raw_payload = client.fetch_by_barcode(barcode, lc)
    except UpstreamUnavailable as e:
        if e.upstream_status == 404:
            raise ProductNotFound('Product not found in OpenFoodFacts.') from e
        logger.error("OFF product fetch failed: barcode=%s lc=%s error=%s", barcode, lc, e)
        raise

    item = normalize_single_product(raw_payload, barcode, lc)
    if item is None:
        raise ProductNotFound('Product not found in OpenFoodFacts.')

    product = item.to_dict()
    best_effort(conn, "OFF product cache write", PRODUCT_CACHE.put, barcode, product, now=now)
    best_effort(conn, "OFF product upsert", upsert_food_products, [item], OFF_SOURCE, now=now)

    return {'source': 'off', 'barcode': barcode, 'lc': lc,
            'product': product, 'local': _local_record(conn, barcode)}


def _local_record(conn, barcode: str) -> Optional[Dict[str, Any]]:
    try:
        return get_product_by_barcode(conn, barcode)
    except Exception as e:
        conn.rollback()
        logger.warning("Local product read failed: barcode=%s error=%s", barcode, e)
        return None
