"""
Open Food Facts API client.

Issues single GET requests against the search and product endpoints.
Callers decide about retries; this client never retries on its own.

API Docs: https://openfoodfacts.github.io/openfoodfacts-server/api/
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..config import MAX_PAGE_SIZE, OFF_BASE_URL, OFF_TIMEOUT_SECONDS, OFF_USER_AGENT
from ..errors import UpstreamUnavailable
from ..logger import get_logger

logger = get_logger(__name__)

# Fields read by the normalizer; the locale-specific name is appended per request
SEARCH_FIELDS = [
    'code', 'product_name', 'product_name_en', 'generic_name', 'brands',
    'quantity', 'nutriscore_grade', 'nova_group', 'image_front_small_url',
    'image_small_url', 'image_front_url', 'image_url', 'allergens_tags',
    'allergens', 'categories_tags', 'categories', 'nutriments',
]

PRODUCT_FIELDS = [
    'code', 'product_name', 'product_name_en', 'generic_name', 'brands',
    'quantity', 'nutriscore_grade', 'nova_group', 'image_front_url',
    'image_url', 'image_front_small_url', 'image_small_url', 'allergens_tags',
    'allergens', 'categories_tags', 'categories', 'labels_tags', 'labels',
    'serving_size', 'nutriments',
]


def build_fields(base_fields: List[str], locale: str) -> str:
    """Comma-separated field list including product_name_<locale>."""
    fields = list(base_fields)
    localized = f'product_name_{locale}'
    if localized not in fields:
        fields.insert(1, localized)
    return ','.join(fields)


def clamp_page(page: Any) -> int:
    try:
        return max(1, int(page))
    except (TypeError, ValueError):
        return 1


def clamp_page_size(page_size: Any) -> int:
    try:
        return max(1, min(MAX_PAGE_SIZE, int(page_size)))
    except (TypeError, ValueError):
        return MAX_PAGE_SIZE


class OffClient:
    """
    Client for the Open Food Facts API.

    Every request carries the configured User-Agent, which the OFF usage
    policy requires to identify the application and a contact.
    """

    def __init__(
        self,
        base_url: str = OFF_BASE_URL,
        user_agent: str = OFF_USER_AGENT,
        timeout: int = OFF_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.user_agent = user_agent
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': self.user_agent,
            'Accept': 'application/json',
        })

    def search(
        self,
        query: str,
        locale: str,
        page: int = 1,
        page_size: int = 12,
        country: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Full-text search.

        Args:
            query: Search terms (may be empty when filtering by country)
            locale: Language code, also selects product_name_<locale>
            page: 1-based page number
            page_size: Results per page, clamped to 1..100
            country: Optional countries tag filter (e.g. "Poland")

        Returns:
            Raw decoded JSON payload
        """
        params = {
            'search_terms': query,
            'search_simple': '1',
            'action': 'process',
            'json': '1',
            'page_size': str(clamp_page_size(page_size)),
            'page': str(clamp_page(page)),
            'fields': build_fields(SEARCH_FIELDS, locale),
            'lc': locale,
        }
        if country:
            params.update({
                'tagtype_0': 'countries',
                'tag_contains_0': 'contains',
                'tag_0': country,
            })
        return self._get_json(f'{self.base_url}/cgi/search.pl', params, 'search')

    def fetch_by_barcode(self, barcode: str, locale: str) -> Dict[str, Any]:
        """Single product lookup. Returns the raw decoded JSON payload."""
        url = f'{self.base_url}/api/v2/product/{quote(barcode, safe="")}'
        params = {
            'fields': build_fields(PRODUCT_FIELDS, locale),
            'lc': locale,
        }
        return self._get_json(url, params, 'product')

    def _get_json(self, url: str, params: Dict[str, str], operation: str) -> Dict[str, Any]:
        logger.debug("OFF %s: GET %s page=%s", operation, url, params.get('page'))
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamUnavailable(f'OFF {operation} request failed: {e}') from e

        if not 200 <= response.status_code < 300:
            raise UpstreamUnavailable(
                f'OFF {operation} failed: {response.status_code}',
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable(
                f'OFF {operation} returned invalid JSON',
                status_code=response.status_code,
            ) from e

    def close(self) -> None:
        self.session.close()


_shared_client: Optional[OffClient] = None


def get_off_client() -> OffClient:
    """Dependency for FastAPI routes; one client (and session) per process."""
    global _shared_client
    if _shared_client is None:
        _shared_client = OffClient()
    return _shared_client
