"""
Open Food Facts search route.

Free-text search served from the 7-day search cache when fresh, otherwise
fetched upstream and written back to the cache and food_products.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ..config import SEARCH_RATE_LIMIT_PER_MINUTE
from ..errors import FoodSyncError
from ..services.database import get_db
from ..services.lookup import search_products
from ..services.off_client import OffClient, get_off_client
from ..services.rate_limiter import RateLimiter, get_rate_limiter
from .common import enforce_rate_limit, error_response


router = APIRouter(prefix="/api/off", tags=["off"])


class SearchResponse(BaseModel):
    """Search results and where they came from (cache, off or local)."""
    source: str
    query: str
    lc: str
    results: List[Any]


@router.get("/search", response_model=SearchResponse)
def search(
    request: Request,
    q: str = Query("", description="Free-text query, at least 3 characters"),
    lc: Optional[str] = Query(None, description="Language code (default pl)"),
    conn=Depends(get_db),
    client: OffClient = Depends(get_off_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Search the upstream catalog through the cache.

    Returns:
        {source, query, lc, results}; 400 on a short query, 429 when rate
        limited, 502 when the upstream catalog is unavailable
    """
    try:
        enforce_rate_limit(limiter, "off:search", request, SEARCH_RATE_LIMIT_PER_MINUTE,
                           "Too many requests. Please retry shortly.")
        return search_products(conn, client, q, lc)
    except FoodSyncError as e:
        if e.status_code == 502:
            e.message = "OpenFoodFacts search is temporarily unavailable. Try again in a moment."
        return error_response(e)
