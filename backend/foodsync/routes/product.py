"""
Open Food Facts product route.

Barcode lookups served from the 30-day product cache when fresh.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ..config import PRODUCT_RATE_LIMIT_PER_MINUTE
from ..errors import FoodSyncError
from ..services.database import get_db
from ..services.lookup import lookup_product
from ..services.off_client import OffClient, get_off_client
from ..services.rate_limiter import RateLimiter, get_rate_limiter
from .common import enforce_rate_limit, error_response


router = APIRouter(prefix="/api/off", tags=["off"])


class ProductResponse(BaseModel):
    """Normalized product plus the matching food_products row, if any."""
    source: str
    barcode: str
    lc: str
    product: Any
    local: Optional[Dict[str, Any]] = None


@router.get("/product/{barcode}", response_model=ProductResponse)
def get_product(
    barcode: str,
    request: Request,
    lc: Optional[str] = Query(None, description="Language code (default pl)"),
    conn=Depends(get_db),
    client: OffClient = Depends(get_off_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Look up a single product by barcode.

    Returns:
        {source, barcode, lc, product, local}; 404 when upstream has no such
        product, 429 when rate limited, 502 when upstream is unavailable
    """
    try:
        enforce_rate_limit(limiter, "off:product", request, PRODUCT_RATE_LIMIT_PER_MINUTE,
                           "Too many requests. Please retry shortly.")
        return lookup_product(conn, client, barcode, lc)
    except FoodSyncError as e:
        if e.status_code == 502:
            e.message = "OpenFoodFacts product fetch failed. Please try again later."
        return error_response(e)
