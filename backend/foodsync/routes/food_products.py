"""
Local catalog search over food_products. Never contacts the upstream catalog.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..services.database import get_db
from ..services.food_products import record_to_result, search_local_products


router = APIRouter(prefix="/api/food-products", tags=["food-products"])


class LocalSearchResponse(BaseModel):
    source: str = "local"
    query: str
    results: List[Dict[str, Any]]


@router.get("/search", response_model=LocalSearchResponse)
def search_local(
    q: str = Query("", description="Name or brand fragment"),
    limit: int = Query(12, ge=1, le=50, description="Maximum results"),
    conn=Depends(get_db),
):
    """Search canonical products by name or brand. Queries under 2 characters return nothing."""
    query = q.strip()
    if len(query) < 2:
        return LocalSearchResponse(query=query, results=[])

    records = search_local_products(conn, query, limit)
    return LocalSearchResponse(query=query, results=[record_to_result(r) for r in records])
