"""
Seed run routes.

An external scheduler POSTs to /api/off/seed repeatedly; every call does one
(term, page) unit of work and returns the cursor for the next call.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import SEED_DEFAULT_PAGE_SIZE, SEED_RATE_LIMIT_PER_MINUTE
from ..errors import FoodSyncError, SeedStepFailure
from ..services.database import get_db
from ..services.lookup import clean_locale
from ..services.off_client import OffClient, get_off_client
from ..services.rate_limiter import RateLimiter, get_rate_limiter
from ..services.seed_runner import (
    create_seed_run,
    list_seed_runs,
    load_seed_run,
    normalize_terms,
    run_seed_step,
)
from .common import enforce_rate_limit, error_response


router = APIRouter(prefix="/api/off/seed", tags=["seed"])


class SeedRequest(BaseModel):
    """Request body; omit runId to start a new run."""
    runId: Optional[str] = None
    locale: Optional[str] = None
    terms: Optional[Any] = None
    page: Optional[int] = None
    pageSize: Optional[int] = None


class SeedProgress(BaseModel):
    term: Optional[str] = None
    page: Optional[int] = None
    processed: int
    upserted: int
    errors: int


class SeedResponse(BaseModel):
    """State of the run after this call; next is null once done."""
    runId: str
    status: str
    progress: SeedProgress
    next: Optional[Dict[str, int]] = None


class SeedRunListResponse(BaseModel):
    runs: List[Dict[str, Any]]
    total: int


@router.post("", response_model=SeedResponse)
def seed_step(
    request: Request,
    body: Optional[SeedRequest] = None,
    conn=Depends(get_db),
    client: OffClient = Depends(get_off_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Start a seed run or advance an existing one by one unit of work.

    Returns:
        {runId, status, progress, next}; 404 for an unknown runId, 429 when
        rate limited, 502 with the runId when the unit of work failed (retry
        with the same runId)
    """
    body = body or SeedRequest()
    try:
        enforce_rate_limit(limiter, "off:seed", request, SEED_RATE_LIMIT_PER_MINUTE,
                           "Too many seed requests. Try again shortly.")
        run_id = body.runId
        if not run_id:
            run = create_seed_run(conn, clean_locale(body.locale), normalize_terms(body.terms),
                                  page=max(1, body.page or 1))
            run_id = run.id

        return run_seed_step(conn, client, run_id, body.pageSize or SEED_DEFAULT_PAGE_SIZE)
    except SeedStepFailure as e:
        return error_response(e, runId=e.run_id)
    except FoodSyncError as e:
        return error_response(e)


@router.get("", response_model=SeedRunListResponse)
def list_runs(
    limit: int = Query(20, ge=1, le=100, description="Number of runs to return"),
    conn=Depends(get_db),
):
    """List recent seed runs, newest first."""
    runs = [run.to_dict() for run in list_seed_runs(conn, limit)]
    return SeedRunListResponse(runs=runs, total=len(runs))


@router.get("/{run_id}")
def get_run(run_id: str, conn=Depends(get_db)):
    """
    Get the full state of a seed run, including its recent log.

    Raises:
        404 if the run does not exist
    """
    run = load_seed_run(conn, run_id)
    if run is None:
        return JSONResponse(status_code=404, content={"error": f"Seed run {run_id} not found"})
    return run.to_dict()
