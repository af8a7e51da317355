"""
Helpers shared by the route modules.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from ..config import RATE_LIMIT_WINDOW_MS
from ..errors import FoodSyncError, RateLimited
from ..services.rate_limiter import RateLimiter, rate_key


def client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(limiter: RateLimiter, operation: str, request: Request,
                       limit: int, message: str) -> None:
    """Raise RateLimited when the caller's window is used up."""
    result = limiter.check(rate_key(operation, client_identity(request)), limit,
                           RATE_LIMIT_WINDOW_MS)
    if not result.allowed:
        raise RateLimited(message, retry_after_ms=result.retry_after_ms(limiter.clock()))


def error_response(error: FoodSyncError, **extra) -> JSONResponse:
    """JSON body {"error": ...} with the error's status code."""
    body = {"error": error.message}
    if isinstance(error, RateLimited):
        body["retry_after_ms"] = error.retry_after_ms
    body.update(extra)
    return JSONResponse(status_code=error.status_code, content=body)
