"""
Exception types raised by foodsync services.

Routes translate these into JSON error responses with the matching status code.
"""

from typing import Optional


class FoodSyncError(Exception):
    """Base class for all foodsync errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FoodSyncError):
    """Bad caller input (query too short, malformed barcode or locale)."""
    status_code = 400


class RateLimited(FoodSyncError):
    """Caller exceeded the fixed-window request budget."""
    status_code = 429

    def __init__(self, message: str, retry_after_ms: int):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class UpstreamUnavailable(FoodSyncError):
    """Non-2xx status, network failure or undecodable body from the upstream catalog."""
    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = status_code


class ProductNotFound(FoodSyncError):
    status_code = 404


class SeedRunNotFound(FoodSyncError):
    status_code = 404


class SeedStepFailure(FoodSyncError):
    """One unit of seeding work failed; the run cursor was not advanced."""
    status_code = 502

    def __init__(self, message: str, run_id: str):
        super().__init__(message)
        self.run_id = run_id
