"""
Configuration for foodsync.

Loads settings from the environment (and backend/.env when present).
"""

import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv


# Load .env from backend directory
_backend_dir = Path(__file__).parent.parent
_env_path = _backend_dir / ".env"
load_dotenv(_env_path)


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


# --- Upstream catalog ---
DEFAULT_OFF_BASE_URL = "https://world.openfoodfacts.org"
DEFAULT_OFF_USER_AGENT = "foodsync/1.0 (admin@example.com)"

OFF_BASE_URL: str = os.getenv("OFF_BASE_URL") or DEFAULT_OFF_BASE_URL
OFF_USER_AGENT: str = os.getenv("OFF_USER_AGENT") or DEFAULT_OFF_USER_AGENT
OFF_TIMEOUT_SECONDS: int = _int_env("OFF_TIMEOUT_SECONDS", 15)

# Source tag written to food_products.source
OFF_SOURCE = "openfoodfacts"

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL")
SQLITE_PATH = os.getenv("FOODSYNC_SQLITE_PATH") or str(_backend_dir / "foodsync.db")

# --- Cache TTLs ---
SEARCH_TTL = timedelta(days=7)
PRODUCT_TTL = timedelta(days=30)

# "local": serve locally enriched rows on a search cache hit when any barcode resolves
# "cache": always serve the cached payload verbatim
SEARCH_CACHE_PRECEDENCE = (os.getenv("SEARCH_CACHE_PRECEDENCE") or "local").strip().lower()

# --- Rate limits (requests per window) ---
RATE_LIMIT_WINDOW_MS = 60_000
SEARCH_RATE_LIMIT_PER_MINUTE = _int_env("SEARCH_RATE_LIMIT_PER_MINUTE", 30)
PRODUCT_RATE_LIMIT_PER_MINUTE = _int_env("PRODUCT_RATE_LIMIT_PER_MINUTE", 30)
SEED_RATE_LIMIT_PER_MINUTE = _int_env("SEED_RATE_LIMIT_PER_MINUTE", 10)

# --- Search ---
DEFAULT_LOCALE = "pl"
MIN_QUERY_LENGTH = 3
SEARCH_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100

# --- Seeding ---
SEED_DEFAULT_PAGE_SIZE = 50
SEED_MIN_PAGE_SIZE = 20
SEED_MAX_TERMS = 50
SEED_LOG_WINDOW = 50
SEED_DEFAULT_TERMS = [
    "mleko",
    "jogurt",
    "ser",
    "chleb",
    "makaron",
    "ryż",
    "kurczak",
    "wołowina",
    "jajka",
    "masło",
    "oliwa",
    "pomidor",
    "ziemniaki",
    "jabłko",
    "banan",
    "płatki owsiane",
]

# --- Logging ---
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()
