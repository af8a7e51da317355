"""
FastAPI application for the foodsync backend API.

Provides REST endpoints for:
- Cached Open Food Facts search and barcode lookup
- Resumable seed runs driven by an external scheduler
- Local search over the canonical product table

Run with:
    cd backend
    source venv/bin/activate
    uvicorn foodsync.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .logger import get_logger
from .routes import food_products, product, search, seed
from .services.database import db_pool

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes database connection on startup and closes it on shutdown.
    """
    # Startup
    try:
        db_pool.initialize()
        logger.info("Database connection initialized")
    except Exception as e:
        logger.warning("Could not initialize database: %s", e)
        logger.warning("Some endpoints may not work without database connection")

    yield

    # Shutdown
    db_pool.close()
    logger.info("Database connection closed")


app = FastAPI(
    title="foodsync API",
    description="Cached Open Food Facts lookups and product seeding",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Admin panel dev server
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(search.router)
app.include_router(product.router)
app.include_router(seed.router)
app.include_router(food_products.router)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    database: str


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        Health status including database connectivity
    """
    db_status = "unknown"

    try:
        with db_pool.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.close()
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
    )


@app.get("/", tags=["root"])
def root():
    """
    Root endpoint with API information.

    Returns:
        API welcome message and documentation link
    """
    return {
        "message": "foodsync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
