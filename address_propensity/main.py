"""FastAPI application for address propensity search."""

import logging
import os
from contextlib import asynccontextmanager

import logfire
from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import __version__
from .database import get_db, init_db
from .queries import find_address_scores_for_zip_code
from .schemas import PropensitySearchItem, is_valid_zip_code

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup; the server does not start without it."""
    init_db()
    yield


app = FastAPI(
    title="Address Propensity API",
    description="Property addresses ranked by propensity score within a zip code",
    version=__version__,
    lifespan=lifespan,
)

# Configure Logfire for observability
if os.getenv("LOGFIRE_TOKEN"):
    logfire.configure()
    logfire.instrument_fastapi(app)


@app.get("/")
async def root():
    return {"status": "ok", "service": "Address Propensity API"}


@app.get("/health_check")
async def health_check():
    """Liveness probe. Does not touch the database."""
    return {"status": "ok"}


@app.get("/propensity", response_model=list[PropensitySearchItem])
async def propensity_search(
    zip_: str | None = Query(default=None, alias="zip", description="5 digit US zip code"),
    zipcode: str | None = Query(default=None, description="Alias of zip"),
    zip_code: str | None = Query(default=None, description="Alias of zip"),
    limit: int | None = Query(default=None, ge=1, description="Maximum results, all if omitted"),
    db: Session = Depends(get_db),
):
    """Addresses with the highest propensity scores in a zip code."""
    requested = next(
        (z.strip() for z in (zip_, zipcode, zip_code) if z and z.strip()),
        None,
    )
    if requested is None:
        raise HTTPException(status_code=400, detail="A zip code is required (zip, zipcode or zip_code)")
    if not is_valid_zip_code(requested):
        raise HTTPException(status_code=400, detail=f"Invalid zip code: {requested}")

    try:
        return find_address_scores_for_zip_code(db, requested, limit)
    except SQLAlchemyError as e:
        logger.error(f"Propensity search failed for zip code {requested}: {e}")
        raise HTTPException(status_code=500, detail="Failed to find addresses with top propensity scores") from e


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    uvicorn.run(
        app,
        host=os.getenv("APP_HOST", "127.0.0.1"),
        port=int(os.getenv("APP_PORT", "8000")),
    )
