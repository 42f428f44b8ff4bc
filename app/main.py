import logging
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import addresses, searches
from app.core.config import settings
from app.db import create_db_and_tables, engine
from app.middleware.context import RequestContextMiddleware
from app.services.factory import build_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("=" * 50)
    logger.info(f"{settings.PROJECT_NAME} API Starting")
    create_db_and_tables()
    runtime = build_runtime(settings, engine)
    app.state.runtime = runtime
    logger.info(f"Discovery strategies: {', '.join(runtime.discovery.names) or 'none'}")
    logger.info(f"Address strategies: {', '.join(runtime.address.names) or 'none'}")
    logger.info("=" * 50)
    try:
        yield
    finally:
        await runtime.aclose()


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

origins = [o for o in settings.cors_origins if o]

app.add_middleware(cast(Any, RequestContextMiddleware))
app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

app.include_router(searches.router, prefix=f"{settings.API_V1_STR}/searches", tags=["searches"])
app.include_router(addresses.router, prefix=f"{settings.API_V1_STR}/address-searches", tags=["addresses"])


@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/breakers")
def health_breakers():
    """State of every circuit breaker used since start-up."""
    runtime = getattr(app.state, "runtime", None)
    return runtime.breakers.get_all_states() if runtime else {}
