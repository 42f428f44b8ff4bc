"""
Structured logging for the search engine.

Services log through structlog bound loggers; low-level modules (circuit breaker,
provider clients, db) keep plain `logging` loggers, which end up on the same
stdout stream.

Usage:
    from app.core.logging_config import get_logger, search_context

    logger = get_logger(__name__)
    with search_context(search_id):
        logger.info("candidate evaluated", candidate_id=12, status="Returned")

Output with ENVIRONMENT=production (JSON):
    {"event": "candidate evaluated", "search_id": 3, "candidate_id": 12,
     "status": "Returned", "level": "info", "timestamp": "2025-06-02T10:30:00Z"}

Output otherwise (console):
    2025-06-02T10:30:00Z [info     ] candidate evaluated  search_id=3 candidate_id=12 status=Returned
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, List

import structlog

from app.core.config import settings

IS_PRODUCTION = settings.ENVIRONMENT.lower() == "production"
IS_TEST = "pytest" in sys.modules

# Libraries that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "sqlalchemy.engine", "uvicorn.access")


def resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def build_processors(json_output: bool) -> List[Any]:
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.dev.set_exc_info,
    ]
    if json_output:
        return processors + [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return processors + [structlog.dev.ConsoleRenderer(colors=not IS_TEST)]


def configure_logging(level: str = settings.LOG_LEVEL, json_output: bool = IS_PRODUCTION) -> None:
    numeric_level = resolve_level(level)
    structlog.configure(
        processors=build_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", stream=sys.stdout, level=numeric_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def search_context(search_id: Any) -> Iterator[None]:
    """Tag every structlog line emitted inside the block with `search_id`."""
    structlog.contextvars.bind_contextvars(search_id=search_id)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("search_id")


# Configure on import
configure_logging()
