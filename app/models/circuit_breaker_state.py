"""
Shared circuit breaker state.

Lets several API workers see the same breaker state and keeps a failing provider
from being hammered again right after a restart. Rows are only honoured until
expires_at; after that a breaker starts fresh.
"""

from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from app.core.typing import utc_now


class CircuitBreakerState(SQLModel, table=True):
    __tablename__ = "circuit_breaker_state"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)  # Breaker name (e.g., "tripadvisor", "overpass:<url>")
    state: str = Field(default="closed")  # "closed", "open", "half_open"
    failure_count: int = Field(default=0)
    next_attempt: float = Field(default=0.0)  # epoch milliseconds
    last_failure_at: Optional[datetime] = Field(default=None)
    updated_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = Field(default=None)
