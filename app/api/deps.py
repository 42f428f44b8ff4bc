from typing import Callable

from fastapi import HTTPException, Request
from sqlmodel import Session

from app.db import engine
from app.services.factory import Runtime

SessionFactory = Callable[[], Session]


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Search engine is not ready")
    return runtime


def get_session_factory() -> SessionFactory:
    """
    Sessions for streaming endpoints.

    A yield-dependency session is closed before a StreamingResponse body runs, so
    streams open their own session from this factory.
    """
    return lambda: Session(engine)
