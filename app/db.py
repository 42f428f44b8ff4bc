from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL
IS_SQLITE = DATABASE_URL.startswith("sqlite")


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # The API streams searches from worker threads
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})

    return create_engine(
        database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Recycle connections every 5 min
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )


engine = build_engine(DATABASE_URL)


@event.listens_for(engine, "connect")
def set_connection_parameters(dbapi_connection, connection_record):
    """Enforce foreign keys on SQLite, cap statement time on Postgres."""
    cursor = dbapi_connection.cursor()
    try:
        if IS_SQLITE:
            cursor.execute("PRAGMA foreign_keys=ON")
        else:
            cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning(f"Could not set connection parameters: {e}")
    finally:
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    # Register every table on the metadata
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
