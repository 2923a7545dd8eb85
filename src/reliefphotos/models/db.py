import logging
import time
from collections.abc import Generator
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine.base import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""

    __abstract__ = True  # Prevents this class from being created as a table


class DatabaseSettings(BaseSettings):
    """Settings for database connection, loaded from environment variables.

    ``DATABASE_URL`` takes precedence over the individual ``POSTGRES_*`` values.
    """

    db: str = "relief"
    user: str = "postgres"
    password: str = "postgres"
    host: str = "localhost"
    port: int = 5432
    url: str | None = Field(default=None, alias="DATABASE_URL")

    @property
    def database_url(self) -> str:  # pragma: no cover
        if self.url:
            return self.url
        return f"postgresql+psycopg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="POSTGRES_", extra="ignore")


@lru_cache(maxsize=1)
def get_database_url() -> str:  # pragma: no cover
    return DatabaseSettings().database_url


@lru_cache(maxsize=1)
def _get_engine_and_sessionmaker() -> tuple[Engine, sessionmaker[Session]]:  # pragma: no cover
    """Create and cache the SQLAlchemy engine and sessionmaker lazily."""
    database_url = get_database_url()
    if database_url.startswith("sqlite"):
        eng = create_engine(database_url, connect_args={"check_same_thread": False})
    else:
        eng = create_engine(database_url, pool_size=20, max_overflow=10, pool_timeout=10, pool_recycle=1800, pool_pre_ping=True)
    sess = sessionmaker(bind=eng)

    return eng, sess


def get_engine():  # pragma: no cover - simple accessor
    return _get_engine_and_sessionmaker()[0]


def get_session_maker():  # pragma: no cover - simple accessor
    return _get_engine_and_sessionmaker()[1]


def get_db() -> Generator[Session]:  # pragma: no cover
    """Dependency injection for database sessions."""
    session = get_session_maker()()
    session_start = time.time()

    try:
        yield session
    except Exception as e:
        logger.warning("Session error after %.3fs: %s", time.time() - session_start, e)
        session.rollback()
        raise
    finally:
        duration = time.time() - session_start
        if duration > 1.0:
            logger.warning("Long-lived session: %.3fs", duration)
        session.close()
