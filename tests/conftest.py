from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine.base import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session
from sqlalchemy.pool import StaticPool

from reliefphotos.local_cache import LocalDiskCache
from reliefphotos.repositories.photo_repository import PhotoRepository
from tests.helpers import FakeObjectStore, encode_image


@pytest.fixture(scope="session")
def engine() -> Generator[Engine]:
    """In-memory SQLite engine shared across the test session."""
    from reliefphotos.models import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine: Engine) -> Generator[Session]:
    """Database session whose work is discarded after each test."""
    from reliefphotos.models import Photo

    session = sessionmaker(bind=engine)()
    yield session
    session.rollback()
    session.query(Photo).delete()
    session.commit()
    session.close()


@pytest.fixture
def repo(db_session: Session) -> PhotoRepository:
    return PhotoRepository(db_session)


@pytest.fixture
def cache(tmp_path: Path) -> LocalDiskCache:
    return LocalDiskCache(tmp_path / "cache")


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def jpeg_1000x500() -> bytes:
    return encode_image(1000, 500)


@pytest.fixture
def png_800x400() -> bytes:
    return encode_image(800, 400, fmt="PNG")


@pytest.fixture(scope="function")
def client(db_session: Session, cache: LocalDiskCache, store: FakeObjectStore) -> Generator[TestClient]:
    """FastAPI test client wired to the SQLite session, a temp cache and the fake store."""
    from reliefphotos.dependencies import get_local_cache, get_s3_client
    from reliefphotos.main import app
    from reliefphotos.models.db import get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_local_cache] = lambda: cache
    app.dependency_overrides[get_s3_client] = lambda: store

    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()
