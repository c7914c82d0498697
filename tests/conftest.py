"""Test configuration and fixtures."""

import io
from typing import Generator

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from layout_foundry.db import audit_models, models, version_models  # noqa: F401
from layout_foundry.db.base import Base
from layout_foundry.storage.blobs import FileBlobStore


def make_image_bytes(
    width: int = 800, height: int = 600, fmt: str = "PNG", mode: str = "RGB"
) -> bytes:
    """Render a solid test image and return its encoded bytes."""
    image = Image.new(mode, (width, height), color=(30, 120, 200) if mode == "RGB" else 128)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def engine():
    """A fresh in-memory database shared across connections."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path) -> FileBlobStore:
    return FileBlobStore(tmp_path / "blobs")


@pytest.fixture
def png_800x600() -> bytes:
    return make_image_bytes(800, 600)


@pytest.fixture
def image_factory():
    return make_image_bytes
