# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for equipment image pipeline tests."""

import os
import uuid
from pathlib import Path
from typing import Generator

import pytest

# Set test environment variables before importing the package
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DISABLE_LOGGING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["ORACLE_ANTHROPIC_API_KEY"] = ""

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from equipment_images.config import ImageSettings  # noqa: E402
from equipment_images.database import Base, Equipment  # noqa: E402
from tests.fakes import FakeAcquirer, FakePage  # noqa: E402


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """In-memory SQLite session with the equipment table created."""
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    session = Session(engine)
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def image_settings(tmp_path: Path) -> ImageSettings:
    """Image settings rooted in a temporary upload directory."""
    return ImageSettings(upload_root=tmp_path / "uploads", subdir="equipment")


@pytest.fixture
def make_equipment(db_session: Session):
    """Factory adding an equipment record to the session."""

    def _make(
        manufacturer: str | None = "Ross Video",
        model: str | None = "Carbonite",
        name: str | None = None,
        image_path: str | None = None,
        is_active: bool = True,
    ) -> Equipment:
        equipment = Equipment(
            id=uuid.uuid4(),
            name=name or f"{manufacturer or 'Unknown'} {model or ''}".strip(),
            manufacturer=manufacturer,
            model=model,
            image_path=image_path,
            is_active=is_active,
        )
        db_session.add(equipment)
        db_session.flush()
        return equipment

    return _make


@pytest.fixture
def fake_acquirer() -> FakeAcquirer:
    return FakeAcquirer()


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def sample_equipment_data() -> dict:
    """Sample equipment metadata for testing."""
    return {
        "manufacturer": "Ross Video",
        "model": "Carbonite",
        "name": "Carbonite Black Production Switcher",
    }
