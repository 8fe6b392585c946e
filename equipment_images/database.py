"""
Equipment registry models.

Uses SQLAlchemy 2.0. Only the columns the image pipeline reads or writes are
interesting here; the rest of the registry is owned by the web application.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import Optional

from sqlalchemy import (
    create_engine,
    Boolean,
    DateTime,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    sessionmaker,
)
from sqlalchemy.sql import func

from equipment_images.config import settings


# =============================================================================
# Database Engine and Session
# =============================================================================

@lru_cache()
def get_engine() -> Engine:
    """Create the engine on first use."""
    url = settings.database.url
    if url.startswith("postgresql"):
        return create_engine(
            url,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800,
            connect_args={
                "connect_timeout": 10,
                "options": "-c statement_timeout=30000"  # 30s query timeout
            }
        )
    return create_engine(url, echo=settings.log_level == "DEBUG")


SessionLocal = sessionmaker(autocommit=False, autoflush=False)


@contextmanager
def get_session():
    """Context manager for database sessions."""
    session = SessionLocal(bind=get_engine())
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Base Model
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Equipment(Base):
    """
    A piece of broadcast equipment in the registry.

    Records sharing an identical (manufacturer, model) pair form an
    equivalence group and share one product image.
    """
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relative to the upload root, e.g. "equipment/3f2a...9c.jpg"
    image_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_equipment_model_manufacturer", "manufacturer", "model"),
    )

    def __repr__(self) -> str:
        return f"<Equipment {self.manufacturer} {self.model} ({self.id})>"
