"""
Equivalence cache for equipment images.

Equipment records with an identical (manufacturer, model) pair share a
product photo. Before acquiring, reuse a photo another record already has;
after acquiring, fill in every record in the group that still has none.
Files are reference counted by path: one is removed only when no active
record points at it any more.

Propagation only ever fills NULL image paths, so manual uploads are never
overwritten. A manual upload racing a propagation is last-writer-wins.
"""

import uuid
from pathlib import Path
from typing import Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from equipment_images.acquisition.direct_fetch import ensure_directory
from equipment_images.acquisition.errors import FileSystemFailure, InvalidImageError
from equipment_images.acquisition.orchestrator import ImageAcquirer, get_acquirer
from equipment_images.acquisition.types import AcquisitionRequest, FetchOutcome
from equipment_images.config import ImageSettings, settings
from equipment_images.database import Equipment
from equipment_images.utils.images import TYPE_EXTENSIONS, get_image_type, validate_image


def _group_filter(manufacturer: str, model: str) -> tuple:
    return (
        Equipment.manufacturer == manufacturer,
        Equipment.model == model,
        Equipment.is_active.is_(True),
    )


class EquivalenceCache:
    """Per-record image resolution on top of the acquisition orchestrator."""

    def __init__(
        self,
        acquirer: Optional[ImageAcquirer] = None,
        image_settings: Optional[ImageSettings] = None,
    ):
        self._acquirer = acquirer
        self.settings = image_settings or settings.images

    @property
    def acquirer(self) -> ImageAcquirer:
        if self._acquirer is None:
            self._acquirer = get_acquirer()
        return self._acquirer

    @property
    def output_dir(self) -> Path:
        return self.settings.output_dir

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def relative_path(self, filename: str) -> str:
        return f"{self.settings.subdir}/{filename}"

    def resolve_path(self, image_path: str) -> Path:
        """Absolute location of a stored image path; refuses to leave the upload root."""
        root = self.settings.upload_root.resolve()
        path = (root / image_path).resolve()
        if not path.is_relative_to(root):
            raise ValueError(f"Image path escapes upload root: {image_path}")
        return path

    # -------------------------------------------------------------------------
    # Lookup and propagation
    # -------------------------------------------------------------------------

    def find_equivalent_image(self, session: Session, equipment: Equipment) -> str | None:
        """Image path of another active record with the same manufacturer and model."""
        if not equipment.manufacturer or not equipment.model:
            return None

        stmt = (
            select(Equipment.image_path)
            .where(
                *_group_filter(equipment.manufacturer, equipment.model),
                Equipment.image_path.isnot(None),
                Equipment.id != equipment.id,
            )
            .order_by(Equipment.created_at)
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def propagate(
        self,
        session: Session,
        manufacturer: str | None,
        model: str | None,
        image_path: str,
        exclude_id: uuid.UUID | None = None,
    ) -> int:
        """Give ``image_path`` to every active record in the group that has no image.

        Returns:
            Number of records updated
        """
        if not manufacturer or not model:
            return 0

        conditions = [*_group_filter(manufacturer, model), Equipment.image_path.is_(None)]
        if exclude_id is not None:
            conditions.append(Equipment.id != exclude_id)

        result = session.execute(
            update(Equipment)
            .where(*conditions)
            .values(image_path=image_path)
            .execution_options(synchronize_session="fetch")
        )
        updated = result.rowcount or 0
        if updated:
            logger.info(f"Propagated {image_path} to {updated} other {manufacturer} {model} record(s)")
        return updated

    def count_references(
        self, session: Session, image_path: str, exclude_id: uuid.UUID | None = None
    ) -> int:
        """Active records pointing at ``image_path``."""
        stmt = select(func.count()).select_from(Equipment).where(
            Equipment.image_path == image_path,
            Equipment.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(Equipment.id != exclude_id)
        return session.execute(stmt).scalar_one()

    # -------------------------------------------------------------------------
    # Record operations
    # -------------------------------------------------------------------------

    def fetch_for(self, session: Session, equipment: Equipment) -> FetchOutcome:
        """Resolve an image for one record: reuse an equivalent, else acquire and propagate."""
        equipment_id = str(equipment.id)

        previous = equipment.image_path
        equivalent = self.find_equivalent_image(session, equipment)
        if equivalent:
            equipment.image_path = equivalent
            session.flush()
            if previous and previous != equivalent:
                self.release(session, previous)
            logger.info(f"Reused image {equivalent} for {equipment.manufacturer} {equipment.model}")
            return FetchOutcome(
                equipment_id=equipment_id,
                success=True,
                image_path=equivalent,
                reused=True,
            )

        capture = self.acquirer.acquire(AcquisitionRequest(
            manufacturer=equipment.manufacturer,
            model=equipment.model,
            product_name=equipment.name,
            output_dir=self.output_dir,
        ))
        if not capture.success:
            return FetchOutcome(
                equipment_id=equipment_id,
                success=False,
                capture=capture,
                error=capture.error,
            )

        image_path = self.relative_path(capture.filename)
        equipment.image_path = image_path
        session.flush()

        propagated = self.propagate(
            session, equipment.manufacturer, equipment.model, image_path, exclude_id=equipment.id
        )
        if previous and previous != image_path:
            self.release(session, previous)

        return FetchOutcome(
            equipment_id=equipment_id,
            success=True,
            image_path=image_path,
            propagated=propagated,
            capture=capture,
        )

    def delete_image(self, session: Session, equipment: Equipment) -> bool:
        """Detach the image from a record.

        Returns:
            True if the underlying file was removed
        """
        image_path = equipment.image_path
        if not image_path:
            return False

        equipment.image_path = None
        session.flush()
        return self.release(session, image_path)

    def release(self, session: Session, image_path: str) -> bool:
        """Remove the file behind ``image_path`` if no active record references it."""
        remaining = self.count_references(session, image_path)
        if remaining:
            logger.info(f"Keeping {image_path}: still used by {remaining} record(s)")
            return False

        try:
            path = self.resolve_path(image_path)
        except ValueError as e:
            logger.warning(str(e))
            return False

        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted unreferenced image {image_path}")
        return True

    def store_manual_image(
        self,
        session: Session,
        equipment: Equipment,
        content: bytes,
        original_filename: str,
    ) -> str:
        """Save a manually uploaded image for one record, replacing any previous one.

        Returns:
            The new image path

        Raises:
            InvalidImageError: Empty, oversized or not a jpg/png/gif/webp image
            FileSystemFailure: Upload directory not writable
        """
        if not content:
            raise InvalidImageError("Empty file")
        if len(content) > self.settings.max_upload_bytes:
            raise InvalidImageError(
                f"File too large. Max {self.settings.max_upload_bytes // 1024 // 1024}MB"
            )
        if not validate_image(content, original_filename or ""):
            raise InvalidImageError("Invalid image format. Allowed: jpg, png, gif, webp")

        ensure_directory(self.output_dir)
        filename = f"{uuid.uuid4().hex}{TYPE_EXTENSIONS[get_image_type(content)]}"
        filepath = self.output_dir / filename
        try:
            filepath.write_bytes(content)
        except OSError as e:
            filepath.unlink(missing_ok=True)
            raise FileSystemFailure(f"Cannot write {filepath}: {e}") from e

        image_path = self.relative_path(filename)
        previous = equipment.image_path
        equipment.image_path = image_path
        session.flush()

        if previous and previous != image_path:
            self.release(session, previous)

        logger.info(f"Stored manual image {image_path} for equipment {equipment.id}")
        return image_path
