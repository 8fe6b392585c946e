"""
Bulk image fetcher for equipment without images.

Picks the largest (manufacturer, model) groups that still lack an image,
resolves one image per group and propagates it to every record in the group.
Groups are processed one at a time with a pause in between so the oracle and
manufacturer sites are not hammered, and the single browser is never
contended. A failing group is recorded and skipped.

Usage:
    python -m equipment_images.acquisition.bulk --bulk
    python -m equipment_images.acquisition.bulk --bulk --limit 5
    python -m equipment_images.acquisition.bulk --equipment-id <uuid>
    python -m equipment_images.acquisition.bulk --test "Ross Video" "Carbonite"
    python -m equipment_images.acquisition.bulk --stats
    python -m equipment_images.acquisition.bulk --missing
    python -m equipment_images.acquisition.bulk --bulk --verbose --log-file logs/bulk.log
"""

import argparse
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from equipment_images.acquisition.browser import close_browser
from equipment_images.acquisition.equivalence import EquivalenceCache
from equipment_images.acquisition.orchestrator import fetch_equipment_image
from equipment_images.acquisition.types import (
    AcquisitionRequest,
    BulkSummary,
    CaptureResult,
    GroupDetail,
)
from equipment_images.config import settings
from equipment_images.database import Equipment, get_session
from equipment_images.utils.logging import setup_logging


# =============================================================================
# Queries
# =============================================================================

def _missing_image_filter() -> tuple:
    return (
        Equipment.is_active.is_(True),
        Equipment.image_path.is_(None),
    )


def _identified_filter() -> tuple:
    return (
        Equipment.manufacturer.isnot(None),
        Equipment.model.isnot(None),
        Equipment.manufacturer != "",
        Equipment.model != "",
    )


def select_groups_without_images(session: Session, limit: int | None = None) -> list[tuple[str, str, int]]:
    """(manufacturer, model, equipment_count) for image-less groups, largest first."""
    equipment_count = func.count(Equipment.id).label("equipment_count")
    stmt = (
        select(Equipment.manufacturer, Equipment.model, equipment_count)
        .where(
            *_missing_image_filter(),
            *_identified_filter(),
        )
        .group_by(Equipment.manufacturer, Equipment.model)
        .order_by(equipment_count.desc(), Equipment.manufacturer, Equipment.model)
        .limit(limit or settings.bulk.group_limit)
    )
    return [(r[0], r[1], r[2]) for r in session.execute(stmt).fetchall()]


def get_representative(session: Session, manufacturer: str, model: str) -> Equipment | None:
    """Oldest image-less record of a group; its name goes to the oracle."""
    stmt = (
        select(Equipment)
        .where(
            *_missing_image_filter(),
            Equipment.manufacturer == manufacturer,
            Equipment.model == model,
        )
        .order_by(Equipment.created_at, Equipment.name)
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def list_equipment_without_images(session: Session) -> list[Equipment]:
    """Active equipment with no image, grouped by manufacturer and model."""
    stmt = (
        select(Equipment)
        .where(*_missing_image_filter())
        .order_by(Equipment.manufacturer, Equipment.model, Equipment.name)
    )
    return list(session.execute(stmt).scalars().all())


def get_image_coverage_stats(session: Session) -> dict:
    """Image coverage across active equipment."""
    total, with_image = session.execute(
        select(func.count(Equipment.id), func.count(Equipment.image_path))
        .where(Equipment.is_active.is_(True))
    ).one()

    pending_groups = session.execute(
        select(func.count()).select_from(
            select(Equipment.manufacturer, Equipment.model)
            .where(
                *_missing_image_filter(),
                *_identified_filter(),
            )
            .group_by(Equipment.manufacturer, Equipment.model)
            .subquery()
        )
    ).scalar_one()

    return {
        "total": total,
        "with_image": with_image,
        "without_image": total - with_image,
        "coverage_pct": round(100.0 * with_image / total, 2) if total else 0.0,
        "pending_groups": pending_groups,
    }


# =============================================================================
# Bulk run
# =============================================================================

def _process_group(
    session: Session,
    cache: EquivalenceCache,
    detail: GroupDetail,
) -> None:
    representative = get_representative(session, detail.manufacturer, detail.model)
    if representative is None:
        detail.error = "No image-less record left in group"
        return

    existing = cache.find_equivalent_image(session, representative)
    if existing:
        detail.updated = cache.propagate(session, detail.manufacturer, detail.model, existing)
        session.commit()
        detail.success = True
        detail.image_path = existing
        detail.method = "reused"
        return

    capture: Optional[CaptureResult] = None
    try:
        capture = cache.acquirer.acquire(AcquisitionRequest(
            manufacturer=detail.manufacturer,
            model=detail.model,
            product_name=representative.name,
            output_dir=cache.output_dir,
        ))
        if not capture.success:
            detail.error = capture.error or "Could not find image"
            return

        image_path = cache.relative_path(capture.filename)
        detail.updated = cache.propagate(session, detail.manufacturer, detail.model, image_path)
        session.commit()
    except Exception:
        # Nothing references the new file if the update did not land
        if capture is not None and capture.success and capture.filepath:
            capture.filepath.unlink(missing_ok=True)
        raise

    detail.success = True
    detail.image_path = image_path
    detail.method = capture.method.value if capture.method else None


def run_bulk_fetch(
    session: Session,
    cache: Optional[EquivalenceCache] = None,
    limit: int | None = None,
    delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BulkSummary:
    """
    Fetch images for the largest image-less equipment groups.

    Args:
        session: Database session; committed after each successful group
        cache: Equivalence cache (and through it the acquirer) to use
        limit: Maximum groups to process (default BULK_GROUP_LIMIT)
        delay: Seconds between groups (default BULK_DELAY_SECONDS)
        sleep: Sleep function, replaceable in tests

    Returns:
        BulkSummary; partial results survive an interrupted run
    """
    cache = cache or EquivalenceCache()
    delay = settings.bulk.delay_seconds if delay is None else delay
    summary = BulkSummary()

    try:
        groups = select_groups_without_images(session, limit)
        logger.info(f"Bulk image fetch: {len(groups)} group(s) to process")

        for index, (manufacturer, model, count) in enumerate(groups):
            detail = GroupDetail(manufacturer=manufacturer, model=model, equipment_count=count)
            logger.info(f"[{index + 1}/{len(groups)}] {manufacturer} {model} ({count} records)")

            try:
                _process_group(session, cache, detail)
            except Exception as e:
                session.rollback()
                logger.exception(f"Error processing {manufacturer} {model}")
                detail.success = False
                detail.error = str(e) or type(e).__name__

            summary.record(detail)
            if detail.success:
                logger.info(f"  -> {detail.image_path} ({detail.method}), {detail.updated} record(s) updated")
            else:
                logger.warning(f"  -> failed: {detail.error}")

            if index < len(groups) - 1 and delay > 0:
                sleep(delay)
    except Exception:
        logger.exception("Bulk image fetch interrupted, returning partial results")

    logger.info(
        f"Bulk image fetch complete: {summary.success} succeeded, "
        f"{summary.failed} failed of {summary.processed}"
    )
    return summary


# =============================================================================
# Reporting
# =============================================================================

def print_stats(stats: dict) -> None:
    print("\n" + "=" * 60)
    print("EQUIPMENT IMAGE COVERAGE")
    print("=" * 60)
    print(f"  Total active:    {stats['total']:,}")
    print(f"  With image:      {stats['with_image']:,} ({stats['coverage_pct']}%)")
    print(f"  Without image:   {stats['without_image']:,}")
    print(f"  Pending groups:  {stats['pending_groups']:,}")
    print("=" * 60 + "\n")


def print_summary(summary: BulkSummary) -> None:
    print("\n" + "=" * 60)
    print("BULK FETCH COMPLETE")
    print("=" * 60)
    for d in summary.details:
        status = "OK  " if d.success else "FAIL"
        extra = f"{d.updated} updated via {d.method}" if d.success else d.error
        print(f"  [{status}] {d.manufacturer} {d.model} ({d.equipment_count}): {extra}")
    print(f"\n  processed={summary.processed} success={summary.success} failed={summary.failed}")
    print("=" * 60 + "\n")


def fetch_single(equipment_id: str) -> None:
    with get_session() as session:
        equipment = session.get(Equipment, uuid.UUID(equipment_id))
        if equipment is None:
            logger.error(f"Equipment not found: {equipment_id}")
            return
        outcome = EquivalenceCache().fetch_for(session, equipment)
        if outcome.success:
            logger.info(f"Image: {outcome.image_path} (reused={outcome.reused}, propagated={outcome.propagated})")
        else:
            logger.warning(f"Could not find image: {outcome.error}")


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description="Fetch product images for equipment"
    )
    parser.add_argument(
        "--bulk", action="store_true",
        help="Process the largest image-less manufacturer/model groups"
    )
    parser.add_argument(
        "--limit", "-l", type=int, default=None,
        help="Maximum groups to process in bulk mode"
    )
    parser.add_argument(
        "--equipment-id", type=str,
        help="Fetch image for a single equipment record"
    )
    parser.add_argument(
        "--test", nargs=2, metavar=("MANUFACTURER", "MODEL"),
        help="Acquire an image for a manufacturer/model without touching the database"
    )
    parser.add_argument(
        "--stats", action="store_true",
        help="Print coverage statistics only"
    )
    parser.add_argument(
        "--missing", action="store_true",
        help="List equipment without images"
    )
    parser.add_argument(
        "--log-file", type=Path, default=None,
        help="Also write logs to this file (default LOG_FILE)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Debug logging"
    )

    args = parser.parse_args()

    if args.log_file or args.verbose:
        setup_logging(level="DEBUG" if args.verbose else None, log_file=args.log_file)

    try:
        if args.stats:
            with get_session() as session:
                print_stats(get_image_coverage_stats(session))
        elif args.missing:
            with get_session() as session:
                for e in list_equipment_without_images(session):
                    print(f"  {e.id}  {e.manufacturer or '-'} | {e.model or '-'} | {e.name}")
        elif args.test:
            result = fetch_equipment_image(args.test[0], args.test[1])
            print(result.to_dict())
        elif args.equipment_id:
            fetch_single(args.equipment_id)
        elif args.bulk:
            with get_session() as session:
                print_summary(run_bulk_fetch(session, limit=args.limit))
        else:
            parser.print_help()
    finally:
        close_browser()


if __name__ == "__main__":
    main()
