"""Repository classes for queue, scan, tasting and catalog database operations."""

import json
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from vinho.core.enums import JobStatus
from vinho.core.schema import QueueJob, Scan, Tasting
from vinho.db.models import QueueJobDB, ScanDB, TastingDB
from vinho.db.models_catalog import ProducerDB, RegionDB, VintageDB, WineDB


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# ============================================================================
# Queue Jobs
# ============================================================================


class QueueJobRepository:
    """Repository for label-scan queue jobs."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        user_id: str,
        image_url: str,
        scan_id: str | None = None,
        ocr_text: str | None = None,
        idempotency_key: str | None = None,
    ) -> QueueJob:
        """
        Insert a new pending job.

        A reused idempotency key raises IntegrityError on flush; the
        unique constraint is the only duplicate check.
        """
        db_item = QueueJobDB(
            user_id=user_id,
            image_url=image_url,
            scan_id=scan_id,
            ocr_text=ocr_text,
            idempotency_key=idempotency_key,
            status=JobStatus.PENDING.value,
            retry_count=0,
            created_at=_utc_now(),
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, job_id: str) -> QueueJob | None:
        """Get a job by ID."""
        stmt = select(QueueJobDB).where(QueueJobDB.id == job_id)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def set_content_key(self, job_id: str, content_key: str) -> None:
        """Store the derived content key on a job."""
        stmt = (
            update(QueueJobDB)
            .where(QueueJobDB.id == job_id)
            .values(content_key=content_key)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def find_completed_result(self, content_key: str, exclude_job_id: str) -> dict[str, Any] | None:
        """Processed data of another completed job with the same content key."""
        stmt = (
            select(QueueJobDB.processed_data_json)
            .where(QueueJobDB.content_key == content_key)
            .where(QueueJobDB.status == JobStatus.COMPLETED.value)
            .where(QueueJobDB.id != exclude_job_id)
            .where(QueueJobDB.processed_data_json.is_not(None))
            .order_by(QueueJobDB.processed_at.desc())
            .limit(1)
        )
        processed_data_json = self.session.execute(stmt).scalar_one_or_none()
        return json.loads(processed_data_json) if processed_data_json else None

    def claim_pending(self, limit: int) -> list[QueueJob]:
        """
        Atomically claim up to `limit` pending jobs, oldest first.

        Selection and the status change happen in one UPDATE statement.
        On backends with row locks the candidate rows are locked with
        SKIP LOCKED so concurrent claimers pass over each other's rows;
        SQLite serializes the statement behind its write lock. The
        status guard in the outer WHERE keeps a row from being claimed
        twice either way. Commits before returning.

        Args:
            limit: Maximum number of jobs to claim

        Returns:
            Claimed jobs, each now in processing state
        """
        table = QueueJobDB.__table__
        candidates = (
            select(table.c.id)
            .where(table.c.status == JobStatus.PENDING.value)
            .order_by(table.c.created_at, table.c.id)
            .limit(limit)
        )
        if self.session.get_bind().dialect.name != "sqlite":
            candidates = candidates.with_for_update(skip_locked=True)

        stmt = (
            update(table)
            .where(table.c.id.in_(candidates.scalar_subquery()))
            .where(table.c.status == JobStatus.PENDING.value)
            .values(status=JobStatus.PROCESSING.value, processed_at=_utc_now())
            .returning(*table.c)
        )
        rows = self.session.execute(stmt).mappings().all()
        self.session.commit()

        jobs = [self._row_to_domain(row) for row in rows]
        jobs.sort(key=lambda job: (job.created_at, job.id))
        return jobs

    def mark_completed(self, job_id: str, processed_data: dict[str, Any]) -> bool:
        """Record a successful extraction. Returns False if the job is not processing."""
        stmt = (
            update(QueueJobDB)
            .where(QueueJobDB.id == job_id)
            .where(QueueJobDB.status == JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.COMPLETED.value,
                processed_data_json=json.dumps(processed_data, default=str),
                error_message=None,
                processed_at=_utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount > 0

    def record_failure(
        self, job_id: str, error_message: str, max_retries: int
    ) -> tuple[JobStatus, int] | None:
        """
        Count a failed attempt and move the job to pending or failed.

        The increment and the state decision are a single UPDATE so the
        outcome never depends on a stale read of retry_count.

        Returns:
            (new status, new retry_count), or None if the job is not processing
        """
        table = QueueJobDB.__table__
        exhausted = table.c.retry_count + 1 >= max_retries
        stmt = (
            update(table)
            .where(table.c.id == job_id)
            .where(table.c.status == JobStatus.PROCESSING.value)
            .values(
                retry_count=table.c.retry_count + 1,
                error_message=error_message,
                status=case(
                    (exhausted, JobStatus.FAILED.value),
                    else_=JobStatus.PENDING.value,
                ),
                processed_at=case((exhausted, _utc_now()), else_=None),
            )
            .returning(table.c.status, table.c.retry_count)
        )
        row = self.session.execute(stmt).first()
        if row is None:
            return None
        return JobStatus(row.status), row.retry_count

    def count_by_status(self) -> dict[str, int]:
        """Count jobs in each status."""
        stmt = select(QueueJobDB.status, func.count()).group_by(QueueJobDB.status)
        counts = {status.value: 0 for status in JobStatus}
        for status, count in self.session.execute(stmt).all():
            counts[status] = count
        return counts

    def list_for_user(self, user_id: str, limit: int = 50) -> list[QueueJob]:
        """List a user's most recent jobs."""
        stmt = (
            select(QueueJobDB)
            .where(QueueJobDB.user_id == user_id)
            .order_by(QueueJobDB.created_at.desc())
            .limit(limit)
        )
        return [self._to_domain(j) for j in self.session.execute(stmt).scalars().all()]

    def _to_domain(self, db_item: QueueJobDB) -> QueueJob:
        """Convert DB model to domain model."""
        return QueueJob(
            id=db_item.id,
            user_id=db_item.user_id,
            scan_id=db_item.scan_id,
            image_url=db_item.image_url,
            ocr_text=db_item.ocr_text,
            idempotency_key=db_item.idempotency_key,
            content_key=db_item.content_key,
            status=JobStatus(db_item.status),
            retry_count=db_item.retry_count,
            error_message=db_item.error_message,
            processed_data=json.loads(db_item.processed_data_json) if db_item.processed_data_json else None,
            created_at=db_item.created_at,
            processed_at=db_item.processed_at,
        )

    def _row_to_domain(self, row: Any) -> QueueJob:
        """Convert a RETURNING row mapping to a domain model."""
        return QueueJob(
            id=row["id"],
            user_id=row["user_id"],
            scan_id=row["scan_id"],
            image_url=row["image_url"],
            ocr_text=row["ocr_text"],
            idempotency_key=row["idempotency_key"],
            content_key=row["content_key"],
            status=JobStatus(row["status"]),
            retry_count=row["retry_count"],
            error_message=row["error_message"],
            processed_data=json.loads(row["processed_data_json"]) if row["processed_data_json"] else None,
            created_at=row["created_at"],
            processed_at=row["processed_at"],
        )


# ============================================================================
# Scans
# ============================================================================


class ScanRepository:
    """Repository for label scans."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        user_id: str,
        image_path: str,
        image_url: str,
        ocr_text: str | None = None,
    ) -> Scan:
        """Create a new scan."""
        db_item = ScanDB(
            user_id=user_id,
            image_path=image_path,
            image_url=image_url,
            ocr_text=ocr_text,
            created_at=_utc_now(),
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, scan_id: str) -> Scan | None:
        """Get a scan by ID."""
        db_item = self.session.get(ScanDB, scan_id)
        return self._to_domain(db_item) if db_item else None

    def link_vintage(self, scan_id: str, vintage_id: str, confidence: float | None) -> bool:
        """Attach the resolved vintage and extraction confidence to a scan."""
        db_item = self.session.get(ScanDB, scan_id)
        if db_item is None:
            return False
        db_item.matched_vintage_id = vintage_id
        db_item.confidence = confidence
        self.session.flush()
        return True

    def list_image_paths(self, user_id: str) -> list[str]:
        """Storage paths of every image a user has uploaded."""
        stmt = select(ScanDB.image_path).where(ScanDB.user_id == user_id)
        return list(self.session.execute(stmt).scalars().all())

    def _to_domain(self, db_item: ScanDB) -> Scan:
        """Convert DB model to domain model."""
        return Scan(
            id=db_item.id,
            user_id=db_item.user_id,
            image_path=db_item.image_path,
            image_url=db_item.image_url,
            ocr_text=db_item.ocr_text,
            matched_vintage_id=db_item.matched_vintage_id,
            confidence=db_item.confidence,
            created_at=db_item.created_at,
        )


# ============================================================================
# Tastings
# ============================================================================


class TastingRepository:
    """Repository for user tastings."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        user_id: str,
        vintage_id: str,
        tasted_at: date,
        rating: int | None = None,
        notes: str = "",
        image_url: str | None = None,
    ) -> Tasting:
        """Create a new tasting."""
        db_item = TastingDB(
            user_id=user_id,
            vintage_id=vintage_id,
            tasted_at=tasted_at,
            rating=rating,
            notes=notes,
            image_url=image_url,
            created_at=_utc_now(),
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def find_for_day(self, user_id: str, vintage_id: str, tasted_at: date) -> Tasting | None:
        """Find a tasting of this vintage by this user on the given date."""
        stmt = (
            select(TastingDB)
            .where(TastingDB.user_id == user_id)
            .where(TastingDB.vintage_id == vintage_id)
            .where(TastingDB.tasted_at == tasted_at)
            .limit(1)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def create_if_absent(
        self,
        user_id: str,
        vintage_id: str,
        tasted_at: date,
        rating: int | None = None,
        notes: str = "",
        image_url: str | None = None,
    ) -> tuple[Tasting, bool]:
        """
        Create a tasting unless one exists for (user, vintage, tasted_at).

        Returns:
            Tuple of (tasting, created)
        """
        existing = self.find_for_day(user_id, vintage_id, tasted_at)
        if existing is not None:
            return existing, False
        return self.create(user_id, vintage_id, tasted_at, rating, notes, image_url), True

    def list_history(self, user_id: str, limit: int) -> list[tuple[Tasting, str]]:
        """
        A user's tastings with the wine each one belongs to.

        Ordered by rating (highest first, unrated last), then most recent
        tasting date, then most recent creation.

        Returns:
            List of (tasting, wine_id)
        """
        stmt = (
            select(TastingDB, VintageDB.wine_id)
            .join(VintageDB, VintageDB.id == TastingDB.vintage_id)
            .where(TastingDB.user_id == user_id)
            .order_by(
                TastingDB.rating.desc().nulls_last(),
                TastingDB.tasted_at.desc(),
                TastingDB.created_at.desc(),
            )
            .limit(limit)
        )
        return [(self._to_domain(t), wine_id) for t, wine_id in self.session.execute(stmt).all()]

    def tasted_wine_ids(self, user_id: str) -> set[str]:
        """Every wine the user has ever tasted."""
        stmt = (
            select(VintageDB.wine_id)
            .join(TastingDB, TastingDB.vintage_id == VintageDB.id)
            .where(TastingDB.user_id == user_id)
            .distinct()
        )
        return set(self.session.execute(stmt).scalars().all())

    def _to_domain(self, db_item: TastingDB) -> Tasting:
        """Convert DB model to domain model."""
        return Tasting(
            id=db_item.id,
            user_id=db_item.user_id,
            vintage_id=db_item.vintage_id,
            rating=db_item.rating,
            notes=db_item.notes or "",
            tasted_at=db_item.tasted_at,
            image_url=db_item.image_url,
            created_at=db_item.created_at,
        )


# ============================================================================
# Catalog lookups
# ============================================================================


class CatalogRepository:
    """Read-side catalog lookups used to enrich recommendations."""

    def __init__(self, session: Session):
        self.session = session

    def get_wine_summaries(self, wine_ids: list[str]) -> dict[str, dict[str, Any]]:
        """
        Fetch display fields for a set of wines.

        Returns:
            Mapping of wine id to {wine_name, producer_name, region, country};
            ids with no catalog row are absent.
        """
        if not wine_ids:
            return {}
        stmt = (
            select(WineDB.id, WineDB.name, ProducerDB.name, RegionDB.name, RegionDB.country)
            .join(ProducerDB, ProducerDB.id == WineDB.producer_id)
            .outerjoin(RegionDB, RegionDB.id == ProducerDB.region_id)
            .where(WineDB.id.in_(wine_ids))
        )
        summaries: dict[str, dict[str, Any]] = {}
        for wine_id, wine_name, producer_name, region, country in self.session.execute(stmt).all():
            summaries[wine_id] = {
                "wine_name": wine_name,
                "producer_name": producer_name,
                "region": region,
                "country": country or None,
            }
        return summaries

    def count_entities(self) -> dict[str, int]:
        """Row counts for the catalog tables."""
        counts = {}
        for label, model in (
            ("regions", RegionDB),
            ("producers", ProducerDB),
            ("wines", WineDB),
            ("vintages", VintageDB),
        ):
            counts[label] = self.session.execute(select(func.count()).select_from(model)).scalar() or 0
        return counts
