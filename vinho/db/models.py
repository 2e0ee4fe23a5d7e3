"""SQLAlchemy ORM models for queue jobs, scans, tastings and user records."""

from datetime import UTC, date, datetime
from uuid import uuid4

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class QueueJobDB(Base):
    """
    Database model for label-scan queue jobs.

    The table is the queue: status moves pending -> processing ->
    completed/failed, and a failed attempt returns the row to pending
    until the retry ceiling is reached.
    """

    __tablename__ = "wine_queue_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    scan_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("scans.id", ondelete="SET NULL"), nullable=True
    )
    image_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Duplicate submissions are rejected by this constraint alone
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    # SHA-256 of image_url and ocr_text; completed results are reused by it
    content_key: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<QueueJobDB(id={self.id}, status='{self.status}', retries={self.retry_count})>"


class ScanDB(Base):
    """Database model for uploaded label scans."""

    __tablename__ = "scans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    image_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    image_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    matched_vintage_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("vintages.id", ondelete="SET NULL"), nullable=True, index=True
    )
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    def __repr__(self) -> str:
        return f"<ScanDB(id={self.id}, user_id={self.user_id})>"


class TastingDB(Base):
    """
    Database model for user tastings.

    (user, vintage, tasted_at) is not unique in storage; callers that
    must avoid duplicates check before inserting.
    """

    __tablename__ = "tastings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    vintage_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vintages.id"), nullable=False, index=True
    )
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    tasted_at: Mapped[date] = mapped_column(Date, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    def __repr__(self) -> str:
        return f"<TastingDB(id={self.id}, vintage_id={self.vintage_id}, rating={self.rating})>"


class ProfileDB(Base):
    """Database model for user profiles (the identity record)."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    def __repr__(self) -> str:
        return f"<ProfileDB(id={self.id}, email='{self.email}')>"


class UserPreferenceDB(Base):
    """Database model for per-user key/value preferences."""

    __tablename__ = "user_preferences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<UserPreferenceDB(user_id={self.user_id}, key='{self.key}')>"
