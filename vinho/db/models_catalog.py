"""
SQLAlchemy ORM models for the wine catalog.

Names are unique case-insensitively through expression indexes on
lower(name); the entity resolver depends on these constraints to
detect concurrent inserts of the same entity.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vinho.db.models import Base, _generate_uuid, _utc_now


class RegionDB(Base):
    """Database model for wine regions."""

    __tablename__ = "regions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    def __repr__(self) -> str:
        return f"<RegionDB(id={self.id}, name='{self.name}', country='{self.country}')>"


class ProducerDB(Base):
    """
    Database model for wine producers.

    Represents a winery, domaine, or producer of wines.
    """

    __tablename__ = "producers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    region_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("regions.id"), nullable=True, index=True
    )
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    # Relationships
    region: Mapped["RegionDB | None"] = relationship("RegionDB")
    wines: Mapped[list["WineDB"]] = relationship("WineDB", back_populates="producer")

    def __repr__(self) -> str:
        return f"<ProducerDB(id={self.id}, name='{self.name}')>"


class WineDB(Base):
    """
    Database model for wines (cuvée/product line).

    Represents a wine product independent of vintage year.
    """

    __tablename__ = "wines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    producer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("producers.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_nv: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    # Relationships
    producer: Mapped["ProducerDB"] = relationship("ProducerDB", back_populates="wines")
    vintages: Mapped[list["VintageDB"]] = relationship("VintageDB", back_populates="wine")

    def __repr__(self) -> str:
        return f"<WineDB(id={self.id}, name='{self.name}')>"


class VintageDB(Base):
    """
    Database model for a specific vintage of a wine.

    A null year means non-vintage; the (wine_id, year) constraint does
    not cover nulls, so the resolver serializes NV creation itself.
    """

    __tablename__ = "vintages"
    __table_args__ = (UniqueConstraint("wine_id", "year", name="uq_vintages_wine_year"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    wine_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("wines.id"), nullable=False, index=True
    )
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    abv: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    # Relationships
    wine: Mapped["WineDB"] = relationship("WineDB", back_populates="vintages")

    def __repr__(self) -> str:
        return f"<VintageDB(id={self.id}, wine_id={self.wine_id}, year={self.year})>"


class GrapeVarietyDB(Base):
    """Database model for grape varieties."""

    __tablename__ = "grape_varieties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    def __repr__(self) -> str:
        return f"<GrapeVarietyDB(id={self.id}, name='{self.name}')>"


class VintageVarietalDB(Base):
    """Grape composition of a vintage."""

    __tablename__ = "vintage_varietals"
    __table_args__ = (
        UniqueConstraint("vintage_id", "grape_variety_id", name="uq_vintage_varietals_pair"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    vintage_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vintages.id"), nullable=False, index=True
    )
    grape_variety_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("grape_varieties.id"), nullable=False
    )
    percent: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<VintageVarietalDB(vintage_id={self.vintage_id}, grape={self.grape_variety_id})>"


# Case-insensitive uniqueness
Index("uq_regions_name_country_lower", func.lower(RegionDB.name), func.lower(RegionDB.country), unique=True)
Index("uq_producers_name_lower", func.lower(ProducerDB.name), unique=True)
Index("uq_wines_producer_name_lower", WineDB.producer_id, func.lower(WineDB.name), unique=True)
Index("uq_grape_varieties_name_lower", func.lower(GrapeVarietyDB.name), unique=True)
