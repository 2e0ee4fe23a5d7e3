"""
Entity Resolver Module
======================

Resolves extracted label data to catalog entities (Region, Producer,
Wine, Vintage, grape varieties), creating whatever is missing.

Every insert runs inside a SAVEPOINT. When a concurrent writer wins the
race the unique index rejects the insert, the savepoint is rolled back
and the winner's row is selected instead, so two workers resolving the
same label converge on the same rows. Non-vintage wines have no
constraint to lean on (NULL years are never equal), so their vintage
lookup runs under a per-wine lock.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import Select, delete, func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vinho.core.schema import ExtractedWineData
from vinho.db.models_catalog import (
    GrapeVarietyDB,
    ProducerDB,
    RegionDB,
    VintageDB,
    VintageVarietalDB,
    WineDB,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Names that mark a wine as non-vintage when no year was read
NV_PATTERN = re.compile(
    r"\bNV\b|\bnon[- ]?vintage\b|\bmulti[- ]?vintage\b|\bsolera\b|\bperpetual\b",
    re.IGNORECASE,
)

# Producer columns filled from extracted location details
_PRODUCER_LOCATION_FIELDS = {
    "website": "producer_website",
    "address": "producer_address",
    "city": "producer_city",
    "postal_code": "producer_postal_code",
    "latitude": "latitude",
    "longitude": "longitude",
}


def is_non_vintage_name(name: str) -> bool:
    """Check whether a wine name marks it as non-vintage."""
    return bool(NV_PATTERN.search(name))


def split_percentages(count: int) -> float | None:
    """Equal share of a blend, rounded to two decimals."""
    if count <= 0:
        return None
    return round(100.0 / count, 2)


@dataclass
class ResolvedEntities:
    """Catalog rows a label resolved to."""

    producer_id: str
    wine_id: str
    vintage_id: str
    region_id: str | None = None
    grape_variety_ids: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)  # entity types inserted by this call

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "producer_id": self.producer_id,
            "wine_id": self.wine_id,
            "vintage_id": self.vintage_id,
            "region_id": self.region_id,
            "grape_variety_ids": self.grape_variety_ids,
            "created": self.created,
        }


class EntityResolver:
    """
    Resolves extracted wine data to catalog entities.

    Matching is exact and case-insensitive. The resolver flushes but
    never commits; the caller owns the transaction (and with it any
    lock taken for a non-vintage wine).
    """

    def __init__(self, session: Session) -> None:
        """
        Initialize the resolver.

        Args:
            session: SQLAlchemy database session
        """
        self.session = session

    def resolve(self, data: ExtractedWineData) -> ResolvedEntities:
        """
        Resolve extracted data to a vintage, creating missing entities.

        Args:
            data: Validated extraction result

        Returns:
            ResolvedEntities with the ids of every row involved
        """
        created: list[str] = []

        region_id = None
        if data.region:
            region, was_created = self.resolve_region(data.region, data.country)
            region_id = region.id
            if was_created:
                created.append("region")

        producer, was_created = self.resolve_producer(data.producer, region_id, data)
        if was_created:
            created.append("producer")

        wine, was_created = self.resolve_wine(producer.id, data.wine_name, data.year)
        if was_created:
            created.append("wine")

        vintage, was_created = self.resolve_vintage(wine.id, data.year, data.abv_percent)
        if was_created:
            created.append("vintage")

        grape_ids: list[str] = []
        if data.varietals:
            grape_ids = self.set_varietals(vintage.id, data.varietals)

        self.session.flush()

        if created:
            logger.info(
                f"Resolved '{data.producer} / {data.wine_name}' to vintage {vintage.id} "
                f"(created: {', '.join(created)})"
            )

        return ResolvedEntities(
            producer_id=producer.id,
            wine_id=wine.id,
            vintage_id=vintage.id,
            region_id=region_id,
            grape_variety_ids=grape_ids,
            created=created,
        )

    # ------------------------------------------------------------------
    # Entity lookups
    # ------------------------------------------------------------------

    def resolve_region(self, name: str, country: str | None) -> tuple[RegionDB, bool]:
        """Find or create a region by case-insensitive name and country."""
        name = name.strip()
        country = (country or "").strip()
        lookup = (
            select(RegionDB)
            .where(func.lower(RegionDB.name) == func.lower(name))
            .where(func.lower(RegionDB.country) == func.lower(country))
        )
        return self._get_or_create(lookup, lambda: RegionDB(name=name, country=country))

    def resolve_producer(
        self,
        name: str,
        region_id: str | None = None,
        details: ExtractedWineData | None = None,
    ) -> tuple[ProducerDB, bool]:
        """
        Find or create a producer by case-insensitive name.

        Location details present in `details` are written onto the
        producer whether it is new or existing.
        """
        name = name.strip()
        lookup = select(ProducerDB).where(func.lower(ProducerDB.name) == func.lower(name))
        producer, created = self._get_or_create(
            lookup, lambda: ProducerDB(name=name, region_id=region_id)
        )

        if region_id and producer.region_id is None:
            producer.region_id = region_id
        if details is not None:
            for column, attr in _PRODUCER_LOCATION_FIELDS.items():
                value = getattr(details, attr)
                if value is not None:
                    setattr(producer, column, value)

        return producer, created

    def resolve_wine(
        self, producer_id: str, name: str, year: int | None = None
    ) -> tuple[WineDB, bool]:
        """Find or create a wine by producer and case-insensitive name."""
        name = name.strip()
        lookup = (
            select(WineDB)
            .where(WineDB.producer_id == producer_id)
            .where(func.lower(WineDB.name) == func.lower(name))
        )
        is_nv = year is None and is_non_vintage_name(name)
        return self._get_or_create(
            lookup, lambda: WineDB(producer_id=producer_id, name=name, is_nv=is_nv)
        )

    def resolve_vintage(
        self, wine_id: str, year: int | None, abv: float | None = None
    ) -> tuple[VintageDB, bool]:
        """
        Find or create the vintage of a wine.

        With a year, (wine_id, year) is unique and the usual
        insert-or-reselect applies. Without one, the wine is locked
        first and an existing non-vintage row is reused.
        """
        if year is not None:
            lookup = select(VintageDB).where(VintageDB.wine_id == wine_id).where(VintageDB.year == year)
            vintage, created = self._get_or_create(
                lookup, lambda: VintageDB(wine_id=wine_id, year=year, abv=abv)
            )
        else:
            self._lock_wine(wine_id)
            lookup = (
                select(VintageDB)
                .where(VintageDB.wine_id == wine_id)
                .where(VintageDB.year.is_(None))
                .order_by(VintageDB.created_at, VintageDB.id)
            )
            vintage = self.session.execute(lookup).scalars().first()
            created = vintage is None
            if vintage is None:
                vintage = VintageDB(wine_id=wine_id, year=None, abv=abv)
                self.session.add(vintage)
                self.session.flush()

        if abv is not None and vintage.abv != abv:
            vintage.abv = abv

        return vintage, created

    def set_varietals(self, vintage_id: str, varietals: list[str]) -> list[str]:
        """
        Replace the grape composition of a vintage.

        Grapes are shared equally, percentages rounded to two decimals.

        Returns:
            Grape variety ids in input order
        """
        names: list[str] = []
        seen: set[str] = set()
        for name in varietals:
            key = name.strip().lower()
            if key and key not in seen:
                seen.add(key)
                names.append(name.strip())

        self.session.execute(
            delete(VintageVarietalDB).where(VintageVarietalDB.vintage_id == vintage_id)
        )

        percent = split_percentages(len(names))
        grape_ids = []
        for name in names:
            lookup = select(GrapeVarietyDB).where(
                func.lower(GrapeVarietyDB.name) == func.lower(name)
            )
            grape, _ = self._get_or_create(lookup, lambda: GrapeVarietyDB(name=name))
            self.session.add(
                VintageVarietalDB(vintage_id=vintage_id, grape_variety_id=grape.id, percent=percent)
            )
            grape_ids.append(grape.id)

        self.session.flush()
        return grape_ids

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_or_create(self, lookup: Select[Any], build: Callable[[], T]) -> tuple[T, bool]:
        """
        Select a row, inserting it if absent.

        Returns:
            Tuple of (row, created)
        """
        existing = self.session.execute(lookup).scalars().first()
        if existing is not None:
            return existing, False

        item = build()
        try:
            with self.session.begin_nested():
                self.session.add(item)
        except IntegrityError:
            # Lost the insert race; take the row the other writer committed
            existing = self.session.execute(lookup).scalars().first()
            if existing is None:
                raise
            logger.debug(f"Concurrent insert detected, reusing {existing!r}")
            return existing, False

        return item, True

    def _lock_wine(self, wine_id: str) -> None:
        """
        Serialize non-vintage resolution for one wine until commit.

        SQLite needs nothing: transactions begin IMMEDIATE and writers
        are already serialized.
        """
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            self.session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
                {"lock_key": f"nv-vintage:{wine_id}"},
            )
        elif dialect != "sqlite":
            self.session.execute(select(WineDB.id).where(WineDB.id == wine_id).with_for_update())
