"""Bulk import of tasting history from CSV."""

import csv
import io
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from vinho.core.schema import ExtractedWineData, parse_vintage_year
from vinho.db.repositories import TastingRepository
from vinho.pipeline.resolver import EntityResolver

logger = logging.getLogger(__name__)

# Accepted column names, first match wins
COLUMN_ALIASES = {
    "producer": ["producer", "winery", "producer_name"],
    "wine_name": ["wine", "wine_name", "name", "cuvee"],
    "year": ["year", "vintage"],
    "rating": ["rating", "stars", "score"],
    "notes": ["notes", "note", "comment"],
    "tasted_at": ["tasted_at", "date", "tasting_date"],
    "region": ["region"],
    "country": ["country"],
}


@dataclass
class ImportResult:
    """Summary of a tasting import."""

    imported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "error_count": len(self.errors),
            "errors": self.errors,
        }


def _pick(row: dict[str, str], key: str) -> str:
    for column in COLUMN_ALIASES[key]:
        value = row.get(column)
        if value is not None and value.strip():
            return value.strip()
    return ""


def _parse_rating(value: str) -> int | None:
    if not value:
        return None
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"rating {value} is not a number")
    rating = round(number)
    if rating < 1 or rating > 5:
        raise ValueError(f"rating {value} is outside 1-5")
    return rating


def _parse_date(value: str) -> date:
    if not value:
        return datetime.now(UTC).date()
    return date.fromisoformat(value[:10])


class TastingImportService:
    """Imports tastings, resolving each wine against the catalog."""

    def __init__(self, session: Session):
        self.session = session
        self.resolver = EntityResolver(session)
        self.tastings = TastingRepository(session)

    def import_csv(self, user_id: str, content: str) -> ImportResult:
        """
        Import tastings from CSV text.

        A tasting is skipped when the user already has one for the same
        vintage on the same date. Bad rows are reported and do not stop
        the import. Commits once at the end.

        Args:
            user_id: Owner of the tastings
            content: CSV with a header row

        Returns:
            ImportResult with counts and per-row errors
        """
        result = ImportResult()
        reader = csv.DictReader(io.StringIO(content))
        if reader.fieldnames:
            reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]

        for line_number, row in enumerate(reader, start=2):
            try:
                self._import_row(user_id, row, result)
            except (ValueError, ValidationError) as e:
                result.errors.append(f"line {line_number}: {e}")
                logger.warning(f"Skipping tasting import line {line_number}: {e}")

        self.session.commit()
        logger.info(
            f"Imported {result.imported} tasting(s) for user {user_id} "
            f"({result.skipped} duplicate(s), {len(result.errors)} error(s))"
        )
        return result

    def _import_row(self, user_id: str, row: dict[str, str], result: ImportResult) -> None:
        producer = _pick(row, "producer")
        wine_name = _pick(row, "wine_name")
        if not producer or not wine_name:
            raise ValueError("producer and wine name are required")

        data = ExtractedWineData(
            producer=producer,
            wine_name=wine_name,
            year=parse_vintage_year(_pick(row, "year")),
            region=_pick(row, "region") or None,
            country=_pick(row, "country") or None,
            confidence=1.0,
        )
        rating = _parse_rating(_pick(row, "rating"))
        tasted_at = _parse_date(_pick(row, "tasted_at"))

        resolved = self.resolver.resolve(data)
        _, created = self.tastings.create_if_absent(
            user_id=user_id,
            vintage_id=resolved.vintage_id,
            tasted_at=tasted_at,
            rating=rating,
            notes=_pick(row, "notes"),
        )
        if created:
            result.imported += 1
        else:
            result.skipped += 1
