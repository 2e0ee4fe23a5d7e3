"""Similarity query engine: visually similar wines for a user.

Recommendations are derived from the user's own tasting history. The
best-rated wines (or, failing that, the most relevant tasted wines)
become source wines; each source's label embedding is looked up in the
vector index and its nearest neighbours are merged, filtered and ranked.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from vinho.config import SimilarityConfig, get_default_config
from vinho.core.enums import RecommendationType
from vinho.core.errors import SimilarityServiceError
from vinho.core.schema import SimilarWine, SimilarWinesResponse
from vinho.db.repositories import CatalogRepository, TastingRepository
from vinho.services.vector_index import VectorIndex, wine_vector_key

logger = logging.getLogger(__name__)

MESSAGE_NO_TASTINGS = "Scan and rate a few wines to get recommendations."
MESSAGE_NO_EMBEDDINGS = "Your wines don't have label images indexed yet. Check back soon."
MESSAGE_NO_MATCHES = "No similar wines found. Try lowering the similarity threshold."


@dataclass
class SimilarityCandidate:
    """A neighbour found for one of the user's source wines."""

    wine_id: str
    similarity: float
    source_wine_id: str
    image_url: str | None = None


class SimilarityService:
    """Finds catalog wines that look like the wines a user enjoyed."""

    def __init__(
        self,
        session: Session,
        index: VectorIndex,
        config: SimilarityConfig | None = None,
    ):
        self.session = session
        self.index = index
        self.config = config or get_default_config().similarity
        self.tastings = TastingRepository(session)
        self.catalog = CatalogRepository(session)

    def clamp_limit(self, limit: int | None) -> int:
        """Clamp a requested result count into 1..max_limit."""
        if limit is None:
            return self.config.default_limit
        return max(1, min(int(limit), self.config.max_limit))

    def clamp_threshold(self, threshold: float | None) -> float:
        """Clamp a requested similarity threshold into 0..1."""
        if threshold is None:
            return self.config.default_threshold
        return max(0.0, min(float(threshold), 1.0))

    def select_sources(self, user_id: str) -> tuple[list[str], RecommendationType]:
        """
        Pick the wines recommendations will be based on.

        Tastings are ordered by rating, then recency; each wine counts
        once (its best-ranked tasting). With enough highly rated wines
        only those are used, otherwise the top tasted wines are.

        Returns:
            (source wine ids, recommendation type)
        """
        history = self.tastings.list_history(user_id, self.config.history_window)
        if not history:
            return [], RecommendationType.NONE

        unique: list[tuple[str, int | None]] = []
        seen: set[str] = set()
        for tasting, wine_id in history:
            if wine_id in seen:
                continue
            seen.add(wine_id)
            unique.append((wine_id, tasting.rating))

        high_rated = [
            wine_id
            for wine_id, rating in unique
            if rating is not None and rating >= self.config.high_rating
        ]
        if len(high_rated) >= self.config.min_high_rated:
            return high_rated[: self.config.max_source_wines], RecommendationType.PERSONALIZED

        all_wines = [wine_id for wine_id, _ in unique]
        return all_wines[: self.config.max_source_wines], RecommendationType.YOUR_FAVORITES

    def similar_for_user(
        self,
        user_id: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> SimilarWinesResponse:
        """
        Find wines visually similar to the user's tasted wines.

        Wines the user has already tasted are never returned. Results are
        ordered by similarity, ties keeping the order they were found in.

        Args:
            user_id: The user to recommend for
            limit: Maximum results (default 10, clamped to 1..20)
            threshold: Minimum similarity (default 0.60, clamped to 0..1)

        Returns:
            SimilarWinesResponse

        Raises:
            SimilarityServiceError: If the index or database is unavailable
        """
        limit = self.clamp_limit(limit)
        threshold = self.clamp_threshold(threshold)

        try:
            sources, recommendation_type = self.select_sources(user_id)
            tasted = self.tastings.tasted_wine_ids(user_id) if sources else set()
        except OperationalError as e:
            raise SimilarityServiceError(f"Database unavailable: {e}") from e
        finally:
            self._end_read()

        if not sources:
            return SimilarWinesResponse(
                recommendation_type=RecommendationType.NONE,
                message=MESSAGE_NO_TASTINGS,
            )

        # No transaction is open while the index is queried
        candidates, sources_with_vectors = self._collect_candidates(
            sources, tasted, limit, threshold
        )
        ranked = sorted(candidates, key=lambda c: c.similarity, reverse=True)

        try:
            similar_wines = self._enrich(ranked, limit)
        except OperationalError as e:
            raise SimilarityServiceError(f"Database unavailable: {e}") from e
        finally:
            self._end_read()

        message = None
        if not similar_wines:
            message = MESSAGE_NO_MATCHES if sources_with_vectors else MESSAGE_NO_EMBEDDINGS

        logger.info(
            f"Similarity for user {user_id}: {len(similar_wines)} result(s) from "
            f"{len(sources)} source wine(s) ({recommendation_type.value})"
        )
        return SimilarWinesResponse(
            similar_wines=similar_wines,
            count=len(similar_wines),
            based_on_count=len(sources),
            recommendation_type=recommendation_type,
            message=message,
        )

    def _collect_candidates(
        self,
        sources: list[str],
        tasted: set[str],
        limit: int,
        threshold: float,
    ) -> tuple[list[SimilarityCandidate], int]:
        """
        Query neighbours of every source and merge them by wine.

        Each wine keeps its best similarity and the source that produced
        it. Sources without an embedding are skipped.

        Returns:
            (candidates in first-seen order, number of sources with vectors)
        """
        top_k = limit + len(tasted) + self.config.top_k_margin
        merged: dict[str, SimilarityCandidate] = {}
        sources_with_vectors = 0

        for source_wine_id in sources:
            vector = self.index.get_vector(wine_vector_key(source_wine_id))
            if vector is None:
                logger.debug(f"No embedding for source wine {source_wine_id}, skipping")
                continue
            sources_with_vectors += 1

            for match in self.index.query_vectors(vector, top_k, return_distance=True, return_metadata=True):
                wine_id = match.wine_id
                if not wine_id or wine_id in tasted or match.distance is None:
                    continue
                similarity = max(0.0, min(1.0, 1.0 - match.distance))
                if similarity < threshold:
                    continue

                current = merged.get(wine_id)
                if current is None or similarity > current.similarity:
                    merged[wine_id] = SimilarityCandidate(
                        wine_id=wine_id,
                        similarity=similarity,
                        source_wine_id=source_wine_id,
                        image_url=match.metadata.get("image_url"),
                    )

        return list(merged.values()), sources_with_vectors

    def _end_read(self) -> None:
        """
        Close the current read transaction.

        SQLite transactions begin IMMEDIATE and hold the write lock, so
        the lock must not be kept across vector index calls. The service
        never writes, so rolling back discards nothing.
        """
        self.session.rollback()

    def _enrich(self, ranked: list[SimilarityCandidate], limit: int) -> list[SimilarWine]:
        """Attach catalog details, dropping wines no longer in the catalog."""
        summaries = self.catalog.get_wine_summaries([c.wine_id for c in ranked])
        results = []
        for candidate in ranked:
            summary = summaries.get(candidate.wine_id)
            if summary is None:
                logger.debug(f"Wine {candidate.wine_id} is indexed but not in the catalog")
                continue
            results.append(
                SimilarWine(
                    wine_id=candidate.wine_id,
                    wine_name=summary["wine_name"],
                    producer_name=summary["producer_name"],
                    similarity=round(candidate.similarity, 4),
                    image_url=candidate.image_url,
                    region=summary["region"],
                    country=summary["country"],
                    source_wine_id=candidate.source_wine_id,
                )
            )
            if len(results) >= limit:
                break
        return results
