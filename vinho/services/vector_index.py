"""Vector similarity index for wine label embeddings.

The similarity engine only needs two operations, fetching a wine's
vector and querying its nearest neighbours, so the index sits behind a
narrow interface. The production implementation uses Meilisearch's
vector search with a user-provided embedder.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from meilisearch import Client
from meilisearch.errors import (
    MeilisearchApiError,
    MeilisearchCommunicationError,
    MeilisearchTimeoutError,
)

from vinho.config import get_default_config
from vinho.core.errors import SimilarityServiceError

logger = logging.getLogger(__name__)

WINE_KEY_PREFIX = "wine_"
DEFAULT_INDEX = "wine_embeddings"
DEFAULT_EMBEDDER = "label"

# Fields Meilisearch adds to hits that are not wine metadata
_INTERNAL_FIELDS = {"id", "_vectors", "_rankingScore", "_rankingScoreDetails", "_formatted"}


def wine_vector_key(wine_id: str) -> str:
    """Index key for a wine's label embedding."""
    return f"{WINE_KEY_PREFIX}{wine_id}"


@dataclass
class VectorMatch:
    """A nearest-neighbour hit from the index."""

    key: str
    distance: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def wine_id(self) -> str | None:
        """Wine id from metadata, falling back to the key prefix."""
        wine_id = self.metadata.get("wine_id")
        if wine_id:
            return str(wine_id)
        if self.key.startswith(WINE_KEY_PREFIX):
            return self.key[len(WINE_KEY_PREFIX):] or None
        return None


class VectorIndex(ABC):
    """Abstract vector similarity index."""

    @abstractmethod
    def get_vector(self, key: str) -> list[float] | None:
        """
        Fetch the stored vector for a key.

        Returns:
            The vector, or None if the key has no embedding

        Raises:
            SimilarityServiceError: If the index is unavailable
        """
        pass

    @abstractmethod
    def query_vectors(
        self,
        vector: list[float],
        top_k: int,
        return_distance: bool = True,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        """
        Find the nearest neighbours of a vector.

        Returns:
            Up to top_k matches, nearest first

        Raises:
            SimilarityServiceError: If the index is unavailable
        """
        pass


class MeilisearchVectorIndex(VectorIndex):
    """Vector index backed by Meilisearch vector search."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        index_name: str = DEFAULT_INDEX,
        embedder: str = DEFAULT_EMBEDDER,
        client: Client | None = None,
    ):
        """
        Initialize the index.

        Args:
            url: Meilisearch server URL (default: MEILISEARCH_URL env or localhost:7700)
            api_key: Meilisearch API key (default: MEILISEARCH_API_KEY env or None)
            index_name: Index holding one document per wine
            embedder: Name of the embedder the label vectors are stored under
            client: Pre-built client (mainly for tests)
        """
        self.url = url or os.getenv("MEILISEARCH_URL", "http://localhost:7700")
        self.api_key = api_key or os.getenv("MEILISEARCH_API_KEY")
        self.embedder = embedder
        self.client = client or Client(self.url, self.api_key)
        self.index = self.client.index(index_name)

    def get_vector(self, key: str) -> list[float] | None:
        """Fetch a document's stored embedding."""
        try:
            document = self.index.get_document(key, {"retrieveVectors": True})
        except MeilisearchApiError as e:
            if getattr(e, "code", None) == "document_not_found":
                return None
            raise SimilarityServiceError(f"Vector index error fetching {key}: {e}") from e
        except (MeilisearchCommunicationError, MeilisearchTimeoutError) as e:
            raise SimilarityServiceError(f"Vector index unavailable: {e}") from e

        if isinstance(document, dict):
            vectors = document.get("_vectors")
        else:
            vectors = getattr(document, "_vectors", None)
        return self._extract_embedding(vectors)

    def query_vectors(
        self,
        vector: list[float],
        top_k: int,
        return_distance: bool = True,
        return_metadata: bool = True,
    ) -> list[VectorMatch]:
        """Run a pure semantic search; distance is 1 - ranking score."""
        try:
            response = self.index.search(
                "",
                {
                    "vector": vector,
                    "hybrid": {"embedder": self.embedder, "semanticRatio": 1.0},
                    "limit": top_k,
                    "showRankingScore": True,
                    "retrieveVectors": False,
                },
            )
        except MeilisearchApiError as e:
            raise SimilarityServiceError(f"Vector query failed: {e}") from e
        except (MeilisearchCommunicationError, MeilisearchTimeoutError) as e:
            raise SimilarityServiceError(f"Vector index unavailable: {e}") from e

        matches = []
        for hit in response.get("hits", []):
            score = hit.get("_rankingScore")
            distance = None
            if return_distance and score is not None:
                distance = 1.0 - float(score)
            metadata = {}
            if return_metadata:
                metadata = {k: v for k, v in hit.items() if k not in _INTERNAL_FIELDS}
            matches.append(VectorMatch(key=str(hit.get("id", "")), distance=distance, metadata=metadata))
        return matches

    def _extract_embedding(self, vectors: Any) -> list[float] | None:
        """Pull this embedder's vector out of a document's _vectors field."""
        if not isinstance(vectors, dict):
            return None
        entry = vectors.get(self.embedder)
        if isinstance(entry, dict):
            entry = entry.get("embeddings")
        if not entry:
            return None
        # Either a single vector or a list of vectors
        if isinstance(entry[0], list):
            entry = entry[0]
        return [float(x) for x in entry]


def get_vector_index(url: str | None = None, index_name: str | None = None) -> VectorIndex:
    """Create the configured vector index."""
    settings = get_default_config().vector_index
    return MeilisearchVectorIndex(
        url=url or settings.url,
        api_key=settings.api_key,
        index_name=index_name or settings.index_name,
        embedder=settings.embedder,
    )
