"""Tests for the Meilisearch-backed vector index."""

from unittest.mock import MagicMock

import pytest
from meilisearch.errors import MeilisearchCommunicationError

from vinho.core.errors import SimilarityServiceError
from vinho.services.vector_index import MeilisearchVectorIndex, VectorMatch, wine_vector_key


@pytest.fixture
def mock_client():
    """Create a mock Meilisearch client."""
    mock_client = MagicMock()
    mock_index = MagicMock()
    mock_index.search.return_value = {"hits": []}
    mock_client.index.return_value = mock_index
    return mock_client


@pytest.fixture
def vector_index(mock_client):
    """Create an index with the mocked client."""
    return MeilisearchVectorIndex(url="http://localhost:7700", client=mock_client)


class TestVectorMatch:
    """Tests for VectorMatch."""

    def test_wine_id_from_metadata(self) -> None:
        assert VectorMatch(key="doc-1", metadata={"wine_id": "w1"}).wine_id == "w1"

    def test_wine_id_from_key(self) -> None:
        assert VectorMatch(key=wine_vector_key("w2")).wine_id == "w2"

    def test_unrecognized_key(self) -> None:
        assert VectorMatch(key="producer_1").wine_id is None


class TestMeilisearchVectorIndex:
    """Tests for MeilisearchVectorIndex."""

    def test_get_vector(self, vector_index, mock_client) -> None:
        """Test the embedder's vector is read from _vectors."""
        mock_client.index.return_value.get_document.return_value = {
            "id": "wine_w1",
            "_vectors": {"label": {"embeddings": [[0.1, 0.2, 0.3]], "regenerate": False}},
        }

        assert vector_index.get_vector("wine_w1") == [0.1, 0.2, 0.3]
        mock_client.index.return_value.get_document.assert_called_once_with(
            "wine_w1", {"retrieveVectors": True}
        )

    def test_get_vector_flat_embedding(self, vector_index, mock_client) -> None:
        """Test a single unnested vector is accepted."""
        mock_client.index.return_value.get_document.return_value = {"_vectors": {"label": [1, 2]}}
        assert vector_index.get_vector("wine_w1") == [1.0, 2.0]

    def test_get_vector_missing_embedding(self, vector_index, mock_client) -> None:
        """Test a document without this embedder has no vector."""
        mock_client.index.return_value.get_document.return_value = {"_vectors": {"other": [1.0]}}
        assert vector_index.get_vector("wine_w1") is None

    def test_get_vector_unreachable(self, vector_index, mock_client) -> None:
        """Test connection errors become SimilarityServiceError."""
        mock_client.index.return_value.get_document.side_effect = MeilisearchCommunicationError("refused")

        with pytest.raises(SimilarityServiceError):
            vector_index.get_vector("wine_w1")

    def test_query_vectors(self, vector_index, mock_client) -> None:
        """Test hits become matches with distance 1 - ranking score."""
        mock_client.index.return_value.search.return_value = {
            "hits": [
                {"id": "wine_a", "wine_id": "a", "image_url": "https://x/a.jpg", "_rankingScore": 0.75},
                {"id": "wine_b", "_rankingScore": 0.5},
            ]
        }

        matches = vector_index.query_vectors([0.1, 0.2], top_k=7)

        assert [m.wine_id for m in matches] == ["a", "b"]
        assert matches[0].distance == 0.25
        assert matches[0].metadata == {"wine_id": "a", "image_url": "https://x/a.jpg"}
        query, params = mock_client.index.return_value.search.call_args.args
        assert query == ""
        assert params["vector"] == [0.1, 0.2]
        assert params["limit"] == 7
        assert params["hybrid"] == {"embedder": "label", "semanticRatio": 1.0}

    def test_query_unreachable(self, vector_index, mock_client) -> None:
        """Test search errors become SimilarityServiceError."""
        mock_client.index.return_value.search.side_effect = MeilisearchCommunicationError("refused")

        with pytest.raises(SimilarityServiceError):
            vector_index.query_vectors([0.1], top_k=3)
