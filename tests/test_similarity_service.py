"""Tests for the similarity query engine."""

import tempfile
import threading
import time
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from vinho.config import SimilarityConfig
from vinho.core.enums import RecommendationType
from vinho.core.errors import SimilarityServiceError
from vinho.db.engine import create_db_engine
from vinho.db.models import Base, TastingDB
from vinho.db.models_catalog import ProducerDB, RegionDB, VintageDB, WineDB
from vinho.db.repositories import QueueJobRepository
from vinho.pipeline.claimer import JobClaimer
from vinho.services.similarity_service import (
    MESSAGE_NO_EMBEDDINGS,
    MESSAGE_NO_MATCHES,
    MESSAGE_NO_TASTINGS,
    SimilarityService,
)
from vinho.services.vector_index import VectorIndex, VectorMatch, wine_vector_key


class FakeVectorIndex(VectorIndex):
    """In-memory index: stored vectors and canned neighbour lists."""

    def __init__(self):
        self.vectors: dict[str, list[float]] = {}
        self.neighbours: dict[tuple[float, ...], list[VectorMatch]] = {}
        self.queries: list[int] = []

    def add(self, wine_id: str, vector: list[float], neighbours: list[tuple[str, float]]) -> None:
        self.vectors[wine_vector_key(wine_id)] = vector
        self.neighbours[tuple(vector)] = [
            VectorMatch(key=wine_vector_key(other), distance=distance, metadata={"wine_id": other})
            for other, distance in neighbours
        ]

    def get_vector(self, key):
        return self.vectors.get(key)

    def query_vectors(self, vector, top_k, return_distance=True, return_metadata=True):
        self.queries.append(top_k)
        return self.neighbours.get(tuple(vector), [])[:top_k]


class UnavailableIndex(VectorIndex):
    """Index whose backend is down."""

    def get_vector(self, key):
        raise SimilarityServiceError("Vector index unavailable: connection refused")

    def query_vectors(self, vector, top_k, return_distance=True, return_metadata=True):
        raise SimilarityServiceError("Vector index unavailable: connection refused")


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_similarity.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    engine = create_db_engine(temp_db_path)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def catalog(session: Session) -> dict[str, str]:
    """Wines keyed by a short label; each has a single 2018 vintage."""
    region = RegionDB(name="Rioja", country="Spain")
    session.add(region)
    session.flush()
    producer = ProducerDB(name="Bodega Uno", region_id=region.id)
    session.add(producer)
    session.flush()

    wines = {}
    for label in ["A", "B", "C", "D", "X", "Y", "Z"]:
        wine = WineDB(producer_id=producer.id, name=f"Wine {label}")
        session.add(wine)
        session.flush()
        session.add(VintageDB(wine_id=wine.id, year=2018))
        wines[label] = wine.id
    session.commit()
    return wines


def _taste(session: Session, wine_id: str, rating: int | None, tasted_at: date, user_id="user-1") -> None:
    vintage = session.execute(select(VintageDB).where(VintageDB.wine_id == wine_id)).scalars().first()
    session.add(TastingDB(user_id=user_id, vintage_id=vintage.id, rating=rating, tasted_at=tasted_at))
    session.commit()


@pytest.fixture
def rated_history(session: Session, catalog: dict[str, str]) -> dict[str, str]:
    """User-1 rated A=5, B=4, C=2, D=5."""
    _taste(session, catalog["A"], 5, date(2025, 1, 1))
    _taste(session, catalog["B"], 4, date(2025, 1, 2))
    _taste(session, catalog["C"], 2, date(2025, 1, 3))
    _taste(session, catalog["D"], 5, date(2025, 1, 4))
    return catalog


class TestSourceSelection:
    """Tests for choosing the wines recommendations are based on."""

    def test_high_rated_wines_are_sources(self, session, rated_history) -> None:
        """Test wines rated 4 or more are used when at least two exist."""
        service = SimilarityService(session, FakeVectorIndex(), SimilarityConfig())

        sources, kind = service.select_sources("user-1")

        assert kind == RecommendationType.PERSONALIZED
        # Rating desc, then most recent first
        assert sources == [rated_history["D"], rated_history["A"], rated_history["B"]]

    def test_falls_back_to_all_tasted(self, session, catalog) -> None:
        """Test fewer than two high ratings uses every tasted wine."""
        _taste(session, catalog["A"], 5, date(2025, 1, 1))
        _taste(session, catalog["B"], 2, date(2025, 1, 2))
        _taste(session, catalog["C"], None, date(2025, 1, 3))
        service = SimilarityService(session, FakeVectorIndex(), SimilarityConfig())

        sources, kind = service.select_sources("user-1")

        assert kind == RecommendationType.YOUR_FAVORITES
        assert sources == [catalog["A"], catalog["B"], catalog["C"]]

    def test_each_wine_counted_once(self, session, catalog) -> None:
        """Test repeated tastings of one wine give a single source."""
        _taste(session, catalog["A"], 5, date(2025, 1, 1))
        _taste(session, catalog["A"], 4, date(2025, 2, 1))
        service = SimilarityService(session, FakeVectorIndex(), SimilarityConfig())

        sources, kind = service.select_sources("user-1")

        assert sources == [catalog["A"]]
        assert kind == RecommendationType.YOUR_FAVORITES

    def test_sources_capped(self, session, catalog) -> None:
        """Test at most five source wines are used."""
        for i, label in enumerate(["A", "B", "C", "D", "X", "Y", "Z"]):
            _taste(session, catalog[label], 5, date(2025, 1, i + 1))
        service = SimilarityService(session, FakeVectorIndex(), SimilarityConfig())

        sources, _ = service.select_sources("user-1")

        assert len(sources) == 5


class TestSimilarForUser:
    """Tests for SimilarityService.similar_for_user."""

    def test_no_tastings(self, session, catalog) -> None:
        """Test a user without history gets an explanatory empty response."""
        response = SimilarityService(session, FakeVectorIndex()).similar_for_user("user-1")

        assert response.similar_wines == []
        assert response.count == 0
        assert response.based_on_count == 0
        assert response.recommendation_type == RecommendationType.NONE
        assert response.message == MESSAGE_NO_TASTINGS

    def test_personalized_results(self, session, rated_history) -> None:
        """Test neighbours are merged, filtered and ranked."""
        wines = rated_history
        index = FakeVectorIndex()
        index.add(wines["D"], [1.0, 0.0], [(wines["D"], 0.0), (wines["X"], 0.3), (wines["Y"], 0.2)])
        index.add(wines["A"], [0.0, 1.0], [(wines["X"], 0.1), (wines["C"], 0.05), (wines["Z"], 0.5)])
        service = SimilarityService(session, index, SimilarityConfig())

        response = service.similar_for_user("user-1", limit=10, threshold=0.6)

        assert response.recommendation_type == RecommendationType.PERSONALIZED
        assert response.based_on_count == 3
        assert [w.wine_id for w in response.similar_wines] == [wines["X"], wines["Y"]]
        best = response.similar_wines[0]
        assert best.similarity == 0.9
        assert best.source_wine_id == wines["A"]
        assert best.wine_name == "Wine X"
        assert best.producer_name == "Bodega Uno"
        assert best.region == "Rioja"
        assert best.country == "Spain"
        assert response.similar_wines[1].similarity == 0.8
        assert response.count == 2
        assert response.message is None

    def test_tasted_wines_never_returned(self, session, rated_history) -> None:
        """Test wines the user has tasted are excluded, even low rated ones."""
        wines = rated_history
        index = FakeVectorIndex()
        index.add(wines["A"], [1.0], [(wines["C"], 0.0), (wines["B"], 0.0), (wines["X"], 0.2)])
        service = SimilarityService(session, index)

        response = service.similar_for_user("user-1")

        assert [w.wine_id for w in response.similar_wines] == [wines["X"]]

    def test_threshold_filters(self, session, rated_history) -> None:
        """Test matches below the threshold are dropped."""
        wines = rated_history
        index = FakeVectorIndex()
        index.add(wines["A"], [1.0], [(wines["X"], 0.2), (wines["Y"], 0.5)])
        service = SimilarityService(session, index)

        strict = service.similar_for_user("user-1", threshold=0.6)
        loose = service.similar_for_user("user-1", threshold=0.4)

        assert [w.wine_id for w in strict.similar_wines] == [wines["X"]]
        assert [w.wine_id for w in loose.similar_wines] == [wines["X"], wines["Y"]]

    def test_limit(self, session, rated_history) -> None:
        """Test results are truncated to the limit."""
        wines = rated_history
        index = FakeVectorIndex()
        index.add(wines["A"], [1.0], [(wines["X"], 0.1), (wines["Y"], 0.2), (wines["Z"], 0.3)])
        service = SimilarityService(session, index)

        response = service.similar_for_user("user-1", limit=2)

        assert response.count == 2
        assert [w.wine_id for w in response.similar_wines] == [wines["X"], wines["Y"]]

    def test_top_k_leaves_room_for_exclusions(self, session, rated_history) -> None:
        """Test the index is asked for limit + tasted + margin neighbours."""
        index = FakeVectorIndex()
        index.add(rated_history["A"], [1.0], [])
        service = SimilarityService(session, index, SimilarityConfig())

        service.similar_for_user("user-1", limit=3)

        assert index.queries == [3 + 4 + 5]

    def test_no_embeddings(self, session, rated_history) -> None:
        """Test a user whose wines have no vectors gets a hint."""
        response = SimilarityService(session, FakeVectorIndex()).similar_for_user("user-1")

        assert response.similar_wines == []
        assert response.based_on_count == 3
        assert response.recommendation_type == RecommendationType.PERSONALIZED
        assert response.message == MESSAGE_NO_EMBEDDINGS

    def test_no_matches(self, session, rated_history) -> None:
        """Test vectors with no close neighbours report no matches."""
        index = FakeVectorIndex()
        index.add(rated_history["A"], [1.0], [(rated_history["X"], 0.9)])

        response = SimilarityService(session, index).similar_for_user("user-1")

        assert response.similar_wines == []
        assert response.message == MESSAGE_NO_MATCHES

    def test_indexed_wine_missing_from_catalog(self, session, rated_history) -> None:
        """Test index entries without a catalog row are skipped."""
        index = FakeVectorIndex()
        index.add(rated_history["A"], [1.0], [("deleted-wine", 0.05), (rated_history["Y"], 0.1)])

        response = SimilarityService(session, index).similar_for_user("user-1")

        assert [w.wine_id for w in response.similar_wines] == [rated_history["Y"]]

    def test_parameters_are_clamped(self, session) -> None:
        """Test out-of-range limit and threshold are clamped."""
        service = SimilarityService(session, FakeVectorIndex(), SimilarityConfig())

        assert service.clamp_limit(None) == 10
        assert service.clamp_limit(0) == 1
        assert service.clamp_limit(100) == 20
        assert service.clamp_threshold(None) == 0.6
        assert service.clamp_threshold(-1) == 0.0
        assert service.clamp_threshold(1.5) == 1.0

    def test_index_unavailable(self, session, rated_history) -> None:
        """Test index failures surface as SimilarityServiceError."""
        service = SimilarityService(session, UnavailableIndex())

        with pytest.raises(SimilarityServiceError):
            service.similar_for_user("user-1")

    def test_other_users_tastings_ignored(self, session, catalog) -> None:
        """Test only the caller's history is used."""
        _taste(session, catalog["A"], 5, date(2025, 1, 1), user_id="user-2")

        response = SimilarityService(session, FakeVectorIndex()).similar_for_user("user-1")

        assert response.message == MESSAGE_NO_TASTINGS

    def test_repeat_tasting_counts_once_for_personalization(self, session, catalog) -> None:
        """Test ratings 5, 4, 2 and a second 5 for the first wine use the two high-rated wines."""
        _taste(session, catalog["A"], 5, date(2025, 1, 1))
        _taste(session, catalog["B"], 4, date(2025, 1, 2))
        _taste(session, catalog["C"], 2, date(2025, 1, 3))
        _taste(session, catalog["A"], 5, date(2025, 1, 4))
        index = FakeVectorIndex()
        index.add(catalog["A"], [1.0], [(catalog["X"], 0.2)])

        response = SimilarityService(session, index).similar_for_user("user-1")

        assert response.recommendation_type == RecommendationType.PERSONALIZED
        assert response.based_on_count == 2
        assert [w.wine_id for w in response.similar_wines] == [catalog["X"]]

    def test_equal_similarities_keep_source_order(self, session, rated_history) -> None:
        """Test ties are ordered by the source wine that found them first."""
        wines = rated_history
        index = FakeVectorIndex()
        # Sources are D, A, B in that order
        index.add(wines["D"], [1.0, 0.0], [(wines["Y"], 0.2), (wines["Z"], 0.2)])
        index.add(wines["A"], [0.0, 1.0], [(wines["X"], 0.2)])
        service = SimilarityService(session, index, SimilarityConfig())

        first = service.similar_for_user("user-1")
        second = service.similar_for_user("user-1")

        expected = [wines["Y"], wines["Z"], wines["X"]]
        assert [w.wine_id for w in first.similar_wines] == expected
        assert [w.wine_id for w in second.similar_wines] == expected
        assert {w.similarity for w in first.similar_wines} == {0.8}


class SlowVectorIndex(FakeVectorIndex):
    """Index whose lookups wait until the test releases them."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def get_vector(self, key):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().get_vector(key)


class TestConcurrency:
    """Tests for similarity queries running next to queue work."""

    def test_slow_index_does_not_block_claims(self, engine, rated_history) -> None:
        """Test a claim succeeds while a similarity query waits on the index."""
        wines = rated_history
        factory = sessionmaker(bind=engine)
        with factory() as setup:
            QueueJobRepository(setup).create(user_id="user-2", image_url="https://x/label.jpg")
            setup.commit()

        index = SlowVectorIndex()
        index.add(wines["A"], [1.0], [(wines["X"], 0.1)])
        results = {}

        def query() -> None:
            with factory() as query_session:
                results["response"] = SimilarityService(query_session, index).similar_for_user("user-1")

        thread = threading.Thread(target=query)
        thread.start()
        try:
            assert index.entered.wait(timeout=5)
            started = time.monotonic()
            with factory() as claim_session:
                claimed = JobClaimer(claim_session).claim(1)
            elapsed = time.monotonic() - started
        finally:
            index.release.set()
            thread.join()

        assert len(claimed) == 1
        assert elapsed < 1.0
        assert [w.wine_id for w in results["response"].similar_wines] == [wines["X"]]
