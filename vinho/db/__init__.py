"""Database initialization and persistence layer."""

from vinho.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
)
from vinho.db.models import (
    Base,
    ProfileDB,
    QueueJobDB,
    ScanDB,
    TastingDB,
    UserPreferenceDB,
)
from vinho.db.models_catalog import (
    GrapeVarietyDB,
    ProducerDB,
    RegionDB,
    VintageDB,
    VintageVarietalDB,
    WineDB,
)
from vinho.db.repositories import (
    CatalogRepository,
    QueueJobRepository,
    ScanRepository,
    TastingRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Models
    "Base",
    "QueueJobDB",
    "ScanDB",
    "TastingDB",
    "ProfileDB",
    "UserPreferenceDB",
    "RegionDB",
    "ProducerDB",
    "WineDB",
    "VintageDB",
    "GrapeVarietyDB",
    "VintageVarietalDB",
    # Repositories
    "QueueJobRepository",
    "ScanRepository",
    "TastingRepository",
    "CatalogRepository",
]
