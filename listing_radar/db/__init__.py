"""Database initialization and persistence layer."""

from listing_radar.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
)
from listing_radar.db.models import (
    Base,
    ListingDB,
    ListingEventDB,
    OAuthTokenDB,
)
from listing_radar.db.repositories import (
    ListingEventRepository,
    ListingRepository,
    OAuthTokenRepository,
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
    "ListingDB",
    "ListingEventDB",
    "OAuthTokenDB",
    # Repositories
    "ListingRepository",
    "ListingEventRepository",
    "OAuthTokenRepository",
]
