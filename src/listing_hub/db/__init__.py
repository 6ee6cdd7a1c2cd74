"""Database storage for raw scrapes, properties and listings."""

from listing_hub.db.database import Database, savepoint
from listing_hub.db.queries import ListingQueryService
from listing_hub.db.runs import RunRepository

__all__ = ["Database", "ListingQueryService", "RunRepository", "savepoint"]
