"""Core database package: declarative base, mixins, and the generic repository.

Base Classes and Mixins:
    - Base: Declarative base with constraint naming and auto table naming
    - UUIDv7PKMixin: Time-sortable UUID primary key
    - TimestampMixin: created_at, updated_at tracking
    - UUIDv7TimestampedBase: UUID v7 PK + timestamps

Repository:
    - BaseRepository[T]: Generic CRUD with explicit session passing
    - SearchResult[T]: Paginated result container
"""

from notification_service.core.database.base import (
    NAMING_CONVENTION,
    Base,
    TimestampMixin,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    generate_uuid7,
)
from notification_service.core.database.exceptions import NotFoundError, RepositoryError
from notification_service.core.database.repository import BaseRepository, SearchResult

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "NotFoundError",
    "RepositoryError",
    "SearchResult",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "UUIDv7TimestampedBase",
    "generate_uuid7",
]
