"""Storage bootstrap.

The MongoDB handle is process-wide state: created on first use by
``get_database`` and dropped by ``close_database`` (called on application
shutdown and between tests).
"""
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from domain.exceptions import PersistenceError
from domain.repositories import BookingRepository, PropertyRepository, RoomRepository, UserRepository
from infrastructure.config import Settings, get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_database: Optional[Database] = None
_repositories: Optional["Repositories"] = None
# reentrant: get_repositories builds Mongo repositories through get_database
_lock = threading.RLock()


def get_database(settings: Optional[Settings] = None) -> Database:
    """Return the shared database handle, connecting on first call"""
    global _client, _database
    if _database is not None:
        return _database
    with _lock:
        if _database is None:
            settings = settings or get_settings()
            if not settings.DATABASE_URL:
                raise PersistenceError("DATABASE_URL is not configured")
            _client = MongoClient(settings.DATABASE_URL)
            _database = _client[settings.DATABASE_NAME]
            logger.info(f"Connected to database {settings.DATABASE_NAME}")
        return _database


def close_database() -> None:
    global _client, _database, _repositories
    with _lock:
        if _client is not None:
            _client.close()
            logger.info("Database connection closed")
        _client = None
        _database = None
        _repositories = None


@dataclass
class Repositories:
    users: UserRepository
    properties: PropertyRepository
    rooms: RoomRepository
    bookings: BookingRepository


def create_repositories(settings: Optional[Settings] = None) -> Repositories:
    """Build the repository set for the configured storage backend"""
    settings = settings or get_settings()

    if settings.STORAGE_BACKEND == "mongo":
        from infrastructure.repositories.mongo_repositories import (
            MongoBookingRepository, MongoPropertyRepository, MongoRoomRepository, MongoUserRepository,
        )
        db = get_database(settings)
        return Repositories(
            users=MongoUserRepository(db),
            properties=MongoPropertyRepository(db),
            rooms=MongoRoomRepository(db),
            bookings=MongoBookingRepository(db),
        )

    from infrastructure.repositories.in_memory_repositories import (
        InMemoryBookingRepository, InMemoryPropertyRepository, InMemoryRoomRepository, InMemoryUserRepository,
    )
    logger.warning("Using in-memory storage; data is lost on restart")
    return Repositories(
        users=InMemoryUserRepository(),
        properties=InMemoryPropertyRepository(),
        rooms=InMemoryRoomRepository(),
        bookings=InMemoryBookingRepository(),
    )


def get_repositories() -> Repositories:
    """Shared repository set, built on first use"""
    global _repositories
    if _repositories is not None:
        return _repositories
    with _lock:
        if _repositories is None:
            _repositories = create_repositories(get_settings())
        return _repositories
