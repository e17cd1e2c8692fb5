"""MongoDB Repository Implementations

Documents are the JSON form of the entities keyed by the entity id as
``_id``. Dates are ISO strings, so range queries compare lexicographically;
``created_at`` is written with a fixed width for the same reason.
"""
import asyncio
import logging
from datetime import date, datetime, timezone
from functools import partial, wraps
from typing import List, Optional
from uuid import UUID

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from domain.auth import UserInDB
from domain.entities import Booking, Property, Room
from domain.enums import RELEASED_STATUSES
from domain.exceptions import (
    ConflictError, DuplicateReferenceError, ErrorCode, NotFoundError, PersistenceError,
)
from domain.repositories import (
    BookingQuery, BookingRepository, PropertyRepository, RoomRepository, UserRepository,
)

logger = logging.getLogger(__name__)

RELEASED = [s.value for s in RELEASED_STATUSES]


def _storage_call(func):
    """Run a blocking driver method in the default executor; driver failures become PersistenceError"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args, **kwargs))
        except PyMongoError as e:
            logger.error(f"Storage operation {func.__qualname__} failed: {e}")
            raise PersistenceError("Storage operation failed", details={"error": str(e)}) from e
    return wrapper


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _to_document(entity, id_field: str) -> dict:
    document = entity.model_dump(mode="json")
    document["_id"] = document[id_field]
    if "created_at" in document:
        document["created_at"] = _timestamp(entity.created_at)
    return document


def _from_document(model, document: Optional[dict]):
    if document is None:
        return None
    document = dict(document)
    document.pop("_id", None)
    return model.model_validate(document)


class MongoUserRepository(UserRepository):

    def __init__(self, db: Database):
        self.collection = db["users"]
        self.collection.create_index("email", unique=True)

    @_storage_call
    def save(self, user: UserInDB) -> UserInDB:
        try:
            self.collection.insert_one(_to_document(user, "user_id"))
        except DuplicateKeyError:
            raise ConflictError("Email already registered", ErrorCode.DUPLICATE_ENTRY)
        return user

    @_storage_call
    def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        return _from_document(UserInDB, self.collection.find_one({"_id": str(user_id)}))

    @_storage_call
    def find_by_email(self, email: str) -> Optional[UserInDB]:
        return _from_document(UserInDB, self.collection.find_one({"email": email.lower()}))

    @_storage_call
    def update(self, user: UserInDB) -> UserInDB:
        result = self.collection.replace_one({"_id": str(user.user_id)}, _to_document(user, "user_id"))
        if result.matched_count == 0:
            raise NotFoundError("user", user.user_id)
        return user


class MongoPropertyRepository(PropertyRepository):

    def __init__(self, db: Database):
        self.collection = db["properties"]
        self.collection.create_index("slug", unique=True)
        self.collection.create_index("host_id")

    @_storage_call
    def save(self, property: Property) -> Property:
        try:
            self.collection.insert_one(_to_document(property, "property_id"))
        except DuplicateKeyError:
            raise ConflictError("Property URL already taken", ErrorCode.DUPLICATE_ENTRY)
        return property

    @_storage_call
    def find_by_id(self, property_id: UUID) -> Optional[Property]:
        return _from_document(Property, self.collection.find_one({"_id": str(property_id)}))

    @_storage_call
    def find_by_slug(self, slug: str) -> Optional[Property]:
        return _from_document(Property, self.collection.find_one({"slug": slug}))

    @_storage_call
    def find_by_host(self, host_id: UUID) -> List[Property]:
        return [_from_document(Property, d) for d in self.collection.find({"host_id": str(host_id)})]

    @_storage_call
    def update(self, property: Property) -> Property:
        result = self.collection.replace_one(
            {"_id": str(property.property_id)}, _to_document(property, "property_id")
        )
        if result.matched_count == 0:
            raise NotFoundError("property", property.property_id)
        return property


class MongoRoomRepository(RoomRepository):

    def __init__(self, db: Database):
        self.collection = db["rooms"]
        self.collection.create_index(
            [("property_id", ASCENDING), ("category", ASCENDING), ("room_number", ASCENDING)],
            unique=True,
        )

    def _duplicate(self, room: Room) -> ConflictError:
        return ConflictError(
            f"Room {room.room_number} already exists in category {room.category}",
            ErrorCode.DUPLICATE_ENTRY,
        )

    def _filter(self, property_id: UUID, active_only: bool) -> dict:
        criteria = {"property_id": str(property_id)}
        if active_only:
            criteria["is_active"] = True
        return criteria

    @_storage_call
    def save(self, room: Room) -> Room:
        try:
            self.collection.insert_one(_to_document(room, "room_id"))
        except DuplicateKeyError:
            raise self._duplicate(room)
        return room

    @_storage_call
    def find_by_id(self, room_id: UUID) -> Optional[Room]:
        return _from_document(Room, self.collection.find_one({"_id": str(room_id)}))

    @_storage_call
    def find_by_property(self, property_id: UUID, active_only: bool = False) -> List[Room]:
        cursor = self.collection.find(self._filter(property_id, active_only)).sort(
            [("category", ASCENDING), ("room_number", ASCENDING)]
        )
        return [_from_document(Room, d) for d in cursor]

    @_storage_call
    def count_by_property(self, property_id: UUID, active_only: bool = True) -> int:
        return self.collection.count_documents(self._filter(property_id, active_only))

    @_storage_call
    def update(self, room: Room) -> Room:
        try:
            result = self.collection.replace_one({"_id": str(room.room_id)}, _to_document(room, "room_id"))
        except DuplicateKeyError:
            raise self._duplicate(room)
        if result.matched_count == 0:
            raise NotFoundError("room", room.room_id)
        return room


class MongoBookingRepository(BookingRepository):
    """Bookings plus the ``room_nights`` ledger.

    The unique (room_id, night) index is what keeps two concurrent requests
    from both holding the same night; ``find_conflicting`` is only a
    pre-check.
    """

    def __init__(self, db: Database):
        self.collection = db["bookings"]
        self.nights = db["room_nights"]
        self.collection.create_index("reference", unique=True)
        self.collection.create_index([("room_id", ASCENDING), ("status", ASCENDING)])
        self.collection.create_index([("property_id", ASCENDING), ("created_at", DESCENDING)])
        self.nights.create_index([("room_id", ASCENDING), ("night", ASCENDING)], unique=True)
        self.nights.create_index("booking_id")

    def _claim_nights(self, booking: Booking) -> None:
        claims = [
            {"room_id": str(booking.room_id), "night": night.isoformat(), "booking_id": str(booking.booking_id)}
            for night in booking.date_range.each_night()
        ]
        try:
            self.nights.insert_many(claims, ordered=True)
        except (BulkWriteError, DuplicateKeyError):
            self._release_nights(booking)
            logger.warning(f"Night already held for room {booking.room_id}, booking {booking.reference} rejected")
            raise ConflictError(
                "Room is not available for the selected dates",
                details={"room_id": str(booking.room_id)},
            )

    def _release_nights(self, booking: Booking) -> None:
        self.nights.delete_many({"booking_id": str(booking.booking_id)})

    @_storage_call
    def save(self, booking: Booking) -> Booking:
        if booking.is_active():
            self._claim_nights(booking)
        try:
            self.collection.insert_one(_to_document(booking, "booking_id"))
        except DuplicateKeyError:
            self._release_nights(booking)
            raise DuplicateReferenceError(booking.reference)
        except PyMongoError:
            self._release_nights(booking)
            raise
        return booking

    @_storage_call
    def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        return _from_document(Booking, self.collection.find_one({"_id": str(booking_id)}))

    @_storage_call
    def find_by_reference(self, reference: str) -> Optional[Booking]:
        return _from_document(Booking, self.collection.find_one({"reference": reference}))

    @_storage_call
    def find_conflicting(
        self,
        room_id: UUID,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        criteria = {
            "room_id": str(room_id),
            "status": {"$nin": RELEASED},
            "date_range.check_in": {"$lt": check_out.isoformat()},
            "date_range.check_out": {"$gt": check_in.isoformat()},
        }
        if exclude_booking_id is not None:
            criteria["_id"] = {"$ne": str(exclude_booking_id)}
        return _from_document(Booking, self.collection.find_one(criteria))

    def _criteria(self, query: BookingQuery) -> dict:
        criteria = {}
        if query.property_ids is not None:
            criteria["property_id"] = {"$in": [str(p) for p in query.property_ids]}
        if query.room_id is not None:
            criteria["room_id"] = str(query.room_id)
        if query.user_id is not None:
            criteria["user_id"] = str(query.user_id)

        status = {}
        if query.statuses is not None:
            status["$in"] = [s.value for s in query.statuses]
        if query.exclude_statuses is not None:
            status["$nin"] = [s.value for s in query.exclude_statuses]
        if status:
            criteria["status"] = status

        for field, lower, upper in (
            ("date_range.check_in", query.check_in_from, query.check_in_before),
            ("date_range.check_out", query.check_out_from, query.check_out_before),
        ):
            bounds = {}
            if lower is not None:
                bounds["$gte"] = lower.isoformat()
            if upper is not None:
                bounds["$lt"] = upper.isoformat()
            if bounds:
                criteria[field] = bounds

        created = {}
        if query.created_from is not None:
            created["$gte"] = _timestamp(query.created_from)
        if query.created_before is not None:
            created["$lt"] = _timestamp(query.created_before)
        if created:
            criteria["created_at"] = created
        return criteria

    @_storage_call
    def find(self, query: BookingQuery) -> List[Booking]:
        cursor = self.collection.find(self._criteria(query)).sort("created_at", DESCENDING)
        return [_from_document(Booking, d) for d in cursor]

    @_storage_call
    def count(self, query: BookingQuery) -> int:
        return self.collection.count_documents(self._criteria(query))

    @_storage_call
    def update(self, booking: Booking) -> Booking:
        stored = self.collection.find_one({"_id": str(booking.booking_id)}, {"status": 1})
        if stored is None:
            raise NotFoundError("booking", booking.booking_id)

        was_active = stored["status"] not in RELEASED
        reclaiming = booking.is_active() and not was_active
        releasing = was_active and not booking.is_active()

        # nights are claimed before the status write and released only after it
        if reclaiming:
            self._claim_nights(booking)
        document = booking.model_dump(mode="json", include={"status", "history", "updated_at", "version"})
        try:
            self.collection.update_one({"_id": str(booking.booking_id)}, {"$set": document})
        except PyMongoError:
            if reclaiming:
                self._release_nights(booking)
            raise
        if releasing:
            self._release_nights(booking)
        return booking
