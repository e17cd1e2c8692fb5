"""In-Memory Repository Implementations

Entities are stored as deep copies so that a caller mutating an entity it
loaded never changes stored state until it calls ``update``.
"""
import threading
from datetime import date
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from domain.auth import UserInDB
from domain.entities import Booking, Property, Room
from domain.exceptions import ConflictError, DuplicateReferenceError, ErrorCode, NotFoundError
from domain.repositories import (
    BookingQuery, BookingRepository, PropertyRepository, RoomRepository, UserRepository,
)


def _copy(entity):
    return entity.model_copy(deep=True)


class InMemoryUserRepository(UserRepository):
    """In-memory implementation of UserRepository"""

    def __init__(self):
        self._storage: Dict[UUID, UserInDB] = {}
        self._lock = threading.Lock()

    async def save(self, user: UserInDB) -> UserInDB:
        with self._lock:
            if any(u.email == user.email for u in self._storage.values()):
                raise ConflictError("Email already registered", ErrorCode.DUPLICATE_ENTRY)
            self._storage[user.user_id] = _copy(user)
        return user

    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        user = self._storage.get(user_id)
        return _copy(user) if user else None

    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        for user in self._storage.values():
            if user.email == email.lower():
                return _copy(user)
        return None

    async def update(self, user: UserInDB) -> UserInDB:
        if user.user_id not in self._storage:
            raise NotFoundError("user", user.user_id)
        self._storage[user.user_id] = _copy(user)
        return user


class InMemoryPropertyRepository(PropertyRepository):
    """In-memory implementation of PropertyRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Property] = {}
        self._lock = threading.Lock()

    async def save(self, property: Property) -> Property:
        with self._lock:
            if any(p.slug == property.slug for p in self._storage.values()):
                raise ConflictError("Property URL already taken", ErrorCode.DUPLICATE_ENTRY)
            self._storage[property.property_id] = _copy(property)
        return property

    async def find_by_id(self, property_id: UUID) -> Optional[Property]:
        found = self._storage.get(property_id)
        return _copy(found) if found else None

    async def find_by_slug(self, slug: str) -> Optional[Property]:
        for found in self._storage.values():
            if found.slug == slug:
                return _copy(found)
        return None

    async def find_by_host(self, host_id: UUID) -> List[Property]:
        return [_copy(p) for p in self._storage.values() if p.host_id == host_id]

    async def update(self, property: Property) -> Property:
        if property.property_id not in self._storage:
            raise NotFoundError("property", property.property_id)
        self._storage[property.property_id] = _copy(property)
        return property


class InMemoryRoomRepository(RoomRepository):
    """In-memory implementation of RoomRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Room] = {}
        self._lock = threading.Lock()

    def _check_unique(self, room: Room) -> None:
        for other in self._storage.values():
            if (
                other.room_id != room.room_id
                and other.property_id == room.property_id
                and other.category == room.category
                and other.room_number == room.room_number
            ):
                raise ConflictError(
                    f"Room {room.room_number} already exists in category {room.category}",
                    ErrorCode.DUPLICATE_ENTRY,
                )

    async def save(self, room: Room) -> Room:
        with self._lock:
            self._check_unique(room)
            self._storage[room.room_id] = _copy(room)
        return room

    async def find_by_id(self, room_id: UUID) -> Optional[Room]:
        room = self._storage.get(room_id)
        return _copy(room) if room else None

    async def find_by_property(self, property_id: UUID, active_only: bool = False) -> List[Room]:
        rooms = [
            r for r in self._storage.values()
            if r.property_id == property_id and (r.is_active or not active_only)
        ]
        rooms.sort(key=lambda r: (r.category, r.room_number))
        return [_copy(r) for r in rooms]

    async def count_by_property(self, property_id: UUID, active_only: bool = True) -> int:
        return sum(
            1 for r in self._storage.values()
            if r.property_id == property_id and (r.is_active or not active_only)
        )

    async def update(self, room: Room) -> Room:
        with self._lock:
            if room.room_id not in self._storage:
                raise NotFoundError("room", room.room_id)
            self._check_unique(room)
            self._storage[room.room_id] = _copy(room)
        return room


class InMemoryBookingRepository(BookingRepository):
    """In-memory implementation of BookingRepository.

    ``_nights`` maps (room_id, night) to the booking holding it; the claim and
    the insert happen under one lock.
    """

    def __init__(self):
        self._storage: Dict[UUID, Booking] = {}
        self._nights: Dict[Tuple[UUID, date], UUID] = {}
        self._lock = threading.Lock()

    def _claim_nights(self, booking: Booking) -> None:
        keys = [(booking.room_id, night) for night in booking.date_range.each_night()]
        taken = [k for k in keys if self._nights.get(k, booking.booking_id) != booking.booking_id]
        if taken:
            raise ConflictError(
                "Room is not available for the selected dates",
                details={"room_id": str(booking.room_id), "night": taken[0][1].isoformat()},
            )
        for key in keys:
            self._nights[key] = booking.booking_id

    def _release_nights(self, booking: Booking) -> None:
        for night in booking.date_range.each_night():
            key = (booking.room_id, night)
            if self._nights.get(key) == booking.booking_id:
                del self._nights[key]

    async def save(self, booking: Booking) -> Booking:
        with self._lock:
            if any(b.reference == booking.reference for b in self._storage.values()):
                raise DuplicateReferenceError(booking.reference)
            if booking.is_active():
                self._claim_nights(booking)
            self._storage[booking.booking_id] = _copy(booking)
        return booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        booking = self._storage.get(booking_id)
        return _copy(booking) if booking else None

    async def find_by_reference(self, reference: str) -> Optional[Booking]:
        for booking in self._storage.values():
            if booking.reference == reference:
                return _copy(booking)
        return None

    async def find_conflicting(
        self,
        room_id: UUID,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        for booking in self._storage.values():
            if (
                booking.room_id == room_id
                and booking.booking_id != exclude_booking_id
                and booking.is_active()
                and booking.overlaps(check_in, check_out)
            ):
                return _copy(booking)
        return None

    async def find(self, query: BookingQuery) -> List[Booking]:
        found = [b for b in self._storage.values() if query.matches(b)]
        found.sort(key=lambda b: b.created_at, reverse=True)
        return [_copy(b) for b in found]

    async def count(self, query: BookingQuery) -> int:
        return sum(1 for b in self._storage.values() if query.matches(b))

    async def update(self, booking: Booking) -> Booking:
        with self._lock:
            if booking.booking_id not in self._storage:
                raise NotFoundError("booking", booking.booking_id)
            if booking.is_active():
                self._claim_nights(booking)
            else:
                self._release_nights(booking)
            self._storage[booking.booking_id] = _copy(booking)
        return booking
