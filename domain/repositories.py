"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from domain.auth import UserInDB
from domain.entities import Booking, Property, Room
from domain.enums import BookingStatus


class BookingQuery(BaseModel):
    """Booking search criteria; every bound is half-open (>= from, < before)"""
    property_ids: Optional[List[UUID]] = None
    room_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    statuses: Optional[List[BookingStatus]] = None
    exclude_statuses: Optional[List[BookingStatus]] = None
    check_in_from: Optional[date] = None
    check_in_before: Optional[date] = None
    check_out_from: Optional[date] = None
    check_out_before: Optional[date] = None
    created_from: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def matches(self, booking: Booking) -> bool:
        """Evaluate the criteria against one booking"""
        if self.property_ids is not None and booking.property_id not in self.property_ids:
            return False
        if self.room_id is not None and booking.room_id != self.room_id:
            return False
        if self.user_id is not None and booking.user_id != self.user_id:
            return False
        if self.statuses is not None and booking.status not in self.statuses:
            return False
        if self.exclude_statuses is not None and booking.status in self.exclude_statuses:
            return False

        check_in, check_out = booking.date_range.check_in, booking.date_range.check_out
        if self.check_in_from is not None and check_in < self.check_in_from:
            return False
        if self.check_in_before is not None and check_in >= self.check_in_before:
            return False
        if self.check_out_from is not None and check_out < self.check_out_from:
            return False
        if self.check_out_before is not None and check_out >= self.check_out_before:
            return False
        if self.created_from is not None and booking.created_at < self.created_from:
            return False
        if self.created_before is not None and booking.created_at >= self.created_before:
            return False
        return True


class UserRepository(ABC):
    """Repository interface for User accounts"""

    @abstractmethod
    async def save(self, user: UserInDB) -> UserInDB:
        """Save user; duplicate email raises ConflictError"""
        pass

    @abstractmethod
    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[UserInDB]:
        pass

    @abstractmethod
    async def update(self, user: UserInDB) -> UserInDB:
        pass


class PropertyRepository(ABC):
    """Repository interface for Property Aggregate"""

    @abstractmethod
    async def save(self, property: Property) -> Property:
        """Save property; duplicate slug raises ConflictError"""
        pass

    @abstractmethod
    async def find_by_id(self, property_id: UUID) -> Optional[Property]:
        pass

    @abstractmethod
    async def find_by_slug(self, slug: str) -> Optional[Property]:
        pass

    @abstractmethod
    async def find_by_host(self, host_id: UUID) -> List[Property]:
        pass

    @abstractmethod
    async def update(self, property: Property) -> Property:
        pass


class RoomRepository(ABC):
    """Repository interface for Rooms"""

    @abstractmethod
    async def save(self, room: Room) -> Room:
        """Save room; duplicate (property, category, room number) raises ConflictError"""
        pass

    @abstractmethod
    async def find_by_id(self, room_id: UUID) -> Optional[Room]:
        pass

    @abstractmethod
    async def find_by_property(self, property_id: UUID, active_only: bool = False) -> List[Room]:
        """Rooms of a property sorted by category then room number"""
        pass

    @abstractmethod
    async def count_by_property(self, property_id: UUID, active_only: bool = True) -> int:
        pass

    @abstractmethod
    async def update(self, room: Room) -> Room:
        """Update room; duplicate (property, category, room number) raises ConflictError"""
        pass


class BookingRepository(ABC):
    """Repository interface for Booking Aggregate.

    Implementations keep a per-room night ledger so that no two active
    bookings can ever hold the same night, whatever the interleaving of
    concurrent requests.
    """

    @abstractmethod
    async def save(self, booking: Booking) -> Booking:
        """Insert booking after claiming its nights.

        Raises ConflictError when a night is taken and DuplicateReferenceError
        when the reference is already stored.
        """
        pass

    @abstractmethod
    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        pass

    @abstractmethod
    async def find_by_reference(self, reference: str) -> Optional[Booking]:
        pass

    @abstractmethod
    async def find_conflicting(
        self,
        room_id: UUID,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        """First active booking of the room overlapping [check_in, check_out)"""
        pass

    @abstractmethod
    async def find(self, query: BookingQuery) -> List[Booking]:
        """Bookings matching query, newest first"""
        pass

    @abstractmethod
    async def count(self, query: BookingQuery) -> int:
        pass

    @abstractmethod
    async def update(self, booking: Booking) -> Booking:
        """Persist status/history; releases or reclaims nights as the status requires"""
        pass
