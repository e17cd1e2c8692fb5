"""Domain Entities - Aggregates"""
import re
from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from domain.auth import User
from domain.enums import BookingStatus, HistoryAction, PricingMode, RELEASED_STATUSES, INITIAL_STATUSES
from domain.exceptions import InvalidTransitionError, ValidationError
from domain.value_objects import (
    Address, Capacity, DateRange, GuestComposition, GuestInfo, HistoryEntry,
    PricingBreakdown, PropertyPricing, RoomPricing, utc_now,
)

REFERENCE_PREFIX = "FRA-BE"
REFERENCE_SUFFIX = "BOOKING"

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED, BookingStatus.DECLINED, BookingStatus.CANCELLED,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.CHECKED_IN, BookingStatus.NO_SHOW, BookingStatus.CANCELLED,
    }),
    BookingStatus.CHECKED_IN: frozenset({
        BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED,
    }),
    BookingStatus.CHECKED_OUT: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
    BookingStatus.DECLINED: frozenset(),
}


class Property(BaseModel):
    """Property Aggregate Root Entity - a host's listing"""

    property_id: UUID = Field(default_factory=uuid4)
    host_id: UUID
    name: str = Field(min_length=1, max_length=100)
    address: Address
    description: str = Field(default="", max_length=1000)
    phone_numbers: List[str] = []
    payment_id: Optional[str] = None
    bank_account_name: Optional[str] = None
    total_rooms: int = Field(ge=1)
    pricing: PropertyPricing
    slug: str
    amenities: List[str] = []
    images: List[str] = []
    is_active: bool = True
    is_verified: bool = False

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Config:
        from_attributes = True

    @staticmethod
    def make_slug(name: str, unique_id: str) -> str:
        """Public URL slug: lowercased name, at most 40 chars, plus a random suffix"""
        base = re.sub(r"[^\w\s-]", "", name.lower())
        base = re.sub(r"\s+", "-", base)[:40]
        return f"{base}-{unique_id}"

    def is_managed_by(self, actor: Optional[User]) -> bool:
        if actor is None:
            return False
        return actor.is_admin or actor.user_id == self.host_id

    def deactivate(self) -> None:
        self.is_active = False
        self.updated_at = utc_now()


class Room(BaseModel):
    """Room Entity - owned by exactly one Property"""

    room_id: UUID = Field(default_factory=uuid4)
    property_id: UUID
    category: str = Field(min_length=1)
    room_number: str = Field(min_length=1)
    name: Optional[str] = None
    description: str = ""
    capacity: Capacity
    pricing: RoomPricing
    amenities: List[str] = []
    images: List[str] = []
    is_active: bool = True
    is_available: bool = True

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Config:
        from_attributes = True

    @property
    def pricing_mode(self) -> PricingMode:
        return self.pricing.pricing_mode

    @property
    def base_capacity(self) -> int:
        return self.capacity.total or 1


class Booking(BaseModel):
    """Booking Aggregate Root Entity - one room, one date range, one party"""

    # Identity
    booking_id: UUID = Field(default_factory=uuid4)
    reference: str

    # References to other aggregates
    property_id: UUID
    room_id: UUID
    user_id: Optional[UUID] = None

    # Value Objects
    guest: GuestInfo
    date_range: DateRange
    guests: GuestComposition
    pricing: PricingBreakdown

    status: BookingStatus = BookingStatus.PENDING
    special_requests: str = ""
    history: List[HistoryEntry] = []

    # Metadata
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        reference: str,
        property_id: UUID,
        room_id: UUID,
        guest: GuestInfo,
        date_range: DateRange,
        guests: GuestComposition,
        pricing: PricingBreakdown,
        user_id: Optional[UUID] = None,
        special_requests: str = "",
        initial_status: BookingStatus = BookingStatus.PENDING,
    ) -> "Booking":
        """Create new booking with its 'created' history entry"""
        if initial_status not in INITIAL_STATUSES:
            raise ValidationError(f"A booking cannot start as {initial_status.value}")

        now = utc_now()
        return Booking(
            reference=reference,
            property_id=property_id,
            room_id=room_id,
            user_id=user_id,
            guest=guest,
            date_range=date_range,
            guests=guests,
            pricing=pricing,
            status=initial_status,
            special_requests=special_requests or "",
            history=[HistoryEntry(action=HistoryAction.CREATED, timestamp=now, performed_by=user_id)],
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def generate_reference(property_name: Optional[str], now: Optional[datetime] = None) -> str:
        """FRA-BE-<last 8 digits of unix millis>-<first 6 alphanumerics of the name>-BOOKING"""
        now = now or utc_now()
        millis = str(int(now.timestamp() * 1000))[-8:]
        fragment = re.sub(r"[^A-Za-z0-9]", "", property_name or "")[:6].upper() or "STAY"
        return f"{REFERENCE_PREFIX}-{millis}-{fragment}-{REFERENCE_SUFFIX}"

    # ==================== STATE TRANSITION METHODS ====================
    def can_transition_to(self, new_status: BookingStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(
        self,
        new_status: BookingStatus,
        performed_by: Optional[UUID],
        details: Optional[str] = None,
        enforce: bool = True,
    ) -> HistoryEntry:
        """Change status and append the matching history entry"""
        if enforce and not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Cannot change booking status from {self.status.value} to {new_status.value}",
                details={"from": self.status.value, "to": new_status.value},
            )

        action = HistoryAction.CANCELLED if new_status in RELEASED_STATUSES else HistoryAction.MODIFIED
        entry = HistoryEntry(
            action=action,
            performed_by=performed_by,
            details=details or f"Status changed to {new_status.value}",
        )

        self.status = new_status
        self.history.append(entry)
        self.updated_at = entry.timestamp
        self.version += 1
        return entry

    # ==================== QUERY METHODS ====================
    def is_active(self) -> bool:
        """Active bookings hold their room for the stay"""
        return self.status not in RELEASED_STATUSES

    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    def overlaps(self, check_in: date, check_out: date) -> bool:
        return self.date_range.overlaps(check_in, check_out)

    def get_nights(self) -> int:
        return self.date_range.nights()
