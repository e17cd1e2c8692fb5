"""Domain Enums"""
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"
    DECLINED = "declined"


# Statuses that no longer hold the room
RELEASED_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.DECLINED})

INITIAL_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class HistoryAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


class PricingMode(str, Enum):
    PER_PERSON = "perPerson"
    PER_ROOM = "perRoom"


class UserRole(str, Enum):
    GUEST = "guest"
    HOST = "host"
    AGENT = "agent"
    ADMIN = "admin"


class HostBookingFilter(str, Enum):
    ALL = "all"
    TODAY = "today"
    PENDING = "pending"
    UPCOMING = "upcoming"
    PAST = "past"
