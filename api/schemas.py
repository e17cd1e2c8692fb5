"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, EmailStr, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Any, Dict, List, Optional

from domain.enums import BookingStatus, HistoryAction, PricingMode, UserRole


# ============================================================================
# SHARED SCHEMAS
# ============================================================================

class AddressSchema(BaseModel):
    address: str
    city: str
    state: str
    country: str
    pin_code: str


class PropertyPricingSchema(BaseModel):
    type: PricingMode
    value: Optional[Decimal] = None


class CapacitySchema(BaseModel):
    adults: int = Field(ge=1)
    children: int = Field(ge=0, default=0)
    total: Optional[int] = Field(default=None, ge=1)


class RoomPricingSchema(BaseModel):
    """Room pricing; ``mode`` defaults to the property's pricing mode"""
    mode: Optional[PricingMode] = None
    base_rate: Optional[Decimal] = Field(default=None, ge=0)
    extra_person_charge: Optional[Decimal] = Field(default=None, ge=0)
    adult_rate: Optional[Decimal] = Field(default=None, ge=0)
    child_rate: Optional[Decimal] = Field(default=None, ge=0)
    advance_amount: Optional[Decimal] = Field(default=None, ge=0)


# ============================================================================
# AUTH / USER SCHEMAS
# ============================================================================

class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    user_id: Optional[UUID] = None


class RegisterUserRequest(BaseModel):
    """Register user request DTO"""
    email: EmailStr
    password: str = Field(min_length=6)
    name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.GUEST


class OnboardingRequest(BaseModel):
    role: UserRole


class UserResponse(BaseModel):
    user_id: UUID
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole
    disabled: bool = False
    has_completed_onboarding: bool = False


# ============================================================================
# PROPERTY SCHEMAS
# ============================================================================

class CreatePropertyRequest(BaseModel):
    """Create property request DTO"""
    name: str = Field(min_length=1, max_length=100)
    address: AddressSchema
    description: str = Field(default="", max_length=1000)
    phone_numbers: List[str] = []
    payment_id: Optional[str] = None
    bank_account_name: Optional[str] = None
    total_rooms: int = Field(ge=1)
    pricing: PropertyPricingSchema
    amenities: List[str] = []
    images: List[str] = []


class UpdatePropertyRequest(BaseModel):
    """Update property request DTO; only supplied fields change"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    address: Optional[AddressSchema] = None
    description: Optional[str] = Field(None, max_length=1000)
    phone_numbers: Optional[List[str]] = None
    payment_id: Optional[str] = None
    bank_account_name: Optional[str] = None
    total_rooms: Optional[int] = Field(None, ge=1)
    pricing: Optional[PropertyPricingSchema] = None
    amenities: Optional[List[str]] = None
    images: Optional[List[str]] = None


class PublicPropertyResponse(BaseModel):
    """Property as shown on the public booking page"""
    property_id: UUID
    name: str
    address: AddressSchema
    description: str
    phone_numbers: List[str]
    pricing: PropertyPricingSchema
    slug: str
    public_url: str
    amenities: List[str]
    images: List[str]
    total_rooms: int
    is_verified: bool


class PropertyResponse(PublicPropertyResponse):
    """Property as seen by its host"""
    host_id: UUID
    payment_id: Optional[str] = None
    bank_account_name: Optional[str] = None
    is_active: bool
    rooms_count: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# ROOM SCHEMAS
# ============================================================================

class CreateRoomRequest(BaseModel):
    """Create room request DTO"""
    category: str = Field(min_length=1)
    room_number: str = Field(min_length=1)
    name: Optional[str] = None
    description: str = ""
    capacity: CapacitySchema
    pricing: RoomPricingSchema
    amenities: List[str] = []
    images: List[str] = []


class UpdateRoomRequest(BaseModel):
    category: Optional[str] = Field(None, min_length=1)
    room_number: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    capacity: Optional[CapacitySchema] = None
    pricing: Optional[RoomPricingSchema] = None
    amenities: Optional[List[str]] = None
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_available: Optional[bool] = None


class RoomResponse(BaseModel):
    room_id: UUID
    property_id: UUID
    category: str
    room_number: str
    name: Optional[str] = None
    description: str
    capacity: CapacitySchema
    pricing: Dict[str, Any]
    amenities: List[str]
    images: List[str]
    is_active: bool
    is_available: bool


class AvailabilityResponse(BaseModel):
    room_id: UUID
    check_in: date
    check_out: date
    nights: int
    available: bool


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class GuestSchema(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class CreateBookingRequest(BaseModel):
    """Create booking request DTO; required fields are checked by the booking service"""
    property_id: Optional[UUID] = None
    room_id: Optional[UUID] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    guest: GuestSchema = GuestSchema()
    adults: int = Field(ge=1, default=1)
    younger_children: int = Field(ge=0, default=0)
    older_children: int = Field(ge=0, default=0)
    special_requests: str = ""
    status: Optional[BookingStatus] = None


class UpdateBookingStatusRequest(BaseModel):
    status: str
    details: Optional[str] = None


class PricingResponse(BaseModel):
    room_rate: Decimal
    total_amount: Decimal
    advance_amount: Decimal
    balance_amount: Decimal


class HistoryEntryResponse(BaseModel):
    action: HistoryAction
    timestamp: datetime
    performed_by: Optional[UUID] = None
    details: Optional[str] = None


class BookingSummaryResponse(BaseModel):
    """Returned right after a booking is created"""
    booking_id: UUID
    reference: str
    check_in: date
    check_out: date
    status: BookingStatus
    guest_name: str
    guest_phone: str
    total_amount: Decimal


class BookingResponse(BaseModel):
    """Booking response DTO"""
    booking_id: UUID
    reference: str
    property_id: UUID
    room_id: UUID
    user_id: Optional[UUID] = None
    guest: GuestSchema
    check_in: date
    check_out: date
    nights: int
    adults: int
    younger_children: int
    older_children: int
    pricing: PricingResponse
    status: BookingStatus
    special_requests: str
    history: List[HistoryEntryResponse]
    created_at: datetime
    updated_at: datetime
    version: int
    room_category: Optional[str] = None
    room_number: Optional[str] = None


class PropertySummary(BaseModel):
    name: str
    address: AddressSchema
    phone_numbers: List[str]


class RoomSummary(BaseModel):
    category: str
    room_number: str
    images: List[str]
    capacity: CapacitySchema


class BookingDetailsResponse(BaseModel):
    booking: BookingResponse
    property: Optional[PropertySummary] = None
    room: Optional[RoomSummary] = None


class DashboardStatsResponse(BaseModel):
    check_ins_today: int
    check_outs_today: int
    monthly_bookings: int
    total_rooms: int
    occupied_rooms: int
    available_rooms: int
    occupancy_rate: int
