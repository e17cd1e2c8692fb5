from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm

from api.dependencies import (
    get_availability_service, get_booking_service, get_current_active_user, get_current_actor,
    get_property_service, get_room_service, get_user_service,
)
from api.errors import register_exception_handlers
from api.schemas import (
    # Auth / users
    Token, RegisterUserRequest, OnboardingRequest, UserResponse,
    # Properties
    CreatePropertyRequest, UpdatePropertyRequest, PropertyResponse, PublicPropertyResponse,
    # Rooms
    CreateRoomRequest, UpdateRoomRequest, RoomResponse, AvailabilityResponse,
    # Bookings
    CreateBookingRequest, UpdateBookingStatusRequest, BookingResponse, BookingSummaryResponse,
    BookingDetailsResponse, PropertySummary, RoomSummary, DashboardStatsResponse,
)
from application.services import (
    AvailabilityService, BookingListItem, BookingService, PropertyService, RoomService, UserService,
)
from domain.auth import User
from domain.entities import Booking, Property, Room
from domain.enums import BookingStatus, HostBookingFilter, PricingMode
from infrastructure.config import get_settings
from infrastructure.database import close_database, get_repositories
from infrastructure.logging_config import configure_logging
from infrastructure.security import create_access_token

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings)
    if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
        await UserService(get_repositories().users).ensure_admin(settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    yield
    close_database()


app = FastAPI(
    title=settings.APP_NAME,
    description="Homestay and hotel booking API: listings, rooms, availability and reservations",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running", "environment": settings.ENVIRONMENT}

@app.get("/api/enums/booking-status", tags=["Enum Reference"])
async def get_booking_statuses():
    """Get all BookingStatus values"""
    return {
        "values": [item.value for item in BookingStatus],
        "description": "Booking status values: pending, confirmed, checked-in, checked-out, cancelled, no-show, declined"
    }

@app.get("/api/enums/pricing-mode", tags=["Enum Reference"])
async def get_pricing_modes():
    """Get all PricingMode values"""
    return {
        "values": [item.value for item in PricingMode],
        "description": "perRoom: flat nightly room rate; perPerson: nightly rate per adult and older child"
    }

# ============================================================================
# AUTH & USER ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: UserService = Depends(get_user_service)
):
    user = await service.authenticate(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(data={"sub": str(user.user_id), "email": user.email})
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

@app.post("/api/users", response_model=UserResponse, status_code=201, tags=["Users"])
async def register_user(
    request: RegisterUserRequest,
    service: UserService = Depends(get_user_service)
):
    """Create a guest, host or agent account"""
    return await service.register_user(
        email=request.email,
        password=request.password,
        name=request.name,
        phone=request.phone,
        role=request.role
    )

@app.post("/api/users/complete-onboarding", response_model=UserResponse, tags=["Users"])
async def complete_onboarding(
    request: OnboardingRequest,
    service: UserService = Depends(get_user_service),
    current_user: User = Depends(get_current_active_user)
):
    """Pick the account role after sign-up"""
    return await service.complete_onboarding(current_user, request.role)

# ============================================================================
# PROPERTY ENDPOINTS
# ============================================================================

@app.post("/api/properties", response_model=PropertyResponse, status_code=201, tags=["Properties"])
async def register_property(
    request: CreatePropertyRequest,
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    """Register a new listing for the current host"""
    property = await service.register_property(current_user, **request.model_dump(mode="json"))
    return _property_to_response(property, rooms_count=0)

@app.get("/api/properties/host", response_model=List[PropertyResponse], tags=["Properties"])
async def get_host_properties(
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    """Listings owned by the current host"""
    items = await service.list_host_properties(current_user)
    return [_property_to_response(item.property, rooms_count=item.rooms_count) for item in items]

@app.get("/api/properties/url/{slug}", response_model=PublicPropertyResponse, tags=["Properties"])
async def get_property_by_slug(
    slug: str,
    service: PropertyService = Depends(get_property_service)
):
    """Public booking page data; payment details are never included"""
    property = await service.get_property_by_slug(slug)
    return _public_property_to_response(property)

@app.put("/api/properties/{property_id}", response_model=PropertyResponse, tags=["Properties"])
async def update_property(
    property_id: UUID,
    request: UpdatePropertyRequest,
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    changes = request.model_dump(mode="json", exclude_unset=True)
    property = await service.update_property(current_user, property_id, changes)
    return _property_to_response(property)

@app.post("/api/properties/{property_id}/deactivate", response_model=PropertyResponse, tags=["Properties"])
async def deactivate_property(
    property_id: UUID,
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    """Hide a listing from the public booking page"""
    property = await service.deactivate_property(current_user, property_id)
    return _property_to_response(property)

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@app.post("/api/properties/{property_id}/rooms", response_model=RoomResponse, status_code=201, tags=["Rooms"])
async def add_room(
    property_id: UUID,
    request: CreateRoomRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    room = await service.add_room(current_user, property_id, **_room_payload(request.model_dump(mode="json")))
    return _room_to_response(room)

@app.get("/api/properties/{property_id}/rooms", response_model=List[RoomResponse], tags=["Rooms"])
async def get_property_rooms(
    property_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """All rooms of a property, active or not"""
    rooms = await service.list_property_rooms(current_user, property_id)
    return [_room_to_response(r) for r in rooms]

@app.get("/api/rooms/public", response_model=List[RoomResponse], tags=["Rooms"])
async def get_public_rooms(
    property_id: UUID,
    service: RoomService = Depends(get_room_service)
):
    """Bookable rooms of an active property"""
    rooms = await service.list_public_rooms(property_id)
    return [_room_to_response(r) for r in rooms]

@app.get("/api/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"])
async def get_room(
    room_id: UUID,
    service: RoomService = Depends(get_room_service)
):
    return _room_to_response(await service.get_room(room_id))

@app.put("/api/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"])
async def update_room(
    room_id: UUID,
    request: UpdateRoomRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    changes = _room_payload(request.model_dump(mode="json", exclude_unset=True))
    room = await service.update_room(current_user, room_id, changes)
    return _room_to_response(room)

@app.get("/api/rooms/{room_id}/availability", response_model=AvailabilityResponse, tags=["Availability"])
async def check_availability(
    room_id: UUID,
    check_in: date,
    check_out: date,
    service: AvailabilityService = Depends(get_availability_service)
):
    """Check whether a room is free for [check_in, check_out)"""
    return await service.check_availability(room_id, check_in, check_out)

# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@app.post("/api/bookings", response_model=BookingSummaryResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: Optional[User] = Depends(get_current_actor)
):
    """Create a booking; works anonymously from the public booking page"""
    booking = await service.create_booking(
        property_id=request.property_id,
        room_id=request.room_id,
        check_in=request.check_in,
        check_out=request.check_out,
        guest_name=request.guest.name,
        guest_phone=request.guest.phone,
        guest_email=request.guest.email,
        adults=request.adults,
        younger_children=request.younger_children,
        older_children=request.older_children,
        special_requests=request.special_requests,
        actor=current_user,
        initial_status=request.status
    )
    return _booking_to_summary(booking)

@app.get("/api/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def get_bookings(
    property_id: Optional[UUID] = None,
    status: Optional[BookingStatus] = None,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Bookings visible to the current user"""
    items = await service.list_bookings(current_user, property_id=property_id, status=status)
    return [_list_item_to_response(item) for item in items]

@app.get("/api/bookings/host", response_model=List[BookingResponse], tags=["Bookings"])
async def get_host_bookings(
    filter: HostBookingFilter = HostBookingFilter.ALL,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Host booking list: all, today, pending, upcoming or past"""
    items = await service.list_host_bookings(current_user, filter)
    return [_list_item_to_response(item) for item in items]

@app.get("/api/bookings/{booking_ref}", response_model=BookingDetailsResponse, tags=["Bookings"])
async def get_booking_details(
    booking_ref: str,
    service: BookingService = Depends(get_booking_service)
):
    """Booking by id or reference, with property and room summaries"""
    details = await service.get_booking_details(booking_ref)
    return BookingDetailsResponse(
        booking=_booking_to_response(details.booking, details.room),
        property=PropertySummary(
            name=details.property.name,
            address=details.property.address.model_dump(),
            phone_numbers=details.property.phone_numbers
        ) if details.property else None,
        room=RoomSummary(
            category=details.room.category,
            room_number=details.room.room_number,
            images=details.room.images,
            capacity=details.room.capacity.model_dump()
        ) if details.room else None
    )

@app.put("/api/bookings/{booking_id}/status", response_model=BookingResponse, tags=["Bookings"])
async def update_booking_status(
    booking_id: UUID,
    request: UpdateBookingStatusRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Confirm, decline, check in, check out, mark no-show or cancel"""
    booking = await service.transition_status(current_user, booking_id, request.status, request.details)
    return _booking_to_response(booking)

# ============================================================================
# DASHBOARD ENDPOINTS
# ============================================================================

@app.get("/api/dashboard/stats", response_model=DashboardStatsResponse, tags=["Dashboard"])
async def get_dashboard_stats(
    property_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    stats = await service.get_dashboard_stats(current_user, property_id)
    return stats.model_dump()

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _room_payload(data: dict) -> dict:
    """Drop unset rate fields so the room pricing variant is picked by mode"""
    if data.get("pricing"):
        data["pricing"] = {k: v for k, v in data["pricing"].items() if v is not None}
    return data

def _public_property_to_response(property: Property) -> PublicPropertyResponse:
    """Convert Property entity to the public view"""
    return PublicPropertyResponse(
        property_id=property.property_id,
        name=property.name,
        address=property.address.model_dump(),
        description=property.description,
        phone_numbers=property.phone_numbers,
        pricing=property.pricing.model_dump(),
        slug=property.slug,
        public_url=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/{property.slug}",
        amenities=property.amenities,
        images=property.images,
        total_rooms=property.total_rooms,
        is_verified=property.is_verified
    )

def _property_to_response(property: Property, rooms_count: Optional[int] = None) -> PropertyResponse:
    """Convert Property entity to PropertyResponse"""
    public = _public_property_to_response(property)
    return PropertyResponse(
        **public.model_dump(),
        host_id=property.host_id,
        payment_id=property.payment_id,
        bank_account_name=property.bank_account_name,
        is_active=property.is_active,
        rooms_count=rooms_count,
        created_at=property.created_at,
        updated_at=property.updated_at
    )

def _room_to_response(room: Room) -> RoomResponse:
    """Convert Room entity to RoomResponse"""
    return RoomResponse(
        room_id=room.room_id,
        property_id=room.property_id,
        category=room.category,
        room_number=room.room_number,
        name=room.name,
        description=room.description,
        capacity=room.capacity.model_dump(),
        pricing=room.pricing.model_dump(mode="json"),
        amenities=room.amenities,
        images=room.images,
        is_active=room.is_active,
        is_available=room.is_available
    )

def _booking_to_summary(booking: Booking) -> BookingSummaryResponse:
    return BookingSummaryResponse(
        booking_id=booking.booking_id,
        reference=booking.reference,
        check_in=booking.date_range.check_in,
        check_out=booking.date_range.check_out,
        status=booking.status,
        guest_name=booking.guest.name,
        guest_phone=booking.guest.phone,
        total_amount=booking.pricing.total_amount
    )

def _booking_to_response(booking: Booking, room: Optional[Room] = None) -> BookingResponse:
    """Convert Booking entity to BookingResponse"""
    return BookingResponse(
        booking_id=booking.booking_id,
        reference=booking.reference,
        property_id=booking.property_id,
        room_id=booking.room_id,
        user_id=booking.user_id,
        guest=booking.guest.model_dump(),
        check_in=booking.date_range.check_in,
        check_out=booking.date_range.check_out,
        nights=booking.get_nights(),
        adults=booking.guests.adults,
        younger_children=booking.guests.younger_children,
        older_children=booking.guests.older_children,
        pricing=booking.pricing.model_dump(),
        status=booking.status,
        special_requests=booking.special_requests,
        history=[entry.model_dump() for entry in booking.history],
        created_at=booking.created_at,
        updated_at=booking.updated_at,
        version=booking.version,
        room_category=room.category if room else None,
        room_number=room.room_number if room else None
    )

def _list_item_to_response(item: BookingListItem) -> BookingResponse:
    return _booking_to_response(item.booking, item.room)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
