"""Application Services - Business use cases"""
import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from domain.auth import User, UserInDB
from domain.entities import Booking, Property, Room
from domain.enums import BookingStatus, HostBookingFilter, RELEASED_STATUSES, UserRole
from domain.exceptions import (
    AuthorizationError, BookingError, ConflictError, DuplicateReferenceError, ErrorCode, NotFoundError,
    ValidationError,
)
from domain.pricing import compute_price, room_rate, split_payment
from domain.repositories import (
    BookingQuery, BookingRepository, PropertyRepository, RoomRepository, UserRepository,
)
from domain.value_objects import DateRange, GuestComposition, GuestInfo, PricingBreakdown, utc_now
from infrastructure.config import Settings, get_settings
from infrastructure.security import get_password_hash, verify_password

logger = logging.getLogger(__name__)

PROPERTY_FIELDS = {
    "name", "address", "description", "phone_numbers", "payment_id", "bank_account_name",
    "total_rooms", "pricing", "amenities", "images",
}
ROOM_FIELDS = {
    "category", "room_number", "name", "description", "capacity", "pricing",
    "amenities", "images", "is_active", "is_available",
}
REFERENCE_ATTEMPTS = 5


def _build(model, data: Dict[str, Any]):
    """Validate data into a domain model, reporting problems as ValidationError"""
    try:
        return model.model_validate(data)
    except SchemaError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {model.__name__.lower()} data", details={"errors": errors})


def _today() -> date:
    return utc_now().date()


def _require(actor: Optional[User], *roles: UserRole) -> User:
    if actor is None:
        raise AuthorizationError("Authentication required")
    if actor.role not in roles:
        raise AuthorizationError(f"Role {actor.role.value} cannot perform this action")
    return actor


class BookingDetails(BaseModel):
    booking: Booking
    property: Optional[Property] = None
    room: Optional[Room] = None


class BookingListItem(BaseModel):
    booking: Booking
    room: Optional[Room] = None


class HostProperty(BaseModel):
    property: Property
    rooms_count: int


class DashboardStats(BaseModel):
    check_ins_today: int
    check_outs_today: int
    monthly_bookings: int
    total_rooms: int
    occupied_rooms: int
    available_rooms: int
    occupancy_rate: int


class AvailabilityService:
    """Overlap detection against the active bookings of a room"""

    def __init__(self, booking_repo: BookingRepository, room_repo: Optional[RoomRepository] = None):
        self.booking_repo = booking_repo
        self.room_repo = room_repo

    async def has_conflict(
        self,
        room_id: UUID,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[UUID] = None,
    ) -> bool:
        """True when a pending, confirmed or in-house booking overlaps [check_in, check_out)"""
        conflict = await self.booking_repo.find_conflicting(room_id, check_in, check_out, exclude_booking_id)
        if conflict:
            logger.debug(f"Room {room_id} is held by {conflict.reference} between {check_in} and {check_out}")
        return conflict is not None

    async def check_availability(self, room_id: UUID, check_in: date, check_out: date) -> Dict[str, Any]:
        if self.room_repo is not None and not await self.room_repo.find_by_id(room_id):
            raise NotFoundError("room", room_id)
        if check_out <= check_in:
            raise ValidationError("Check-out must be after check-in", ErrorCode.INVALID_DATE_RANGE)

        date_range = DateRange(check_in=check_in, check_out=check_out)
        return {
            "room_id": room_id,
            "check_in": check_in,
            "check_out": check_out,
            "nights": date_range.nights(),
            "available": not await self.has_conflict(room_id, check_in, check_out),
        }


class BookingService:
    """Service for Booking business use cases"""

    def __init__(
        self,
        booking_repo: BookingRepository,
        room_repo: RoomRepository,
        property_repo: PropertyRepository,
        user_repo: UserRepository,
        settings: Optional[Settings] = None,
    ):
        self.booking_repo = booking_repo
        self.room_repo = room_repo
        self.property_repo = property_repo
        self.user_repo = user_repo
        self.settings = settings or get_settings()
        self.availability = AvailabilityService(booking_repo, room_repo)

    async def _resolve_user_id(self, actor: Optional[User], guest: GuestInfo) -> Optional[UUID]:
        if actor is not None:
            return actor.user_id
        if guest.email:
            user = await self.user_repo.find_by_email(guest.email)
            if user:
                return user.user_id
        return None

    async def _unique_reference(self, property_name: str) -> str:
        now = utc_now()
        reference = Booking.generate_reference(property_name, now)
        while await self.booking_repo.find_by_reference(reference):
            now += timedelta(milliseconds=1)
            reference = Booking.generate_reference(property_name, now)
        return reference

    def _price(self, room: Room, nights: int, guests: GuestComposition) -> PricingBreakdown:
        total = compute_price(
            room.pricing_mode,
            room.pricing,
            nights,
            guests.adults,
            guests.younger_children,
            guests.older_children,
            base_capacity=room.base_capacity,
        )
        advance, balance = split_payment(
            total,
            advance_amount=room.pricing.advance_amount,
            advance_percentage=self.settings.ADVANCE_PERCENTAGE,
        )
        return PricingBreakdown(
            room_rate=room_rate(room.pricing_mode, room.pricing),
            total_amount=total,
            advance_amount=advance,
            balance_amount=balance,
        )

    async def create_booking(
        self,
        property_id: Optional[UUID],
        room_id: Optional[UUID],
        check_in: Optional[date],
        check_out: Optional[date],
        guest_name: Optional[str],
        guest_phone: Optional[str],
        guest_email: Optional[str] = None,
        adults: int = 1,
        younger_children: int = 0,
        older_children: int = 0,
        special_requests: str = "",
        actor: Optional[User] = None,
        initial_status: Optional[Union[BookingStatus, str]] = None,
    ) -> Booking:
        """Validate, check availability, price and persist a new booking"""
        required = {
            "property_id": property_id,
            "room_id": room_id,
            "check_in": check_in,
            "check_out": check_out,
            "guest_name": guest_name.strip() if isinstance(guest_name, str) else guest_name,
            "guest_phone": guest_phone.strip() if isinstance(guest_phone, str) else guest_phone,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                ErrorCode.MISSING_REQUIRED_FIELD,
                details={"missing": missing},
            )

        room = await self.room_repo.find_by_id(room_id)
        if not room:
            raise NotFoundError("room", room_id)
        property = await self.property_repo.find_by_id(property_id)
        if not property:
            raise NotFoundError("property", property_id)
        if room.property_id != property.property_id:
            raise ValidationError("Room does not belong to this property", details={"room_id": str(room_id)})

        if check_out <= check_in:
            raise ValidationError("Check-out must be after check-in", ErrorCode.INVALID_DATE_RANGE)
        date_range = DateRange(check_in=check_in, check_out=check_out)

        guest = _build(GuestInfo, {"name": guest_name, "phone": guest_phone, "email": guest_email})
        guests = _build(GuestComposition, {
            "adults": adults, "younger_children": younger_children, "older_children": older_children,
        })

        if await self.availability.has_conflict(room_id, check_in, check_out):
            logger.warning(f"Rejected booking for room {room_id}: {check_in} to {check_out} is taken")
            raise ConflictError(
                "Room is not available for the selected dates",
                details={"room_id": str(room_id), "check_in": str(check_in), "check_out": str(check_out)},
            )

        user_id = await self._resolve_user_id(actor, guest)
        pricing = self._price(room, date_range.nights(), guests)

        if initial_status is None:
            status = self.settings.DEFAULT_BOOKING_STATUS
        else:
            try:
                status = BookingStatus(initial_status)
            except ValueError:
                raise ValidationError(f"Invalid booking status: {initial_status}")
            if status == BookingStatus.CONFIRMED and not property.is_managed_by(actor):
                raise AuthorizationError("Only the property host can create a confirmed booking")

        booking = Booking.create(
            reference=await self._unique_reference(property.name),
            property_id=property.property_id,
            room_id=room.room_id,
            guest=guest,
            date_range=date_range,
            guests=guests,
            pricing=pricing,
            user_id=user_id,
            special_requests=special_requests,
            initial_status=status,
        )
        for attempt in range(REFERENCE_ATTEMPTS):
            try:
                await self.booking_repo.save(booking)
                break
            except DuplicateReferenceError:
                if attempt == REFERENCE_ATTEMPTS - 1:
                    raise
                logger.warning(f"Reference {booking.reference} taken concurrently, generating another")
                booking.reference = await self._unique_reference(property.name)
        logger.info(f"Created booking {booking.reference} for room {room.room_id} ({booking.status.value})")
        return booking

    async def transition_status(
        self,
        actor: Optional[User],
        booking_id: UUID,
        new_status: Union[BookingStatus, str],
        details: Optional[str] = None,
    ) -> Booking:
        """Move a booking to a new status on behalf of the property's host"""
        try:
            status = BookingStatus(new_status)
        except ValueError:
            raise ValidationError(
                f"Invalid booking status: {new_status}",
                details={"allowed": [s.value for s in BookingStatus]},
            )

        booking = await self.booking_repo.find_by_id(booking_id)
        if not booking:
            raise NotFoundError("booking", booking_id)
        room = await self.room_repo.find_by_id(booking.room_id)
        if not room:
            raise NotFoundError("room", booking.room_id)
        property = await self.property_repo.find_by_id(room.property_id)
        if not property:
            raise NotFoundError("property", room.property_id)

        if not property.is_managed_by(actor):
            logger.warning(f"User {actor.user_id if actor else None} may not update booking {booking.reference}")
            raise AuthorizationError("Not authorized to update this booking")

        previous = booking.status
        booking.transition_to(
            status,
            performed_by=actor.user_id,
            details=details,
            enforce=self.settings.ENFORCE_STATUS_TRANSITIONS,
        )
        await self.booking_repo.update(booking)
        logger.info(f"Booking {booking.reference}: {previous.value} -> {status.value}")
        return booking

    async def get_booking(self, booking_id_or_reference: Union[UUID, str]) -> Booking:
        booking = None
        try:
            booking_id = UUID(str(booking_id_or_reference))
        except ValueError:
            booking = await self.booking_repo.find_by_reference(str(booking_id_or_reference))
        else:
            booking = await self.booking_repo.find_by_id(booking_id)
        if not booking:
            raise NotFoundError("booking", booking_id_or_reference)
        return booking

    async def get_booking_details(self, booking_id_or_reference: Union[UUID, str]) -> BookingDetails:
        """Booking with its property and room; a missing one leaves its view empty"""
        booking = await self.get_booking(booking_id_or_reference)
        return BookingDetails(
            booking=booking,
            property=await self.property_repo.find_by_id(booking.property_id),
            room=await self.room_repo.find_by_id(booking.room_id),
        )

    async def _with_rooms(self, bookings: List[Booking]) -> List[BookingListItem]:
        items = []
        rooms: Dict[UUID, Optional[Room]] = {}
        for booking in bookings:
            if booking.room_id not in rooms:
                try:
                    rooms[booking.room_id] = await self.room_repo.find_by_id(booking.room_id)
                except BookingError as e:
                    logger.warning(f"Could not load room {booking.room_id} for {booking.reference}: {e}")
                    rooms[booking.room_id] = None
            items.append(BookingListItem(booking=booking, room=rooms[booking.room_id]))
        return items

    async def _host_property_ids(self, actor: User) -> List[UUID]:
        return [p.property_id for p in await self.property_repo.find_by_host(actor.user_id)]

    async def list_bookings(
        self,
        actor: Optional[User],
        property_id: Optional[UUID] = None,
        status: Optional[BookingStatus] = None,
    ) -> List[BookingListItem]:
        """Bookings visible to the actor: own stays, own properties, or everything for admins"""
        actor = _require(actor, UserRole.GUEST, UserRole.HOST, UserRole.ADMIN)
        query = BookingQuery(statuses=[status] if status else None)

        if actor.role == UserRole.GUEST:
            query.user_id = actor.user_id
            if property_id:
                query.property_ids = [property_id]
        elif actor.role == UserRole.HOST:
            owned = await self._host_property_ids(actor)
            if property_id:
                if property_id not in owned:
                    raise AuthorizationError("Not authorized to view bookings of this property")
                owned = [property_id]
            query.property_ids = owned
        elif property_id:
            query.property_ids = [property_id]

        return await self._with_rooms(await self.booking_repo.find(query))

    async def list_host_bookings(
        self,
        actor: Optional[User],
        filter: HostBookingFilter = HostBookingFilter.ALL,
        today: Optional[date] = None,
    ) -> List[BookingListItem]:
        actor = _require(actor, UserRole.HOST, UserRole.ADMIN)
        today = today or _today()
        tomorrow = today + timedelta(days=1)

        query = BookingQuery()
        if not actor.is_admin:
            query.property_ids = await self._host_property_ids(actor)

        if filter == HostBookingFilter.TODAY:
            query.check_in_before = tomorrow
            query.check_out_from = today
        elif filter == HostBookingFilter.PENDING:
            query.statuses = [BookingStatus.PENDING]
        elif filter == HostBookingFilter.UPCOMING:
            query.check_in_from = tomorrow
            query.exclude_statuses = list(RELEASED_STATUSES)
        elif filter == HostBookingFilter.PAST:
            query.check_out_before = today

        return await self._with_rooms(await self.booking_repo.find(query))

    async def get_dashboard_stats(
        self,
        actor: Optional[User],
        property_id: UUID,
        today: Optional[date] = None,
    ) -> DashboardStats:
        """Today's arrivals and departures, this month's bookings and current occupancy"""
        property = await self.property_repo.find_by_id(property_id)
        if not property:
            raise NotFoundError("property", property_id)
        if not property.is_managed_by(actor):
            raise AuthorizationError("Not authorized to view this dashboard")

        today = today or _today()
        tomorrow = today + timedelta(days=1)
        month_start = datetime(today.year, today.month, 1, tzinfo=timezone.utc)
        next_month = datetime(
            today.year + (today.month == 12), today.month % 12 + 1, 1, tzinfo=timezone.utc
        )
        scope = [property_id]

        check_ins = await self.booking_repo.count(BookingQuery(
            property_ids=scope,
            check_in_from=today,
            check_in_before=tomorrow,
            statuses=[BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN],
        ))
        check_outs = await self.booking_repo.count(BookingQuery(
            property_ids=scope,
            check_out_from=today,
            check_out_before=tomorrow,
            statuses=[BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT],
        ))
        monthly = await self.booking_repo.count(BookingQuery(
            property_ids=scope,
            created_from=month_start,
            created_before=next_month,
            exclude_statuses=[BookingStatus.CANCELLED],
        ))
        occupied = await self.booking_repo.count(BookingQuery(
            property_ids=scope,
            check_in_before=tomorrow,
            check_out_from=tomorrow,
            statuses=[BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN],
        ))
        total_rooms = await self.room_repo.count_by_property(property_id, active_only=True)

        return DashboardStats(
            check_ins_today=check_ins,
            check_outs_today=check_outs,
            monthly_bookings=monthly,
            total_rooms=total_rooms,
            occupied_rooms=occupied,
            available_rooms=max(0, total_rooms - occupied),
            occupancy_rate=round(occupied / total_rooms * 100) if total_rooms else 0,
        )


class PropertyService:
    """Service for host listings"""

    def __init__(self, property_repo: PropertyRepository, room_repo: RoomRepository, user_repo: UserRepository):
        self.property_repo = property_repo
        self.room_repo = room_repo
        self.user_repo = user_repo

    async def _managed(self, actor: Optional[User], property_id: UUID) -> Property:
        property = await self.property_repo.find_by_id(property_id)
        if not property:
            raise NotFoundError("property", property_id)
        if not property.is_managed_by(actor):
            raise AuthorizationError("Not authorized to manage this property")
        return property

    async def register_property(self, actor: Optional[User], **data) -> Property:
        """Create a listing with a unique public slug and mark the host onboarded"""
        actor = _require(actor, UserRole.HOST, UserRole.ADMIN)
        unknown = set(data) - PROPERTY_FIELDS
        if unknown:
            raise ValidationError(f"Unknown property fields: {', '.join(sorted(unknown))}")

        name = data.get("name") or ""
        property = _build(Property, {
            **data,
            "host_id": actor.user_id,
            "slug": Property.make_slug(name, secrets.token_urlsafe(6)),
        })
        await self.property_repo.save(property)
        logger.info(f"Registered property {property.property_id} ({property.slug}) for host {actor.user_id}")

        user = await self.user_repo.find_by_id(actor.user_id)
        if user and not user.has_completed_onboarding:
            user.has_completed_onboarding = True
            await self.user_repo.update(user)
        return property

    async def update_property(self, actor: Optional[User], property_id: UUID, changes: Dict[str, Any]) -> Property:
        property = await self._managed(actor, property_id)
        unknown = set(changes) - PROPERTY_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        updated = _build(Property, {**property.model_dump(), **changes, "updated_at": utc_now()})
        if updated.pricing.type != property.pricing.type:
            rooms = await self.room_repo.find_by_property(property_id)
            if any(room.pricing_mode != updated.pricing.type for room in rooms):
                raise ValidationError("Pricing mode conflicts with existing rooms; update the rooms first")

        await self.property_repo.update(updated)
        logger.info(f"Updated property {property_id}: {', '.join(sorted(changes))}")
        return updated

    async def deactivate_property(self, actor: Optional[User], property_id: UUID) -> Property:
        property = await self._managed(actor, property_id)
        property.deactivate()
        await self.property_repo.update(property)
        logger.info(f"Deactivated property {property_id}")
        return property

    async def get_property_by_slug(self, slug: str) -> Property:
        property = await self.property_repo.find_by_slug(slug)
        if not property or not property.is_active:
            raise NotFoundError("property", slug)
        return property

    async def list_host_properties(self, actor: Optional[User]) -> List[HostProperty]:
        actor = _require(actor, UserRole.HOST, UserRole.ADMIN)
        properties = await self.property_repo.find_by_host(actor.user_id)
        return [
            HostProperty(
                property=p,
                rooms_count=await self.room_repo.count_by_property(p.property_id, active_only=False),
            )
            for p in properties
        ]


class RoomService:
    """Service for the rooms of a property"""

    def __init__(self, room_repo: RoomRepository, property_repo: PropertyRepository):
        self.room_repo = room_repo
        self.property_repo = property_repo

    async def _managed_property(self, actor: Optional[User], property_id: UUID) -> Property:
        property = await self.property_repo.find_by_id(property_id)
        if not property:
            raise NotFoundError("property", property_id)
        if not property.is_managed_by(actor):
            raise AuthorizationError("Not authorized to manage rooms of this property")
        return property

    def _room_data(self, property: Property, data: Dict[str, Any]) -> Dict[str, Any]:
        pricing = data.get("pricing")
        if isinstance(pricing, dict) and "mode" not in pricing:
            data = {**data, "pricing": {**pricing, "mode": property.pricing.type.value}}
        return data

    def _check_pricing(self, property: Property, room: Room) -> None:
        if room.pricing_mode != property.pricing.type:
            raise ValidationError(
                f"Room pricing must use the property pricing mode {property.pricing.type.value}",
                details={"room_mode": room.pricing_mode.value, "property_mode": property.pricing.type.value},
            )

    async def add_room(self, actor: Optional[User], property_id: UUID, **data) -> Room:
        property = await self._managed_property(actor, property_id)
        unknown = set(data) - ROOM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown room fields: {', '.join(sorted(unknown))}")

        room = _build(Room, {**self._room_data(property, data), "property_id": property_id})
        self._check_pricing(property, room)
        await self.room_repo.save(room)
        logger.info(f"Added room {room.category}/{room.room_number} to property {property_id}")
        return room

    async def update_room(self, actor: Optional[User], room_id: UUID, changes: Dict[str, Any]) -> Room:
        room = await self.get_room(room_id)
        property = await self._managed_property(actor, room.property_id)
        unknown = set(changes) - ROOM_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        pricing = changes.get("pricing")
        if isinstance(pricing, dict) and pricing.get("mode", room.pricing.mode) == room.pricing.mode:
            # rate fields not supplied keep their current values
            changes = {**changes, "pricing": {**room.pricing.model_dump(), **pricing}}

        data = {**room.model_dump(), **self._room_data(property, changes), "updated_at": utc_now()}
        updated = _build(Room, data)
        self._check_pricing(property, updated)
        await self.room_repo.update(updated)
        logger.info(f"Updated room {room_id}")
        return updated

    async def get_room(self, room_id: UUID) -> Room:
        room = await self.room_repo.find_by_id(room_id)
        if not room:
            raise NotFoundError("room", room_id)
        return room

    async def list_public_rooms(self, property_id: UUID) -> List[Room]:
        """Active rooms of an active property"""
        property = await self.property_repo.find_by_id(property_id)
        if not property or not property.is_active:
            raise NotFoundError("property", property_id)
        return await self.room_repo.find_by_property(property_id, active_only=True)

    async def list_property_rooms(self, actor: Optional[User], property_id: UUID) -> List[Room]:
        await self._managed_property(actor, property_id)
        return await self.room_repo.find_by_property(property_id)


class UserService:
    """Service for accounts and login"""

    def __init__(self, user_repo: UserRepository):
        self.user_repo = user_repo

    async def register_user(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        role: UserRole = UserRole.GUEST,
    ) -> User:
        role = UserRole(role)
        if role == UserRole.ADMIN:
            raise AuthorizationError("Admin accounts cannot be self-registered")
        if not password:
            raise ValidationError("Password is required", ErrorCode.MISSING_REQUIRED_FIELD)

        user = UserInDB(
            email=email.strip().lower(),
            name=name,
            phone=phone,
            role=role,
            hashed_password=get_password_hash(password),
        )
        await self.user_repo.save(user)
        logger.info(f"Registered {role.value} account {user.user_id}")
        return user.public()

    async def ensure_admin(self, email: str, password: str) -> User:
        """Create the bootstrap admin account unless it already exists"""
        existing = await self.user_repo.find_by_email(email)
        if existing:
            return existing.public()
        admin = UserInDB(
            email=email.strip().lower(),
            name="Admin",
            role=UserRole.ADMIN,
            has_completed_onboarding=True,
            hashed_password=get_password_hash(password),
        )
        await self.user_repo.save(admin)
        logger.info(f"Created admin account {admin.email}")
        return admin.public()

    async def authenticate(self, email: str, password: str) -> Optional[UserInDB]:
        user = await self.user_repo.find_by_email(email)
        if not user or not verify_password(password, user.hashed_password):
            logger.info("Failed login attempt")
            return None
        return user

    async def get_user(self, user_id: UUID) -> Optional[User]:
        user = await self.user_repo.find_by_id(user_id)
        return user.public() if user else None

    async def complete_onboarding(self, actor: Optional[User], role: UserRole) -> User:
        if actor is None:
            raise AuthorizationError("Authentication required")
        role = UserRole(role)
        if role == UserRole.ADMIN:
            raise AuthorizationError("Admin role cannot be self-assigned")

        user = await self.user_repo.find_by_id(actor.user_id)
        if not user:
            raise NotFoundError("user", actor.user_id)
        if not user.is_admin:
            user.role = role
        user.has_completed_onboarding = True
        await self.user_repo.update(user)
        return user.public()
