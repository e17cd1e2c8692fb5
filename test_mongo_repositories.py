#!/usr/bin/env python3
"""
MongoDB repository tests, run against mongomock
"""

import threading
import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4
from unittest.mock import MagicMock

from pymongo.errors import PyMongoError

from application.services import BookingService, PropertyService, RoomService, UserService
from domain.auth import UserInDB
from domain.entities import Booking, Property, Room
from domain.enums import BookingStatus, HistoryAction, UserRole
from domain.exceptions import (
    ConflictError, DuplicateReferenceError, ErrorCode, NotFoundError, PersistenceError,
)
from domain.repositories import BookingQuery
from domain.value_objects import (
    DateRange, GuestComposition, GuestInfo, PerRoomPricing, PricingBreakdown, utc_now,
)
from infrastructure.config import Settings
from infrastructure.repositories.mongo_repositories import (
    MongoBookingRepository, MongoPropertyRepository, MongoRoomRepository, MongoUserRepository,
)

mongomock = pytest.importorskip("mongomock")

ADDRESS = {
    "address": "12 Lake Road",
    "city": "Nainital",
    "state": "Uttarakhand",
    "country": "India",
    "pin_code": "263001",
}

STAY = date(2031, 3, 10)


@pytest.fixture
def db():
    return mongomock.MongoClient()["booking_test"]


@pytest.fixture
def bookings(db):
    return MongoBookingRepository(db)


def make_booking(room_id, check_in=STAY, nights=2, property_id=None, user_id=None):
    return Booking.create(
        reference=f"REF-{uuid4().hex[:8]}",
        property_id=property_id or uuid4(),
        room_id=room_id,
        user_id=user_id,
        guest=GuestInfo(name="Ravi", phone="99999", email="ravi@example.com"),
        date_range=DateRange(check_in=check_in, check_out=check_in + timedelta(days=nights)),
        guests=GuestComposition(adults=2, older_children=1),
        pricing=PricingBreakdown(
            room_rate=Decimal("1000"), total_amount=Decimal("2000.50"),
            advance_amount=Decimal("1000.25"), balance_amount=Decimal("1000.25"),
        ),
    )


# ============================================================================
# USERS, PROPERTIES, ROOMS
# ============================================================================

class TestMongoCatalog:
    """Test users, properties and rooms collections"""

    @pytest.mark.infrastructure
    async def test_user_roundtrip_and_unique_email(self, db):
        repo = MongoUserRepository(db)
        user = UserInDB(email="host@example.com", role=UserRole.HOST, hashed_password="hash")
        await repo.save(user)

        loaded = await repo.find_by_email("HOST@example.com")
        assert loaded.user_id == user.user_id
        assert loaded.role == UserRole.HOST

        with pytest.raises(ConflictError) as exc:
            await repo.save(UserInDB(email="host@example.com", hashed_password="other"))
        assert exc.value.error_code == ErrorCode.DUPLICATE_ENTRY

    @pytest.mark.infrastructure
    async def test_user_update(self, db):
        repo = MongoUserRepository(db)
        user = UserInDB(email="a@example.com", hashed_password="hash")
        await repo.save(user)

        user.has_completed_onboarding = True
        await repo.update(user)
        assert (await repo.find_by_id(user.user_id)).has_completed_onboarding

        with pytest.raises(NotFoundError):
            await repo.update(UserInDB(email="ghost@example.com", hashed_password="x"))

    @pytest.mark.infrastructure
    async def test_property_slug_unique(self, db):
        repo = MongoPropertyRepository(db)
        host_id = uuid4()
        first = Property(
            host_id=host_id, name="Oak", address=ADDRESS, total_rooms=1,
            pricing={"type": "perRoom"}, slug="oak-1",
        )
        await repo.save(first)
        assert (await repo.find_by_slug("oak-1")).property_id == first.property_id
        assert [p.property_id for p in await repo.find_by_host(host_id)] == [first.property_id]

        with pytest.raises(ConflictError):
            await repo.save(first.model_copy(update={"property_id": uuid4()}))

    @pytest.mark.infrastructure
    async def test_rooms_sorted_and_counted(self, db):
        repo = MongoRoomRepository(db)
        property_id = uuid4()
        for category, number, active in (("Suite", "1", True), ("Deluxe", "2", True), ("Deluxe", "1", False)):
            await repo.save(Room(
                property_id=property_id, category=category, room_number=number,
                capacity={"adults": 2}, pricing={"mode": "perRoom", "base_rate": "900"}, is_active=active,
            ))

        rooms = await repo.find_by_property(property_id)
        assert [(r.category, r.room_number) for r in rooms] == [("Deluxe", "1"), ("Deluxe", "2"), ("Suite", "1")]
        assert isinstance(rooms[0].pricing, PerRoomPricing)
        assert rooms[0].pricing.base_rate == Decimal("900")
        assert await repo.count_by_property(property_id) == 2
        assert await repo.count_by_property(property_id, active_only=False) == 3
        assert len(await repo.find_by_property(property_id, active_only=True)) == 2

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_duplicate_room_number(self, db):
        repo = MongoRoomRepository(db)
        property_id = uuid4()
        room = Room(
            property_id=property_id, category="Deluxe", room_number="101",
            capacity={"adults": 2}, pricing={"mode": "perRoom"},
        )
        await repo.save(room)
        with pytest.raises(ConflictError):
            await repo.save(room.model_copy(update={"room_id": uuid4()}))


# ============================================================================
# BOOKINGS AND THE NIGHT LEDGER
# ============================================================================

class TestMongoBookings:
    """Test bookings collection and room_nights ledger"""

    @pytest.mark.infrastructure
    async def test_booking_roundtrip(self, bookings):
        booking = make_booking(uuid4())
        await bookings.save(booking)

        loaded = await bookings.find_by_reference(booking.reference)
        assert loaded.booking_id == booking.booking_id
        assert loaded.date_range == booking.date_range
        assert loaded.guests.total == 3
        assert loaded.pricing.total_amount == Decimal("2000.50")
        assert loaded.history[0].action == HistoryAction.CREATED
        assert (await bookings.find_by_id(booking.booking_id)).reference == booking.reference

    @pytest.mark.infrastructure
    async def test_overlap_rejected_and_partial_claim_rolled_back(self, bookings):
        room_id = uuid4()
        await bookings.save(make_booking(room_id, nights=3))

        with pytest.raises(ConflictError):
            await bookings.save(make_booking(room_id, check_in=STAY - timedelta(days=1), nights=2))

        assert bookings.nights.count_documents({"room_id": str(room_id)}) == 3
        assert await bookings.count(BookingQuery(room_id=room_id)) == 1

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_back_to_back_allowed(self, bookings):
        room_id = uuid4()
        await bookings.save(make_booking(room_id))
        await bookings.save(make_booking(room_id, check_in=STAY + timedelta(days=2)))
        assert bookings.nights.count_documents({"room_id": str(room_id)}) == 4

    @pytest.mark.infrastructure
    async def test_cancel_releases_nights(self, bookings):
        room_id = uuid4()
        booking = make_booking(room_id)
        await bookings.save(booking)

        booking.transition_to(BookingStatus.CANCELLED, None)
        await bookings.update(booking)
        assert bookings.nights.count_documents({"room_id": str(room_id)}) == 0

        stored = await bookings.find_by_id(booking.booking_id)
        assert stored.status == BookingStatus.CANCELLED
        assert len(stored.history) == 2
        assert stored.version == 2

        await bookings.save(make_booking(room_id))

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_reactivation_conflict(self, bookings):
        room_id = uuid4()
        first = make_booking(room_id)
        await bookings.save(first)
        first.transition_to(BookingStatus.DECLINED, None)
        await bookings.update(first)
        await bookings.save(make_booking(room_id))

        first.transition_to(BookingStatus.PENDING, None, enforce=False)
        with pytest.raises(ConflictError):
            await bookings.update(first)
        assert (await bookings.find_by_id(first.booking_id)).status == BookingStatus.DECLINED

    @pytest.mark.infrastructure
    async def test_find_conflicting(self, bookings):
        room_id = uuid4()
        booking = make_booking(room_id)
        await bookings.save(booking)

        found = await bookings.find_conflicting(room_id, STAY + timedelta(days=1), STAY + timedelta(days=4))
        assert found.booking_id == booking.booking_id
        assert await bookings.find_conflicting(room_id, STAY + timedelta(days=2), STAY + timedelta(days=4)) is None
        assert await bookings.find_conflicting(
            room_id, STAY, STAY + timedelta(days=1), exclude_booking_id=booking.booking_id
        ) is None

    @pytest.mark.infrastructure
    async def test_query_criteria(self, bookings):
        property_id, room_id, user_id = uuid4(), uuid4(), uuid4()
        older = make_booking(room_id, property_id=property_id, user_id=user_id)
        older.created_at = utc_now() - timedelta(days=40)
        newer = make_booking(room_id, check_in=STAY + timedelta(days=5), property_id=property_id)
        newer.transition_to(BookingStatus.CONFIRMED, None)
        other = make_booking(uuid4())
        for booking in (older, newer, other):
            await bookings.save(booking)

        scoped = await bookings.find(BookingQuery(property_ids=[property_id]))
        assert [b.booking_id for b in scoped] == [newer.booking_id, older.booking_id]

        assert await bookings.count(BookingQuery(user_id=user_id)) == 1
        assert await bookings.count(BookingQuery(statuses=[BookingStatus.CONFIRMED])) == 1
        assert await bookings.count(BookingQuery(exclude_statuses=[BookingStatus.CONFIRMED])) == 2
        assert await bookings.count(BookingQuery(
            check_in_from=STAY + timedelta(days=1), check_in_before=STAY + timedelta(days=6),
        )) == 1
        assert await bookings.count(BookingQuery(check_out_before=STAY + timedelta(days=2))) == 0
        assert await bookings.count(BookingQuery(created_from=utc_now() - timedelta(days=1))) == 2

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_update_unknown(self, bookings):
        with pytest.raises(NotFoundError):
            await bookings.update(make_booking(uuid4()))

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_failed_cancel_keeps_nights(self, bookings, monkeypatch):
        room_id = uuid4()
        booking = make_booking(room_id)
        await bookings.save(booking)

        booking.transition_to(BookingStatus.CANCELLED, None)
        monkeypatch.setattr(bookings.collection, "update_one", MagicMock(side_effect=PyMongoError("write failed")))
        with pytest.raises(PersistenceError):
            await bookings.update(booking)

        assert (await bookings.find_by_id(booking.booking_id)).status == BookingStatus.PENDING
        assert bookings.nights.count_documents({"room_id": str(room_id)}) == 2
        with pytest.raises(ConflictError):
            await bookings.save(make_booking(room_id))

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_failed_reactivation_releases_claim(self, bookings, monkeypatch):
        room_id = uuid4()
        booking = make_booking(room_id)
        await bookings.save(booking)
        booking.transition_to(BookingStatus.DECLINED, None)
        await bookings.update(booking)

        booking.transition_to(BookingStatus.PENDING, None, enforce=False)
        monkeypatch.setattr(bookings.collection, "update_one", MagicMock(side_effect=PyMongoError("write failed")))
        with pytest.raises(PersistenceError):
            await bookings.update(booking)

        assert (await bookings.find_by_id(booking.booking_id)).status == BookingStatus.DECLINED
        assert bookings.nights.count_documents({"booking_id": str(booking.booking_id)}) == 0
        await bookings.save(make_booking(room_id))
        assert bookings.nights.count_documents({"room_id": str(room_id)}) == 2

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_duplicate_reference_releases_nights(self, bookings):
        first = make_booking(uuid4())
        await bookings.save(first)

        clash = make_booking(uuid4()).model_copy(update={"reference": first.reference})
        with pytest.raises(DuplicateReferenceError) as exc:
            await bookings.save(clash)
        assert exc.value.status_code == 409
        assert bookings.nights.count_documents({"room_id": str(clash.room_id)}) == 0
        assert await bookings.count(BookingQuery()) == 1

    @pytest.mark.infrastructure
    async def test_driver_calls_leave_event_loop_thread(self, bookings, monkeypatch):
        booking = make_booking(uuid4())
        await bookings.save(booking)

        real_find_one = bookings.collection.find_one
        callers = []

        def recording_find_one(*args, **kwargs):
            callers.append(threading.get_ident())
            return real_find_one(*args, **kwargs)

        monkeypatch.setattr(bookings.collection, "find_one", recording_find_one)
        loaded = await bookings.find_by_reference(booking.reference)

        assert loaded.booking_id == booking.booking_id
        assert callers and threading.get_ident() not in callers

    @pytest.mark.infrastructure
    @pytest.mark.edge_case
    async def test_driver_error_becomes_persistence_error(self, bookings):
        bookings.collection = MagicMock()
        bookings.collection.find_one.side_effect = PyMongoError("connection refused")

        with pytest.raises(PersistenceError) as exc:
            await bookings.find_by_reference("FRA-BE-1-X-BOOKING")
        assert exc.value.status_code == 500
        assert "connection refused" in exc.value.details["error"]


# ============================================================================
# SERVICES ON MONGO STORAGE
# ============================================================================

class TestServicesOnMongo:
    """Booking flow end to end on the MongoDB repositories"""

    @pytest.mark.integration
    async def test_booking_flow(self, db):
        users, properties, rooms = MongoUserRepository(db), MongoPropertyRepository(db), MongoRoomRepository(db)
        bookings = MongoBookingRepository(db)
        host = await UserService(users).register_user("host@example.com", "hostpass", role=UserRole.HOST)

        property = await PropertyService(properties, rooms, users).register_property(
            host, name="Lakeview Retreat", address=ADDRESS, total_rooms=1, pricing={"type": "perRoom"},
        )
        room = await RoomService(rooms, properties).add_room(
            host, property.property_id, category="Deluxe", room_number="101",
            capacity={"adults": 2, "total": 2}, pricing={"base_rate": "1000", "extra_person_charge": "500"},
        )
        service = BookingService(bookings, rooms, properties, users, Settings(_env_file=None))

        booking = await service.create_booking(
            property.property_id, room.room_id, STAY, STAY + timedelta(days=2),
            "Asha", "98765", adults=3,
        )
        assert booking.pricing.total_amount == Decimal("3000")

        with pytest.raises(ConflictError):
            await service.create_booking(
                property.property_id, room.room_id, STAY + timedelta(days=1), STAY + timedelta(days=3),
                "Ravi", "12345",
            )

        await service.transition_status(host, booking.booking_id, "declined")
        again = await service.create_booking(
            property.property_id, room.room_id, STAY + timedelta(days=1), STAY + timedelta(days=3),
            "Ravi", "12345",
        )
        details = await service.get_booking_details(again.reference)
        assert details.property.name == "Lakeview Retreat"
        assert details.room.room_number == "101"

        assert (await users.find_by_id(host.user_id)).has_completed_onboarding
