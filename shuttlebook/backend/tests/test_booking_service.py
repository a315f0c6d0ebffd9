"""Tests for the booking lifecycle service."""
import pytest
from datetime import time, timedelta
from shuttlebook.backend.db.models import (
    Booking, RouteInstance, TripInstance, BookingStatus, PaymentStatus, SeatLedger,
    CancelledBy, BookingOrigin
)
from shuttlebook.backend.core.errors import (
    ValidationError, InsufficientCapacity, InvalidTransition, Forbidden
)
from shuttlebook.backend.services.allocator import CapacityAllocator
from shuttlebook.backend.services.audit import AuditService
from shuttlebook.backend.services.booking import BookingService


def leg_counters(db_session, trip_instance_id):
    db_session.expire_all()
    legs = (
        db_session.query(RouteInstance)
        .filter_by(trip_instance_id=trip_instance_id)
        .order_by(RouteInstance.order_index)
        .all()
    )
    return [(ri.seats_occupied, ri.seat_held) for ri in legs]


def available(db_session, trip, service_day):
    return CapacityAllocator().find_availability(
        db_session, trip.id, service_day, time(9, 0), time(10, 0)
    ).total_available_seats


def test_hotel_airport_scenario(db_session, make_trip, make_shuttle, book, service_day, now):
    """Hold, confirm and cancel on a 4-seat shuttle with a single leg."""
    make_shuttle(total_seats=4)
    trip = make_trip()
    service = BookingService()

    booking_a = book(trip, seats=3, guest_id="guest-a")
    assert booking_a.booking.booking_status == BookingStatus.PENDING
    assert available(db_session, trip, service_day) == 1

    with pytest.raises(InsufficientCapacity):
        book(trip, seats=2, guest_id="guest-b")

    trip_instance_id = booking_a.assigned_slot.trip_instance_id
    service.confirm_booking(db_session, booking_a.booking.id, "frontdesk-1", now)
    assert leg_counters(db_session, trip_instance_id) == [(3, 0)]
    assert available(db_session, trip, service_day) == 1

    service.cancel_booking(db_session, booking_a.booking.id, "guest-a", "Flight changed", now)
    assert leg_counters(db_session, trip_instance_id) == [(0, 0)]
    assert available(db_session, trip, service_day) == 4


def test_create_booking_prices_leg_range(db_session, make_trip, make_shuttle, book, stops, notifier):
    make_shuttle(total_seats=8)
    trip = make_trip(legs=3, charges=[10.0, 5.0, 7.5])

    result = book(
        trip, seats=2,
        from_location_id=stops[1].id, to_location_id=stops[3].id,
    )

    assert (result.booking.from_route_index, result.booking.to_route_index) == (1, 2)
    assert result.booking.total_price == 25.0
    assert notifier.events[-1][0] == "NEW_BOOKING"
    assert "Awaiting frontdesk confirmation" in result.message


def test_create_booking_message_for_time_inside_slot(db_session, make_trip, make_shuttle, book):
    make_shuttle(total_seats=4)
    trip = make_trip(windows=((time(9, 0), time(11, 0)),))

    inside = book(trip, seats=1, desired=time(9, 30), guest_id="guest-a")
    assert inside.assigned_slot.scheduled_start_time == time(9, 0)
    assert inside.message.startswith("Your shuttle is booked for 09:00.")

    book(trip, seats=3, desired=time(9, 0), guest_id="guest-b")
    shifted = book(trip, seats=1, desired=time(9, 30), guest_id="guest-c")
    assert shifted.assigned_slot.scheduled_start_time == time(10, 0)
    assert shifted.message.startswith("09:30 was unavailable; your shuttle is booked for 10:00.")


def test_create_booking_unknown_stop(db_session, make_trip, make_shuttle, book, stops):
    make_shuttle(total_seats=8)
    trip = make_trip(legs=2)

    with pytest.raises(ValidationError):
        book(trip, seats=1, from_location_id=stops[2].id, to_location_id=stops[1].id)
    with pytest.raises(ValidationError):
        book(trip, seats=1, from_location_id=stops[0].id, to_location_id=stops[5].id)


def test_confirm_twice_rejected(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    trip = make_trip()
    result = book(trip, seats=1)
    service = BookingService()

    confirmed = service.confirm_booking(db_session, result.booking.id, "frontdesk-1", now)
    assert confirmed.booking_status == BookingStatus.CONFIRMED
    assert confirmed.confirmed_by == "frontdesk-1"

    with pytest.raises(InvalidTransition):
        service.confirm_booking(db_session, result.booking.id, "frontdesk-1", now)
    assert leg_counters(db_session, result.assigned_slot.trip_instance_id) == [(1, 0)]


def test_cancel_is_idempotent(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    trip = make_trip()
    keep = book(trip, seats=1, guest_id="guest-a")
    result = book(trip, seats=2, guest_id="guest-b")
    service = BookingService()
    trip_instance_id = result.assigned_slot.trip_instance_id

    service.cancel_booking(db_session, result.booking.id, "guest-b", "Changed plans", now)
    again = service.cancel_booking(db_session, result.booking.id, "guest-b", "Changed plans", now)

    assert again.booking_status == BookingStatus.REJECTED
    assert again.seat_ledger == SeatLedger.RELEASED
    assert leg_counters(db_session, trip_instance_id) == [(0, 1)]

    trip_instance = db_session.query(TripInstance).filter_by(id=trip_instance_id).one()
    assert trip_instance.booking_ids == [keep.booking.id]


def test_guest_cannot_cancel_other_booking(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    trip = make_trip()
    result = book(trip, seats=1, guest_id="guest-a")

    with pytest.raises(Forbidden):
        BookingService().cancel_booking(db_session, result.booking.id, "guest-b", "Not mine", now)

    frontdesk = BookingService().cancel_booking(
        db_session, result.booking.id, "frontdesk-1", "Guest called", now,
        cancelled_by=CancelledBy.FRONTDESK
    )
    assert frontdesk.cancelled_by == CancelledBy.FRONTDESK


def test_reject_pending_only(db_session, make_trip, make_shuttle, book, now, notifier):
    make_shuttle(total_seats=4)
    trip = make_trip()
    pending = book(trip, seats=2)
    direct = book(trip, seats=1, origin=BookingOrigin.FRONTDESK)
    service = BookingService()

    with pytest.raises(ValidationError):
        service.reject_booking(db_session, pending.booking.id, "frontdesk-1", "  ", now)

    rejected = service.reject_booking(
        db_session, pending.booking.id, "frontdesk-1", "No deposit", now, notifier=notifier
    )
    assert rejected.booking_status == BookingStatus.REJECTED
    assert rejected.cancelled_by == CancelledBy.FRONTDESK
    assert notifier.events[-1][0] == "BOOKING_REJECTED"
    assert leg_counters(db_session, pending.assigned_slot.trip_instance_id) == [(1, 0)]

    with pytest.raises(InvalidTransition):
        service.reject_booking(db_session, direct.booking.id, "frontdesk-1", "Too late", now)


def test_payment_state_machine(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    trip = make_trip()
    result = book(trip, seats=1)
    service = BookingService()
    booking_id = result.booking.id

    with pytest.raises(InvalidTransition):
        service.update_payment_status(db_session, booking_id, PaymentStatus.REFUNDED, "frontdesk-1", now)

    paid = service.update_payment_status(db_session, booking_id, PaymentStatus.PAID, "frontdesk-1", now)
    assert paid.payment_status == PaymentStatus.PAID

    with pytest.raises(InvalidTransition):
        service.update_payment_status(db_session, booking_id, PaymentStatus.WAIVED, "frontdesk-1", now, reason="x")

    refunded = service.update_payment_status(db_session, booking_id, PaymentStatus.REFUNDED, "frontdesk-1", now)
    assert refunded.payment_status == PaymentStatus.REFUNDED

    history = AuditService().history(db_session, booking_id)
    assert [entry.action for entry in history][-2:] == ["payment", "payment"]


def test_waiver_needs_reason_and_user(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    trip = make_trip()
    result = book(trip, seats=1)
    service = BookingService()

    with pytest.raises(ValidationError):
        service.update_payment_status(db_session, result.booking.id, PaymentStatus.WAIVED, "frontdesk-1", now)
    with pytest.raises(ValidationError):
        service.update_payment_status(
            db_session, result.booking.id, PaymentStatus.WAIVED, "system", now, reason="Loyalty"
        )

    waived = service.update_payment_status(
        db_session, result.booking.id, PaymentStatus.WAIVED, "manager-1", now, reason="Loyalty"
    )
    assert waived.payment_status == PaymentStatus.WAIVED
    assert waived.waived_by == "manager-1"
    assert waived.waiver_reason == "Loyalty"


def test_release_expired_holds(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    trip = make_trip()
    stale = book(trip, seats=2, guest_id="guest-a", at=now)
    fresh = book(trip, seats=1, guest_id="guest-b", at=now + timedelta(minutes=20))
    confirmed = book(trip, seats=1, guest_id="guest-c", origin=BookingOrigin.FRONTDESK, at=now)
    service = BookingService()

    assert service.release_expired_holds(db_session, now + timedelta(minutes=10)) == []

    released = service.release_expired_holds(db_session, now + timedelta(minutes=31))

    assert released == [stale.booking.id]
    db_session.expire_all()
    swept = db_session.query(Booking).filter_by(id=stale.booking.id).one()
    assert swept.booking_status == BookingStatus.REJECTED
    assert swept.cancelled_by == CancelledBy.AUTO_CANCEL
    assert db_session.query(Booking).filter_by(id=fresh.booking.id).one().booking_status == BookingStatus.PENDING
    assert db_session.query(Booking).filter_by(id=confirmed.booking.id).one().booking_status == BookingStatus.CONFIRMED
    assert leg_counters(db_session, stale.assigned_slot.trip_instance_id) == [(1, 1)]


def test_verify_boarding(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4, driver_id="driver-1")
    trip = make_trip()
    result = book(trip, seats=1, origin=BookingOrigin.FRONTDESK)
    service = BookingService()

    with pytest.raises(Forbidden):
        service.verify_boarding(db_session, result.booking.id, "driver-2", now)

    verified = service.verify_boarding(db_session, result.booking.id, "driver-1", now)
    assert verified.verified_by == "driver-1"

    with pytest.raises(InvalidTransition):
        service.verify_boarding(db_session, result.booking.id, "driver-1", now)
