"""Tests for dashboard and manifest views."""
from datetime import timedelta
from shuttlebook.backend.db.models import BookingOrigin, PaymentStatus, TripInstanceStatus
from shuttlebook.backend.services.booking import BookingService
from shuttlebook.backend.services.reporting import ReportingService
from shuttlebook.backend.services.trip_instance import TripInstanceService


def test_trip_instance_snapshot(db_session, make_trip, make_shuttle, book):
    shuttle = make_shuttle(total_seats=6)
    trip = make_trip(legs=3)
    first = book(trip, seats=2, from_leg=0, to_leg=1)
    book(trip, seats=3, from_leg=1, to_leg=2, origin=BookingOrigin.FRONTDESK)

    snapshot = ReportingService().trip_instance_snapshot(db_session, first.assigned_slot.trip_instance_id)

    assert snapshot.status == TripInstanceStatus.SCHEDULED
    assert snapshot.vehicle_number == shuttle.vehicle_number
    assert snapshot.capacity == 6
    assert snapshot.max_used_seats == 5
    assert snapshot.booking_count == 2
    assert [(leg.seats_occupied, leg.seat_held) for leg in snapshot.per_leg_occupancy] == [
        (0, 2), (3, 2), (3, 0)
    ]
    assert [leg.available_seats for leg in snapshot.per_leg_occupancy] == [4, 1, 3]


def test_dashboard_stats(db_session, hotel, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=8)
    trip = make_trip()
    paid = book(trip, seats=2, guest_id="guest-a")
    book(trip, seats=1, guest_id="guest-b", origin=BookingOrigin.FRONTDESK)
    rejected = book(trip, seats=1, guest_id="guest-c")

    service = BookingService()
    service.update_payment_status(db_session, paid.booking.id, PaymentStatus.PAID, "frontdesk-1", now)
    service.reject_booking(db_session, rejected.booking.id, "frontdesk-1", "Duplicate", now)

    stats = ReportingService().dashboard_stats(db_session, hotel.id, now.date())

    assert stats.overview.total_bookings == 3
    assert stats.overview.pending_bookings == 1
    assert stats.overview.confirmed_bookings == 1
    assert stats.overview.rejected_bookings == 1
    assert stats.overview.total_earnings == 30.0
    assert stats.overview.scheduled_trips == 1
    assert stats.overview.active_shuttles == 1
    assert stats.today.bookings == 3
    assert stats.today.earnings == 30.0
    assert len(stats.daily_bookings) == 30
    assert stats.daily_bookings[-1].day == now.date()
    assert stats.daily_bookings[-1].total == 3
    assert stats.payment_stats == {"unpaid": 2, "paid": 1, "refunded": 0, "waived": 0}
    assert stats.payment_method_stats["app"] == 3


def test_active_trips_and_manifest(db_session, hotel, make_trip, make_shuttle, book, service_day, now):
    shuttle = make_shuttle(total_seats=4, driver_id="driver-1")
    trip = make_trip(legs=2)
    result = book(trip, seats=3, from_leg=1, to_leg=1)
    service = ReportingService()

    active = service.active_trips(db_session, hotel.id, service_day)
    assert len(active) == 1
    assert active[0].driver_id == "driver-1"
    assert active[0].max_held == 3
    assert active[0].capacity == 4
    assert service.active_trips(db_session, hotel.id, service_day + timedelta(days=1)) == []

    manifest = service.driver_manifest(db_session, "driver-1", service_day)
    assert [entry.trip_instance_id for entry in manifest] == [result.assigned_slot.trip_instance_id]
    assert manifest[0].total_seats == shuttle.total_seats
    assert service.driver_manifest(db_session, "driver-2", service_day) == []

    TripInstanceService().cancel(db_session, result.assigned_slot.trip_instance_id, "admin-1", "Storm", now)
    assert service.active_trips(db_session, hotel.id, service_day) == []
