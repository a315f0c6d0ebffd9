"""Tests for trip template management."""
import pytest
from datetime import time
from shuttlebook.backend.db.models import Trip, Route
from shuttlebook.backend.schemas.trip import TripCreate, TripUpdate, LegCreate, ScheduleWindow
from shuttlebook.backend.core.errors import NotFound, ValidationError, InvalidTransition
from shuttlebook.backend.services.trip import TripService
from shuttlebook.backend.services.trip_instance import TripInstanceService


def test_create_trip_orders_legs(db_session, make_trip):
    trip = make_trip(legs=3, windows=((time(6, 0), time(9, 0)), (time(17, 0), time(20, 0))))

    assert [route.order_index for route in trip.routes] == [0, 1, 2]
    assert [window.start_time for window in trip.schedules] == [time(6, 0), time(17, 0)]
    assert trip.is_active


def test_create_trip_rejects_broken_chain(db_session, hotel, stops):
    service = TripService()
    data = TripCreate(
        name="Broken",
        hotel_id=hotel.id,
        legs=[
            LegCreate(start_location_id=stops[0].id, end_location_id=stops[1].id),
            LegCreate(start_location_id=stops[2].id, end_location_id=stops[3].id),
        ],
    )

    with pytest.raises(ValidationError):
        service.create_trip(db_session, data)


def test_create_trip_rejects_bad_input(db_session, hotel, stops):
    service = TripService()

    with pytest.raises(ValidationError):
        service.create_trip(db_session, TripCreate(
            name="Loop", hotel_id=hotel.id,
            legs=[LegCreate(start_location_id=stops[0].id, end_location_id=stops[0].id)],
        ))
    with pytest.raises(ValidationError):
        service.create_trip(db_session, TripCreate(
            name="Ghost", hotel_id=hotel.id,
            legs=[LegCreate(start_location_id=stops[0].id, end_location_id="nowhere")],
        ))
    with pytest.raises(ValidationError):
        service.create_trip(db_session, TripCreate(
            name="Backwards", hotel_id=hotel.id,
            legs=[LegCreate(start_location_id=stops[0].id, end_location_id=stops[1].id)],
            schedules=[ScheduleWindow(start_time=time(10, 0), end_time=time(9, 0))],
        ))
    with pytest.raises(NotFound):
        service.create_trip(db_session, TripCreate(
            name="Orphan", hotel_id="missing",
            legs=[LegCreate(start_location_id=stops[0].id, end_location_id=stops[1].id)],
        ))

    assert db_session.query(Trip).count() == 0


def test_update_legs_blocked_once_instances_exist(db_session, make_trip, make_shuttle, book, stops):
    make_shuttle(total_seats=4)
    trip = make_trip(legs=1)
    service = TripService()

    renamed = service.update_trip(db_session, trip.id, TripUpdate(name="Airport Express"))
    assert renamed.name == "Airport Express"

    relegged = service.update_trip(db_session, trip.id, TripUpdate(legs=[
        LegCreate(start_location_id=stops[0].id, end_location_id=stops[1].id, charges=20.0),
        LegCreate(start_location_id=stops[1].id, end_location_id=stops[2].id, charges=5.0),
    ]))
    assert len(relegged.routes) == 2
    assert db_session.query(Route).filter_by(trip_id=trip.id).count() == 2

    book(trip, seats=1)

    with pytest.raises(InvalidTransition):
        service.update_trip(db_session, trip.id, TripUpdate(legs=[
            LegCreate(start_location_id=stops[0].id, end_location_id=stops[1].id),
        ]))

    rescheduled = service.update_trip(db_session, trip.id, TripUpdate(
        schedules=[ScheduleWindow(start_time=time(12, 0), end_time=time(14, 0))]
    ))
    assert [window.start_time for window in rescheduled.schedules] == [time(12, 0)]


def test_delete_trip(db_session, make_trip, make_shuttle, book, now):
    make_shuttle(total_seats=4)
    service = TripService()

    unused = make_trip(name="Unused")
    assert service.delete_trip(db_session, unused.id) is True
    assert db_session.query(Trip).filter_by(id=unused.id).first() is None

    busy = make_trip(name="Busy")
    result = book(busy, seats=1)
    with pytest.raises(InvalidTransition):
        service.delete_trip(db_session, busy.id)

    TripInstanceService().cancel(
        db_session, result.assigned_slot.trip_instance_id, "admin-1", "Season over", now
    )
    assert service.delete_trip(db_session, busy.id) is False
    archived = service.get_trip(db_session, busy.id)
    assert archived.is_active is False
    assert [trip.id for trip in service.list_trips(db_session)] == []
    assert len(service.list_trips(db_session, include_archived=True)) == 1
