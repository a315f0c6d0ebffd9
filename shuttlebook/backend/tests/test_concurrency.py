"""Concurrent allocation tests: threads with their own sessions race for seats."""
import threading
import pytest
from datetime import time
from fastapi.testclient import TestClient
from shuttlebook.backend.db.models import RouteInstance, TripInstance, Booking
from shuttlebook.backend.core.errors import InsufficientCapacity
from shuttlebook.backend.db.session import get_db
from shuttlebook.backend.main import app
from shuttlebook.backend.schemas.booking import BookingCreate
from shuttlebook.backend.services.booking import BookingService


def race(session_factory, requests, now):
    """Run one booking per thread, all released at once."""
    barrier = threading.Barrier(len(requests))
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(data):
        session = session_factory()
        try:
            barrier.wait()
            try:
                result = BookingService().create_booking(session, data, now, user=data.guest_id)
                outcome = ("ok", result.assigned_slot.trip_instance_id)
            except InsufficientCapacity as exc:
                outcome = ("full", exc.message)
            except Exception as exc:
                outcome = ("error", repr(exc))
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(data,)) for data in requests]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


@pytest.mark.parametrize("guests,capacity", [(8, 5), (3, 5)])
def test_no_overbooking_under_concurrency(
    session_factory, db_session, hotel, make_trip, make_shuttle, service_day, now, guests, capacity
):
    make_shuttle(total_seats=capacity)
    trip = make_trip(legs=2)
    requests = [
        BookingCreate(
            guest_id=f"guest-{i}",
            trip_id=trip.id,
            hotel_id=hotel.id,
            scheduled_date=service_day,
            desired_time=time(9, 0),
            seats=1,
        )
        for i in range(guests)
    ]

    outcomes = race(session_factory, requests, now)

    assert [kind for kind, _ in outcomes if kind == "error"] == []
    successes = [detail for kind, detail in outcomes if kind == "ok"]
    failures = [detail for kind, detail in outcomes if kind == "full"]
    assert len(successes) == min(guests, capacity)
    assert len(failures) == guests - min(guests, capacity)

    # every success landed on the one instance for the slot
    assert len(set(successes)) == 1
    db_session.expire_all()
    assert db_session.query(TripInstance).count() == 1
    legs = db_session.query(RouteInstance).all()
    assert all(ri.seat_held == min(guests, capacity) for ri in legs)
    assert all(ri.used_seats <= capacity for ri in legs)
    assert db_session.query(Booking).count() == min(guests, capacity)


def test_concurrent_overlapping_ranges(session_factory, db_session, hotel, make_trip, make_shuttle, service_day, now):
    """Bookings on disjoint leg ranges share seats; overlapping ones compete."""
    make_shuttle(total_seats=2)
    trip = make_trip(legs=3)

    def request(i, from_leg, to_leg):
        return BookingCreate(
            guest_id=f"guest-{i}",
            trip_id=trip.id,
            hotel_id=hotel.id,
            scheduled_date=service_day,
            desired_time=time(9, 0),
            seats=1,
            from_leg=from_leg,
            to_leg=to_leg,
        )

    # four riders on leg 0 only, four on leg 2 only: two of each fit
    requests = [request(i, 0, 0) for i in range(4)] + [request(i + 4, 2, 2) for i in range(4)]

    outcomes = race(session_factory, requests, now)

    assert [kind for kind, _ in outcomes if kind == "error"] == []
    assert sum(1 for kind, _ in outcomes if kind == "ok") == 4
    db_session.expire_all()
    counters = [
        ri.seat_held
        for ri in db_session.query(RouteInstance).order_by(RouteInstance.order_index).all()
    ]
    assert counters == [2, 0, 2]


def test_no_overbooking_over_http(session_factory, db_session, hotel, make_trip, make_shuttle, service_day):
    """Booking requests race through the API, each with its own session."""
    make_shuttle(total_seats=3)
    trip = make_trip()

    def session_per_request():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = session_per_request
    client = TestClient(app)
    barrier = threading.Barrier(6)
    codes = []
    codes_lock = threading.Lock()

    def worker(i):
        barrier.wait()
        response = client.post("/api/bookings", json={
            "guest_id": f"guest-{i}",
            "trip_id": trip.id,
            "hotel_id": hotel.id,
            "scheduled_date": service_day.isoformat(),
            "desired_time": "09:00",
            "seats": 1,
        }, headers={"X-User-Id": f"guest-{i}"})
        with codes_lock:
            codes.append(response.status_code)

    try:
        threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
    finally:
        app.dependency_overrides.clear()

    assert sorted(codes) == [201, 201, 201, 409, 409, 409]
    db_session.expire_all()
    assert db_session.query(Booking).count() == 3
    assert db_session.query(RouteInstance).one().seat_held == 3
