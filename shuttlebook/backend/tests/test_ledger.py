"""Tests for the per-leg occupancy ledger."""
import pytest
from shuttlebook.backend.db.models import RouteInstance, TripInstance
from shuttlebook.backend.core.errors import (
    InsufficientCapacity, InvalidTransition, ValidationError, ConcurrencyConflict
)
from shuttlebook.backend.services.ledger import OccupancyLedger, LedgerView


def make_view(counters, capacity=4):
    """Build an in-memory view from (occupied, held) pairs."""
    legs = [
        RouteInstance(order_index=i, seats_occupied=occupied, seat_held=held, completed=False)
        for i, (occupied, held) in enumerate(counters)
    ]
    return LedgerView(trip_instance=TripInstance(id="ti-1"), route_instances=legs, capacity=capacity)


def test_max_used_is_max_not_sum():
    """Seats in use over a range is the busiest leg, not the total."""
    view = make_view([(0, 2), (0, 5), (0, 1)], capacity=6)

    assert OccupancyLedger.max_used(view.route_instances, 0, 2) == 5
    assert OccupancyLedger.available_seats(view.route_instances, 6, 0, 2) == 1


def test_available_seats_scoped_to_range():
    view = make_view([(3, 0), (0, 0), (1, 1)], capacity=4)

    assert OccupancyLedger.available_seats(view.route_instances, 4, 1, 1) == 4
    assert OccupancyLedger.available_seats(view.route_instances, 4, 1, 2) == 2
    assert OccupancyLedger.available_seats(view.route_instances, 4) == 1


def test_available_seats_never_negative():
    view = make_view([(5, 0)], capacity=4)

    assert OccupancyLedger.available_seats(view.route_instances, 4) == 0


def test_legs_in_range():
    view = make_view([(0, 0)] * 5)

    legs = OccupancyLedger.legs_in_range(view.route_instances, 1, 3)
    assert [ri.order_index for ri in legs] == [1, 2, 3]


def test_apply_touches_only_range():
    ledger = OccupancyLedger()
    view = make_view([(0, 0)] * 5, capacity=4)

    ledger.apply(view, 1, 3, held_delta=2)

    assert [ri.seat_held for ri in view.route_instances] == [0, 2, 2, 2, 0]
    assert view.trip_instance.updated_at is not None


def test_apply_is_all_or_nothing():
    """A full leg in the middle of the range leaves every leg untouched."""
    ledger = OccupancyLedger()
    view = make_view([(0, 0), (3, 0), (0, 0)], capacity=4)

    with pytest.raises(InsufficientCapacity):
        ledger.apply(view, 0, 2, held_delta=2)

    assert [ri.used_seats for ri in view.route_instances] == [0, 3, 0]


def test_apply_release_below_zero_rejected():
    ledger = OccupancyLedger()
    view = make_view([(1, 0), (0, 0)], capacity=4)

    with pytest.raises(InvalidTransition):
        ledger.apply(view, 0, 1, occupied_delta=-1)

    assert view.route_instances[0].seats_occupied == 1


def test_apply_move_held_to_occupied_on_full_leg():
    """Confirming a hold on a full shuttle keeps the total unchanged."""
    ledger = OccupancyLedger()
    view = make_view([(1, 3)], capacity=4)

    ledger.apply(view, 0, 0, held_delta=-3, occupied_delta=3)

    leg = view.route_instances[0]
    assert (leg.seats_occupied, leg.seat_held) == (4, 0)


def test_apply_missing_legs():
    ledger = OccupancyLedger()
    view = make_view([(0, 0), (0, 0)])

    with pytest.raises(ValidationError):
        ledger.apply(view, 1, 2, held_delta=1)


def test_stale_version_becomes_conflict(session_factory, make_trip, make_shuttle, book):
    """A write based on an outdated version fails instead of overwriting."""
    make_shuttle(total_seats=4)
    trip = make_trip()
    result = book(trip, seats=1)
    trip_instance_id = result.assigned_slot.trip_instance_id

    ledger = OccupancyLedger()
    first = session_factory()
    second = session_factory()
    try:
        with pytest.raises(ConcurrencyConflict):
            with ledger.locked(first, trip_instance_id) as view:
                # another writer commits between our read and our write
                with ledger.locked(second, trip_instance_id) as other:
                    ledger.apply(other, 0, 0, held_delta=1)
                ledger.apply(view, 0, 0, held_delta=1)

        second.expire_all()
        check = ledger.load(second, trip_instance_id)
        assert check.route_instances[0].seat_held == 2
    finally:
        first.close()
        second.close()
