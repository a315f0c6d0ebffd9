"""Route instance occupancy bookkeeping.

Every change to ``seats_occupied`` / ``seat_held`` goes through
``OccupancyLedger.locked``: the trip instance lock is held, the instance and
its legs are re-read, the change is validated against capacity for every
leg, and the transaction commits before the lock is released. The
``version`` column on the trip instance is bumped on each write, so a writer
in another process that read an older version fails on flush.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional
import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from shuttlebook.backend.db.models import TripInstance, RouteInstance, Route
from shuttlebook.backend.core.errors import (
    NotFound, InsufficientCapacity, InvalidTransition, ValidationError, ConcurrencyConflict
)
from shuttlebook.backend.core.locks import LockRegistry, ledger_locks, trip_instance_key

logger = logging.getLogger(__name__)


@dataclass
class LedgerView:
    """A trip instance with its legs, loaded for reading or under the lock."""
    trip_instance: TripInstance
    route_instances: List[RouteInstance]
    capacity: int

    def legs(self, from_leg: int, to_leg: int) -> List[RouteInstance]:
        return OccupancyLedger.legs_in_range(self.route_instances, from_leg, to_leg)


class OccupancyLedger:
    """Reads and atomically mutates per-leg seat counters."""

    def __init__(self, locks: LockRegistry = ledger_locks):
        self.locks = locks

    @staticmethod
    def legs_in_range(
        route_instances: List[RouteInstance],
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> List[RouteInstance]:
        """Route instances whose order index falls in [from_leg, to_leg]."""
        return [
            ri for ri in route_instances
            if (from_leg is None or ri.order_index >= from_leg)
            and (to_leg is None or ri.order_index <= to_leg)
        ]

    @classmethod
    def max_used(
        cls,
        route_instances: List[RouteInstance],
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> int:
        """
        Seats in use over a leg range.

        A passenger occupies one physical seat for every leg they ride and
        legs are driven one after another, so the seats in use over a range
        is the maximum of the per-leg usage, not the sum.
        """
        legs = cls.legs_in_range(route_instances, from_leg, to_leg)
        return max((ri.used_seats for ri in legs), default=0)

    @classmethod
    def available_seats(
        cls,
        route_instances: List[RouteInstance],
        capacity: int,
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> int:
        """Free seats over a leg range, floored at zero."""
        return max(0, capacity - cls.max_used(route_instances, from_leg, to_leg))

    @staticmethod
    def capacity_for(trip_instance: TripInstance) -> int:
        """Seat ceiling: the bound shuttle, else the hotel default."""
        if trip_instance.shuttle is not None:
            return trip_instance.shuttle.total_seats
        return trip_instance.trip.hotel.default_seat_capacity or 0

    @staticmethod
    def create_route_instances(trip_instance: TripInstance, routes: List[Route]) -> List[RouteInstance]:
        """One empty ledger row per leg of the trip."""
        route_instances = [
            RouteInstance(
                route_id=route.id,
                order_index=route.order_index,
                seats_occupied=0,
                seat_held=0,
                completed=False,
            )
            for route in routes
        ]
        trip_instance.route_instances = route_instances
        return route_instances

    def load(self, db: Session, trip_instance_id: str, for_update: bool = False) -> LedgerView:
        """Read a trip instance and its legs, refreshing anything cached in the session."""
        query = db.query(TripInstance).filter(TripInstance.id == trip_instance_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        trip_instance = query.one_or_none()
        if trip_instance is None:
            raise NotFound(f"Trip instance {trip_instance_id} not found")

        legs_query = (
            db.query(RouteInstance)
            .filter(RouteInstance.trip_instance_id == trip_instance_id)
            .order_by(RouteInstance.order_index.asc())
        )
        if for_update:
            legs_query = legs_query.with_for_update().populate_existing()
        route_instances = legs_query.all()

        return LedgerView(
            trip_instance=trip_instance,
            route_instances=route_instances,
            capacity=self.capacity_for(trip_instance),
        )

    @contextmanager
    def locked(self, db: Session, trip_instance_id: str) -> Iterator[LedgerView]:
        """
        Serialize a read-validate-write on one trip instance.

        Commits on normal exit and rolls back on any error, so multi-leg
        updates are all-or-nothing.

        Raises:
            ConcurrencyConflict: if another writer changed the instance first
        """
        with self.locks.hold(trip_instance_key(trip_instance_id)):
            try:
                view = self.load(db, trip_instance_id, for_update=True)
                yield view
                db.commit()
            except (StaleDataError, IntegrityError) as exc:
                db.rollback()
                logger.warning("Ledger write on trip instance %s lost a race: %s", trip_instance_id, exc)
                raise ConcurrencyConflict(
                    f"Trip instance {trip_instance_id} was modified concurrently"
                ) from exc
            except Exception:
                db.rollback()
                raise

    def apply(
        self,
        view: LedgerView,
        from_leg: int,
        to_leg: int,
        held_delta: int = 0,
        occupied_delta: int = 0
    ) -> None:
        """
        Add deltas to every leg in [from_leg, to_leg].

        All legs are validated before any is written.

        Raises:
            InsufficientCapacity: if a net increase would push a leg over capacity
            InvalidTransition: if a release would drive a counter below zero
        """
        legs = view.legs(from_leg, to_leg)
        if len(legs) != to_leg - from_leg + 1:
            raise ValidationError(
                f"Trip instance {view.trip_instance.id} has no ledger for legs {from_leg}..{to_leg}"
            )

        increase = held_delta + occupied_delta > 0
        for ri in legs:
            new_held = ri.seat_held + held_delta
            new_occupied = ri.seats_occupied + occupied_delta
            if new_held < 0 or new_occupied < 0:
                raise InvalidTransition(
                    f"Release on leg {ri.order_index} exceeds its recorded seats"
                )
            if increase and new_held + new_occupied > view.capacity:
                available = max(0, view.capacity - ri.used_seats)
                raise InsufficientCapacity(
                    f"Leg {ri.order_index} is at capacity "
                    f"({available} seats available, {held_delta + occupied_delta} required)"
                )

        for ri in legs:
            ri.seat_held += held_delta
            ri.seats_occupied += occupied_delta
        self.touch(view)

    def release_all(self, view: LedgerView) -> None:
        """Zero every counter of the trip instance."""
        for ri in view.route_instances:
            ri.seat_held = 0
            ri.seats_occupied = 0
        self.touch(view)

    @staticmethod
    def touch(view: LedgerView) -> None:
        """Mark the trip instance dirty so its version is bumped on flush."""
        view.trip_instance.updated_at = datetime.utcnow()
