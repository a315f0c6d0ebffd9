"""Capacity allocator: matches booking requests to trip instance slots."""
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List, Optional, Tuple
import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_incrementing
from shuttlebook.backend.db.models import (
    Trip, TripSchedule, TripInstance, Shuttle, Booking, Route,
    TripInstanceStatus, BookingStatus, BookingOrigin, SeatLedger, new_id
)
from shuttlebook.backend.schemas.availability import (
    AvailabilityReport, ShuttleAvailability, Slot, SlotCapacity
)
from shuttlebook.backend.core.config import settings
from shuttlebook.backend.core.errors import (
    NotFound, ValidationError, InsufficientCapacity, TripInstanceUnavailable, ConcurrencyConflict
)
from shuttlebook.backend.core.locks import LockRegistry, ledger_locks, slot_key
from shuttlebook.backend.services.ledger import OccupancyLedger, LedgerView
from shuttlebook.backend.services.route import RouteService
from shuttlebook.backend.services.audit import AuditService, trip_instance_state, booking_state

logger = logging.getLogger(__name__)

# Why a shuttle offers no room in a slot
BLOCKED_TERMINAL = "terminal"
BLOCKED_DEPARTED = "departed"
BLOCKED_OTHER_TRIP = "other_trip"


@dataclass
class AllocationRequest:
    """Intent of a booking: what the guest wants, never ledger state."""
    trip_id: str
    hotel_id: str
    scheduled_date: date
    desired_time: time
    seats: int
    from_leg: Optional[int] = None
    to_leg: Optional[int] = None
    origin: BookingOrigin = BookingOrigin.GUEST


@dataclass
class SlotOption:
    """One shuttle (or the provisional pool) for one slot."""
    shuttle_id: Optional[str]
    vehicle_number: Optional[str]
    slot_owner: str
    capacity: int
    available: int
    trip_instance_id: Optional[str] = None
    blocked: Optional[str] = None


@dataclass
class Allocation:
    """A committed booking and the slot it landed in."""
    booking: Booking
    trip_instance_id: str
    shuttle_id: Optional[str]
    scheduled_date: date
    scheduled_start_time: time
    scheduled_end_time: time


def provisional_owner(trip_id: str) -> str:
    """Slot owner of a trip instance that has no shuttle yet."""
    return f"trip:{trip_id}"


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(value: int) -> time:
    return time(value // 60, value % 60)


def cut_slots(schedules: List[TripSchedule], slot_minutes: int) -> List[Tuple[time, time]]:
    """
    Cut daily schedule windows into bookable slots.

    A window shorter than one slot is bookable as a single slot.
    """
    slots = set()
    for window in schedules:
        start = _minutes(window.start_time)
        end = _minutes(window.end_time)
        if end <= start:
            continue
        if end - start < slot_minutes:
            slots.add((window.start_time, window.end_time))
            continue
        cursor = start
        while cursor + slot_minutes <= end:
            slots.add((_from_minutes(cursor), _from_minutes(cursor + slot_minutes)))
            cursor += slot_minutes
    return sorted(slots)


def rank_slots(
    slots: List[Tuple[time, time]],
    desired_time: time,
    scheduled_date: date,
    now: datetime,
    max_shift_minutes: int
) -> List[Tuple[time, time]]:
    """
    Order slots by closeness to the desired time.

    A slot starting exactly at the desired time ranks first, then slots
    containing it; otherwise slots are ordered by distance between their
    start and the desired time, ties going to the earlier slot. Slots
    further than ``max_shift_minutes`` and, on the current day, slots that
    already started are dropped.
    """
    desired = _minutes(desired_time)
    ranked = []
    for start, end in slots:
        if scheduled_date == now.date() and start < now.time():
            continue
        if _minutes(start) <= desired < _minutes(end):
            distance = 0
        else:
            distance = abs(_minutes(start) - desired)
        if distance > max_shift_minutes:
            continue
        ranked.append((_minutes(start) != desired, distance, start, end))
    ranked.sort()
    return [(start, end) for _, _, start, end in ranked]


class CapacityAllocator:
    """Finds room for bookings across leg ranges and commits reservations."""

    def __init__(self, ledger: OccupancyLedger = None, locks: LockRegistry = ledger_locks):
        self.locks = locks
        self.ledger = ledger or OccupancyLedger(locks)
        self.route_service = RouteService()
        self.audit_service = AuditService()

    # Lookups

    def get_trip(self, db: Session, trip_id: str) -> Trip:
        trip = db.query(Trip).filter_by(id=trip_id).first()
        if not trip:
            raise NotFound(f"Trip {trip_id} not found")
        return trip

    def active_shuttles(self, db: Session, hotel_id: str) -> List[Shuttle]:
        return (
            db.query(Shuttle)
            .filter_by(hotel_id=hotel_id, is_active=True)
            .order_by(Shuttle.vehicle_number.asc())
            .all()
        )

    def max_seat_ceiling(self, db: Session, trip: Trip) -> int:
        """Largest seat count a single booking may ask for."""
        shuttles = self.active_shuttles(db, trip.hotel_id)
        if shuttles:
            return max(shuttle.total_seats for shuttle in shuttles)
        return trip.hotel.default_seat_capacity or 0

    # Read-only availability

    def _instance_room(
        self,
        trip: Trip,
        trip_instance: TripInstance,
        capacity: int,
        from_leg: int,
        to_leg: int
    ) -> Tuple[int, Optional[str]]:
        if trip_instance.trip_id != trip.id:
            return 0, BLOCKED_OTHER_TRIP
        if trip_instance.status not in (TripInstanceStatus.SCHEDULED, TripInstanceStatus.IN_PROGRESS):
            return 0, BLOCKED_TERMINAL
        route_instances = trip_instance.route_instances
        if trip_instance.status == TripInstanceStatus.IN_PROGRESS and not self._can_board(route_instances, from_leg):
            return 0, BLOCKED_DEPARTED
        return self.ledger.available_seats(route_instances, capacity, from_leg, to_leg), None

    @staticmethod
    def _can_board(route_instances, from_leg: int) -> bool:
        """A running shuttle only takes passengers boarding after the leg being driven."""
        current = next((ri.order_index for ri in route_instances if not ri.completed), None)
        return current is not None and from_leg > current

    def slot_options(
        self,
        db: Session,
        trip: Trip,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        from_leg: int,
        to_leg: int
    ) -> List[SlotOption]:
        """Room on every active shuttle (and the provisional pool) for one slot."""
        shuttles = self.active_shuttles(db, trip.hotel_id)
        owners = [shuttle.id for shuttle in shuttles] + [provisional_owner(trip.id)]
        instances = (
            db.query(TripInstance)
            .filter(
                TripInstance.slot_owner.in_(owners),
                TripInstance.scheduled_date == scheduled_date,
                TripInstance.scheduled_start_time == start_time,
                TripInstance.scheduled_end_time == end_time,
            )
            .all()
        )
        by_owner = {instance.slot_owner: instance for instance in instances}

        options = []
        for shuttle in shuttles:
            instance = by_owner.get(shuttle.id)
            if instance is None:
                options.append(SlotOption(
                    shuttle_id=shuttle.id,
                    vehicle_number=shuttle.vehicle_number,
                    slot_owner=shuttle.id,
                    capacity=shuttle.total_seats,
                    available=shuttle.total_seats,
                ))
                continue
            available, blocked = self._instance_room(trip, instance, shuttle.total_seats, from_leg, to_leg)
            options.append(SlotOption(
                shuttle_id=shuttle.id,
                vehicle_number=shuttle.vehicle_number,
                slot_owner=shuttle.id,
                capacity=shuttle.total_seats,
                available=available,
                trip_instance_id=instance.id,
                blocked=blocked,
            ))

        ceiling = trip.hotel.default_seat_capacity or 0
        provisional = by_owner.get(provisional_owner(trip.id))
        if provisional is not None:
            available, blocked = self._instance_room(trip, provisional, ceiling, from_leg, to_leg)
            options.append(SlotOption(
                shuttle_id=None,
                vehicle_number=None,
                slot_owner=provisional.slot_owner,
                capacity=ceiling,
                available=available,
                trip_instance_id=provisional.id,
                blocked=blocked,
            ))
        elif not shuttles and ceiling:
            options.append(SlotOption(
                shuttle_id=None,
                vehicle_number=None,
                slot_owner=provisional_owner(trip.id),
                capacity=ceiling,
                available=ceiling,
            ))
        return options

    def find_availability(
        self,
        db: Session,
        trip_id: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> AvailabilityReport:
        """
        Free seats per shuttle for one slot and leg range.

        Read-only: takes no lock and writes nothing.
        """
        trip = self.get_trip(db, trip_id)
        routes = self.route_service.get_routes(db, trip.id)
        from_leg, to_leg = self.route_service.resolve_leg_range(routes, from_leg, to_leg)

        options = self.slot_options(db, trip, scheduled_date, start_time, end_time, from_leg, to_leg)
        entries = [
            ShuttleAvailability(
                shuttle_id=option.shuttle_id,
                vehicle_number=option.vehicle_number,
                total_seats=option.capacity,
                available_seats=option.available,
                trip_instance_id=option.trip_instance_id,
            )
            for option in options
            if option.available > 0
        ]
        return AvailabilityReport(
            trip_id=trip.id,
            scheduled_date=scheduled_date,
            start_time=start_time,
            end_time=end_time,
            from_leg=from_leg,
            to_leg=to_leg,
            total_available_seats=sum(entry.available_seats for entry in entries),
            shuttles=entries,
        )

    def get_available_slots(
        self,
        db: Session,
        trip_id: str,
        scheduled_date: date,
        seats: int,
        now: datetime,
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> List[Slot]:
        """Slots of the day where one shuttle still has room for ``seats``."""
        trip = self.get_trip(db, trip_id)
        routes = self.route_service.get_routes(db, trip.id)
        from_leg, to_leg = self.route_service.resolve_leg_range(routes, from_leg, to_leg)
        if seats <= 0 or seats > self.max_seat_ceiling(db, trip):
            return []

        result = []
        for start, end in cut_slots(trip.schedules, settings.slot_minutes):
            if scheduled_date == now.date() and start < now.time():
                continue
            options = self.slot_options(db, trip, scheduled_date, start, end, from_leg, to_leg)
            best = max((option.available for option in options), default=0)
            if best >= seats:
                result.append(Slot(start_time=start, end_time=end, available_seats=best))
        return result

    def get_slot_capacity(
        self,
        db: Session,
        trip_id: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> SlotCapacity:
        """Largest shuttle and largest single-shuttle room for one slot."""
        trip = self.get_trip(db, trip_id)
        routes = self.route_service.get_routes(db, trip.id)
        from_leg, to_leg = self.route_service.resolve_leg_range(routes, from_leg, to_leg)
        options = self.slot_options(db, trip, scheduled_date, start_time, end_time, from_leg, to_leg)
        return SlotCapacity(
            max_capacity=self.max_seat_ceiling(db, trip),
            available_capacity=max((option.available for option in options), default=0),
        )

    # Allocation

    def ensure_bookable(self, view: LedgerView, from_leg: int) -> None:
        """
        Raises:
            TripInstanceUnavailable: if the instance is finished, cancelled, or
                has already driven past the pickup
        """
        trip_instance = view.trip_instance
        if trip_instance.status in (TripInstanceStatus.COMPLETED, TripInstanceStatus.CANCELLED):
            raise TripInstanceUnavailable(
                f"Trip instance {trip_instance.id} is {trip_instance.status.value}"
            )
        if trip_instance.status == TripInstanceStatus.IN_PROGRESS and not self._can_board(
            view.route_instances, from_leg
        ):
            raise TripInstanceUnavailable(
                f"Trip instance {trip_instance.id} has already left the pickup point"
            )

    def assign_booking(
        self,
        db: Session,
        request: AllocationRequest,
        booking: Booking,
        now: datetime,
        user: Optional[str] = None
    ) -> Allocation:
        """
        Place a booking on the best slot and reserve its seats.

        Guest bookings hold seats (``seat_held``) and stay PENDING; frontdesk
        bookings occupy seats immediately and are CONFIRMED.

        Args:
            db: Database session
            request: Booking intent
            booking: Unsaved booking carrying guest-facing fields
            now: Current time; decides past dates and already-started slots
            user: Acting user for the audit log

        Returns:
            Allocation with the persisted booking and its assigned slot

        Raises:
            ValidationError, NotFound, InsufficientCapacity,
            TripInstanceUnavailable, ConcurrencyConflict
        """
        trip = self.get_trip(db, request.trip_id)
        if not trip.is_active:
            raise ValidationError(f"Trip {trip.id} is archived")
        if trip.hotel_id != request.hotel_id:
            raise ValidationError("Trip does not belong to the specified hotel")
        if not isinstance(request.seats, int) or isinstance(request.seats, bool) or request.seats <= 0:
            raise ValidationError("Seats must be a positive integer")
        if request.scheduled_date < now.date():
            raise ValidationError("Cannot book for a past date")

        routes = self.route_service.get_routes(db, trip.id)
        from_leg, to_leg = self.route_service.resolve_leg_range(routes, request.from_leg, request.to_leg)

        ceiling = self.max_seat_ceiling(db, trip)
        if ceiling == 0:
            raise InsufficientCapacity("No active shuttles available")
        if request.seats > ceiling:
            raise ValidationError(
                f"Cannot book {request.seats} seats. Maximum shuttle capacity is {ceiling} seats."
            )

        slots = rank_slots(
            cut_slots(trip.schedules, settings.slot_minutes),
            request.desired_time,
            request.scheduled_date,
            now,
            settings.max_slot_shift_minutes,
        )
        if not slots:
            raise InsufficientCapacity(
                f"No shuttle service near {request.desired_time.strftime('%H:%M')} "
                f"on {request.scheduled_date.isoformat()}"
            )

        if booking.id is None:
            booking.id = new_id()

        attempts = settings.allocation_max_retries + 1
        backoff = settings.allocation_retry_backoff_ms / 1000.0
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_incrementing(start=backoff, increment=backoff),
            retry=retry_if_exception_type(ConcurrencyConflict),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(
                self._allocate_once, db, trip, routes, request, booking, slots, from_leg, to_leg, now, user
            )
        except ConcurrencyConflict:
            logger.error("Allocation for booking %s gave up after %d attempts", booking.id, attempts)
            raise

    def _allocate_once(
        self,
        db: Session,
        trip: Trip,
        routes: List[Route],
        request: AllocationRequest,
        booking: Booking,
        slots: List[Tuple[time, time]],
        from_leg: int,
        to_leg: int,
        now: datetime,
        user: Optional[str]
    ) -> Allocation:
        seen_capacity = False
        seen_blocked = False
        for start, end in slots:
            options = self.slot_options(db, trip, request.scheduled_date, start, end, from_leg, to_leg)
            for option in options:
                if option.blocked in (BLOCKED_TERMINAL, BLOCKED_DEPARTED):
                    seen_blocked = True
                elif option.blocked is None:
                    seen_capacity = True
            candidates = [option for option in options if option.available >= request.seats]
            # fill running instances before opening new ones; smallest fit first
            candidates.sort(key=lambda o: (o.trip_instance_id is None, o.available, o.vehicle_number or ""))

            for option in candidates:
                try:
                    return self._reserve(
                        db, trip, routes, request, booking, start, end, from_leg, to_leg, option, now, user
                    )
                except (InsufficientCapacity, TripInstanceUnavailable) as exc:
                    logger.info(
                        "Slot %s-%s on %s filled before commit (%s), trying next option",
                        start, end, option.vehicle_number or option.slot_owner, exc.message
                    )

        if seen_blocked and not seen_capacity:
            raise TripInstanceUnavailable(
                "The shuttle for this time has already departed or was cancelled"
            )
        raise InsufficientCapacity(
            f"No shuttle has {request.seats} free seats near "
            f"{request.desired_time.strftime('%H:%M')} on {request.scheduled_date.isoformat()}"
        )

    def _reserve(
        self,
        db: Session,
        trip: Trip,
        routes: List[Route],
        request: AllocationRequest,
        booking: Booking,
        start: time,
        end: time,
        from_leg: int,
        to_leg: int,
        option: SlotOption,
        now: datetime,
        user: Optional[str]
    ) -> Allocation:
        if option.trip_instance_id is not None:
            return self._commit_booking(db, option.trip_instance_id, request, booking, from_leg, to_leg, now, user)

        with self.locks.hold(slot_key(option.slot_owner, request.scheduled_date, start, end)):
            existing = (
                db.query(TripInstance)
                .filter_by(
                    slot_owner=option.slot_owner,
                    scheduled_date=request.scheduled_date,
                    scheduled_start_time=start,
                    scheduled_end_time=end,
                )
                .populate_existing()
                .one_or_none()
            )
            if existing is not None:
                if existing.trip_id != trip.id:
                    raise TripInstanceUnavailable("Shuttle already runs another trip in this slot")
                trip_instance_id = existing.id
            else:
                trip_instance_id = self._create_instance(
                    db, trip, routes, option, request.scheduled_date, start, end, user
                ).id
            return self._commit_booking(db, trip_instance_id, request, booking, from_leg, to_leg, now, user)

    def _create_instance(
        self,
        db: Session,
        trip: Trip,
        routes: List[Route],
        option: SlotOption,
        scheduled_date: date,
        start: time,
        end: time,
        user: Optional[str]
    ) -> TripInstance:
        trip_instance = TripInstance(
            id=new_id(),
            trip_id=trip.id,
            shuttle_id=option.shuttle_id,
            slot_owner=option.slot_owner,
            scheduled_date=scheduled_date,
            scheduled_start_time=start,
            scheduled_end_time=end,
            status=TripInstanceStatus.SCHEDULED,
            booking_ids=[],
        )
        self.ledger.create_route_instances(trip_instance, routes)
        db.add(trip_instance)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrencyConflict(
                f"Trip instance for {option.slot_owner} at {scheduled_date} {start} was created concurrently"
            ) from exc

        self.audit_service.log_action(
            action="create",
            entity_type="trip_instance",
            entity_id=trip_instance.id,
            user=user,
            after_state=trip_instance_state(trip_instance),
            metadata={"slot_owner": option.slot_owner},
            db=db,
        )
        logger.info(
            "Opened trip instance %s for trip %s on %s %s-%s (shuttle %s)",
            trip_instance.id, trip.id, scheduled_date, start, end, option.shuttle_id or "unassigned"
        )
        return trip_instance

    def _commit_booking(
        self,
        db: Session,
        trip_instance_id: str,
        request: AllocationRequest,
        booking: Booking,
        from_leg: int,
        to_leg: int,
        now: datetime,
        user: Optional[str]
    ) -> Allocation:
        with self.ledger.locked(db, trip_instance_id) as view:
            self.ensure_bookable(view, from_leg)
            if request.origin == BookingOrigin.FRONTDESK:
                self.ledger.apply(view, from_leg, to_leg, occupied_delta=request.seats)
                booking.booking_status = BookingStatus.CONFIRMED
                booking.seat_ledger = SeatLedger.OCCUPIED
                booking.confirmed_at = now
                booking.confirmed_by = user
            else:
                self.ledger.apply(view, from_leg, to_leg, held_delta=request.seats)
                booking.booking_status = BookingStatus.PENDING
                booking.seat_ledger = SeatLedger.HELD

            trip_instance = view.trip_instance
            booking.trip_instance_id = trip_instance.id
            booking.hotel_id = request.hotel_id
            booking.from_route_index = from_leg
            booking.to_route_index = to_leg
            booking.seats = request.seats
            booking.origin = request.origin
            db.add(booking)
            trip_instance.booking_ids = [*(trip_instance.booking_ids or []), booking.id]

            self.audit_service.log_action(
                action="create",
                entity_type="booking",
                entity_id=booking.id,
                user=user,
                after_state=booking_state(booking),
                metadata={"trip_instance_id": trip_instance.id, "origin": request.origin.value},
                db=db,
            )
            allocation = Allocation(
                booking=booking,
                trip_instance_id=trip_instance.id,
                shuttle_id=trip_instance.shuttle_id,
                scheduled_date=trip_instance.scheduled_date,
                scheduled_start_time=trip_instance.scheduled_start_time,
                scheduled_end_time=trip_instance.scheduled_end_time,
            )

        logger.info(
            "Booking %s: %d seat(s) on legs %d..%d of trip instance %s (%s)",
            booking.id, request.seats, from_leg, to_leg, allocation.trip_instance_id,
            booking.seat_ledger.value
        )
        return allocation
