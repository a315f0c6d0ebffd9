"""Trip instance lifecycle service."""
from datetime import datetime
from typing import Optional
import logging
from sqlalchemy.orm import Session
from shuttlebook.backend.db.models import (
    TripInstance, Shuttle, Booking, TripInstanceStatus, BookingStatus, SeatLedger, CancelledBy
)
from shuttlebook.backend.core.errors import (
    NotFound, ValidationError, Forbidden, InvalidTransition, InsufficientCapacity
)
from shuttlebook.backend.core.locks import LockRegistry, ledger_locks, slot_key
from shuttlebook.backend.services.ledger import OccupancyLedger, LedgerView
from shuttlebook.backend.services.audit import AuditService, trip_instance_state
from shuttlebook.backend.services.notify import Notifier, get_notifier

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (TripInstanceStatus.COMPLETED, TripInstanceStatus.CANCELLED)


class TripInstanceService:
    """
    Drives trip instances through SCHEDULED -> IN_PROGRESS -> COMPLETED.

    SCHEDULED and IN_PROGRESS instances may also be CANCELLED. COMPLETED and
    CANCELLED are terminal.
    """

    def __init__(self, ledger: OccupancyLedger = None, locks: LockRegistry = ledger_locks):
        self.locks = locks
        self.ledger = ledger or OccupancyLedger(locks)
        self.audit_service = AuditService()

    def get(self, db: Session, trip_instance_id: str) -> TripInstance:
        trip_instance = db.query(TripInstance).filter_by(id=trip_instance_id).first()
        if not trip_instance:
            raise NotFound(f"Trip instance {trip_instance_id} not found")
        return trip_instance

    @staticmethod
    def _check_driver(trip_instance: TripInstance, driver_id: Optional[str]) -> None:
        if driver_id is None:
            return
        shuttle = trip_instance.shuttle
        if shuttle is None or shuttle.current_driver_id != driver_id:
            raise Forbidden("Driver is not assigned to this trip's shuttle")

    def _audit(self, db: Session, action: str, view: LedgerView, user: Optional[str], before: dict, **metadata):
        self.audit_service.log_action(
            action=action,
            entity_type="trip_instance",
            entity_id=view.trip_instance.id,
            user=user,
            before_state=before,
            after_state=trip_instance_state(view.trip_instance),
            metadata=metadata or None,
            db=db,
        )

    def start(
        self,
        db: Session,
        trip_instance_id: str,
        now: datetime,
        driver_id: Optional[str] = None
    ) -> TripInstance:
        """
        SCHEDULED -> IN_PROGRESS.

        Raises:
            InvalidTransition: if not SCHEDULED or no shuttle is bound
            Forbidden: if the driver does not drive the bound shuttle
        """
        with self.ledger.locked(db, trip_instance_id) as view:
            trip_instance = view.trip_instance
            if trip_instance.status != TripInstanceStatus.SCHEDULED:
                raise InvalidTransition(
                    f"Cannot start a trip instance that is {trip_instance.status.value}"
                )
            if trip_instance.shuttle_id is None:
                raise InvalidTransition("Assign a shuttle before starting the trip")
            self._check_driver(trip_instance, driver_id)

            before = trip_instance_state(trip_instance)
            trip_instance.status = TripInstanceStatus.IN_PROGRESS
            trip_instance.actual_start_time = now
            self.ledger.touch(view)
            self._audit(db, "start", view, driver_id, before)

        logger.info("Trip instance %s started", trip_instance_id)
        return trip_instance

    def mark_leg_completed(
        self,
        db: Session,
        trip_instance_id: str,
        leg_index: int,
        now: datetime,
        driver_id: Optional[str] = None
    ) -> TripInstance:
        """
        Complete one leg; legs complete strictly in order.

        Completing the last leg completes the trip instance. Seats stay on the
        ledger so occupancy history is kept for reporting.

        Raises:
            InvalidTransition: if not IN_PROGRESS or the leg is out of order
            ValidationError: if the leg does not exist
        """
        with self.ledger.locked(db, trip_instance_id) as view:
            trip_instance = view.trip_instance
            if trip_instance.status != TripInstanceStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Cannot complete legs of a trip instance that is {trip_instance.status.value}"
                )
            self._check_driver(trip_instance, driver_id)

            legs = view.route_instances
            if leg_index < 0 or leg_index >= len(legs):
                raise ValidationError(f"Leg {leg_index} does not exist on this trip")
            current = next((ri for ri in legs if not ri.completed), None)
            if current is None or current.order_index != leg_index:
                expected = current.order_index if current is not None else None
                raise InvalidTransition(
                    f"Leg {leg_index} cannot be completed now (next leg is {expected})"
                )

            before = trip_instance_state(trip_instance)
            current.completed = True
            if all(ri.completed for ri in legs):
                trip_instance.status = TripInstanceStatus.COMPLETED
                trip_instance.actual_end_time = now
            self.ledger.touch(view)
            self._audit(db, "complete_leg", view, driver_id, before, leg_index=leg_index)

        logger.info("Trip instance %s: leg %d completed", trip_instance_id, leg_index)
        return trip_instance

    def complete(
        self,
        db: Session,
        trip_instance_id: str,
        now: datetime,
        driver_id: Optional[str] = None
    ) -> TripInstance:
        """Complete all remaining legs in order, then the trip instance."""
        with self.ledger.locked(db, trip_instance_id) as view:
            trip_instance = view.trip_instance
            if trip_instance.status != TripInstanceStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Cannot complete a trip instance that is {trip_instance.status.value}"
                )
            self._check_driver(trip_instance, driver_id)

            before = trip_instance_state(trip_instance)
            for ri in view.route_instances:
                ri.completed = True
            trip_instance.status = TripInstanceStatus.COMPLETED
            trip_instance.actual_end_time = now
            self.ledger.touch(view)
            self._audit(db, "complete", view, driver_id, before)

        logger.info("Trip instance %s completed", trip_instance_id)
        return trip_instance

    def revert_last_leg(
        self,
        db: Session,
        trip_instance_id: str,
        driver_id: Optional[str] = None
    ) -> TripInstance:
        """
        Undo the most recent leg completion while the trip is running.

        Raises:
            InvalidTransition: if not IN_PROGRESS or no leg is completed yet
        """
        with self.ledger.locked(db, trip_instance_id) as view:
            trip_instance = view.trip_instance
            if trip_instance.status != TripInstanceStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Cannot revert legs of a trip instance that is {trip_instance.status.value}"
                )
            self._check_driver(trip_instance, driver_id)

            completed = [ri for ri in view.route_instances if ri.completed]
            if not completed:
                raise InvalidTransition("No completed leg to revert")

            before = trip_instance_state(trip_instance)
            last = completed[-1]
            last.completed = False
            self.ledger.touch(view)
            self._audit(db, "revert_leg", view, driver_id, before, leg_index=last.order_index)

        logger.info("Trip instance %s: leg %d reverted", trip_instance_id, last.order_index)
        return trip_instance

    def cancel(
        self,
        db: Session,
        trip_instance_id: str,
        user_id: Optional[str],
        reason: str,
        now: datetime,
        notifier: Notifier = None
    ) -> TripInstance:
        """
        Cancel a trip instance.

        Every leg counter goes back to zero and every PENDING or CONFIRMED
        booking on it is rejected with a system reason.

        Raises:
            InvalidTransition: if already COMPLETED or CANCELLED
        """
        notifier = notifier or get_notifier()
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")

        with self.ledger.locked(db, trip_instance_id) as view:
            trip_instance = view.trip_instance
            if trip_instance.status in TERMINAL_STATUSES:
                raise InvalidTransition(
                    f"Cannot cancel a trip instance that is {trip_instance.status.value}"
                )

            before = trip_instance_state(trip_instance)
            bookings = (
                db.query(Booking)
                .filter(
                    Booking.trip_instance_id == trip_instance.id,
                    Booking.booking_status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
                )
                .populate_existing()
                .all()
            )
            for booking in bookings:
                booking.booking_status = BookingStatus.REJECTED
                booking.seat_ledger = SeatLedger.RELEASED
                booking.cancellation_reason = f"Trip cancelled: {reason}"
                booking.cancelled_by = CancelledBy.SYSTEM
                booking.cancelled_by_user_id = user_id
                booking.cancelled_at = now
                booking.updated_at = now

            self.ledger.release_all(view)
            trip_instance.booking_ids = []
            trip_instance.status = TripInstanceStatus.CANCELLED
            self._audit(
                db, "cancel", view, user_id, before,
                reason=reason, rejected_bookings=[booking.id for booking in bookings]
            )

        logger.info("Trip instance %s cancelled, %d booking(s) rejected", trip_instance_id, len(bookings))
        for booking in bookings:
            notifier.notify(
                "BOOKING_CANCELLED", booking, f"Your shuttle was cancelled: {reason}"
            )
        return trip_instance

    def assign_shuttle(
        self,
        db: Session,
        trip_instance_id: str,
        shuttle_id: str,
        user_id: Optional[str] = None
    ) -> TripInstance:
        """
        Bind a shuttle to a SCHEDULED trip instance.

        Works for provisional instances and for reassigning a vehicle.

        Raises:
            InvalidTransition: if not SCHEDULED or the shuttle already runs this slot
            ValidationError: if the shuttle is inactive or from another hotel
            InsufficientCapacity: if the shuttle is smaller than current usage
        """
        trip_instance = self.get(db, trip_instance_id)
        shuttle = db.query(Shuttle).filter_by(id=shuttle_id).first()
        if not shuttle:
            raise NotFound(f"Shuttle {shuttle_id} not found")
        if not shuttle.is_active:
            raise ValidationError(f"Shuttle {shuttle.vehicle_number} is not active")
        if shuttle.hotel_id != trip_instance.trip.hotel_id:
            raise ValidationError("Shuttle belongs to another hotel")

        key = slot_key(
            shuttle.id,
            trip_instance.scheduled_date,
            trip_instance.scheduled_start_time,
            trip_instance.scheduled_end_time,
        )
        with self.locks.hold(key):
            with self.ledger.locked(db, trip_instance_id) as view:
                trip_instance = view.trip_instance
                if trip_instance.status != TripInstanceStatus.SCHEDULED:
                    raise InvalidTransition(
                        f"Cannot assign a shuttle to a trip instance that is {trip_instance.status.value}"
                    )
                if trip_instance.shuttle_id == shuttle.id:
                    return trip_instance

                clash = (
                    db.query(TripInstance.id)
                    .filter(
                        TripInstance.slot_owner == shuttle.id,
                        TripInstance.scheduled_date == trip_instance.scheduled_date,
                        TripInstance.scheduled_start_time == trip_instance.scheduled_start_time,
                        TripInstance.scheduled_end_time == trip_instance.scheduled_end_time,
                    )
                    .first()
                )
                if clash is not None:
                    raise InvalidTransition(
                        f"Shuttle {shuttle.vehicle_number} already runs a trip in this slot"
                    )

                used = self.ledger.max_used(view.route_instances)
                if used > shuttle.total_seats:
                    raise InsufficientCapacity(
                        f"Shuttle {shuttle.vehicle_number} has {shuttle.total_seats} seats, "
                        f"{used} are already booked"
                    )

                before = trip_instance_state(trip_instance)
                previous = trip_instance.shuttle_id
                trip_instance.shuttle_id = shuttle.id
                trip_instance.slot_owner = shuttle.id
                self.ledger.touch(view)
                self._audit(db, "assign_shuttle", view, user_id, before, previous_shuttle_id=previous)

        logger.info("Trip instance %s assigned to shuttle %s", trip_instance_id, shuttle.vehicle_number)
        return trip_instance
