"""Booking lifecycle service."""
from datetime import datetime, timedelta
from typing import List, Optional
import logging
from sqlalchemy.orm import Session
from shuttlebook.backend.db.models import (
    Booking, Trip, Shuttle, BookingStatus, PaymentStatus, SeatLedger,
    CancelledBy, TripInstanceStatus, new_id
)
from shuttlebook.backend.schemas.booking import (
    BookingCreate, BookingResult, AssignedSlot, Booking as BookingSchema
)
from shuttlebook.backend.core.config import settings
from shuttlebook.backend.core.errors import (
    NotFound, ValidationError, Forbidden, InvalidTransition
)
from shuttlebook.backend.services.allocator import CapacityAllocator, AllocationRequest
from shuttlebook.backend.services.ledger import OccupancyLedger, LedgerView
from shuttlebook.backend.services.route import RouteService
from shuttlebook.backend.services.audit import AuditService, booking_state
from shuttlebook.backend.services.notify import Notifier, get_notifier

logger = logging.getLogger(__name__)

# Allowed payment moves; anything else is an InvalidTransition
PAYMENT_TRANSITIONS = {
    PaymentStatus.UNPAID: {PaymentStatus.PAID, PaymentStatus.WAIVED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
}


class BookingService:
    """Creates bookings and drives them through approval and payment."""

    def __init__(self, allocator: CapacityAllocator = None):
        self.allocator = allocator or CapacityAllocator()
        self.ledger: OccupancyLedger = self.allocator.ledger
        self.route_service = RouteService()
        self.audit_service = AuditService()

    def get_booking(self, db: Session, booking_id: str) -> Booking:
        booking = db.query(Booking).filter_by(id=booking_id).first()
        if not booking:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    def list_for_trip_instance(self, db: Session, trip_instance_id: str) -> List[Booking]:
        return (
            db.query(Booking)
            .filter_by(trip_instance_id=trip_instance_id)
            .order_by(Booking.created_at.asc())
            .all()
        )

    def create_booking(
        self,
        db: Session,
        data: BookingCreate,
        now: datetime,
        user: Optional[str] = None,
        notifier: Notifier = None
    ) -> BookingResult:
        """
        Validate, price and allocate a booking request.

        Failures raise and persist nothing; there is no rejected-booking
        record for a request that could not be placed.

        Args:
            db: Database session
            data: Booking request
            now: Current time
            user: Acting user (frontdesk staff or the guest)
            notifier: Notification sink

        Returns:
            BookingResult with the booking and the slot it was placed in
        """
        notifier = notifier or get_notifier()

        trip = db.query(Trip).filter_by(id=data.trip_id).first()
        if not trip:
            raise NotFound(f"Trip {data.trip_id} not found")
        routes = self.route_service.get_routes(db, trip.id)

        if data.from_location_id or data.to_location_id:
            if not (data.from_location_id and data.to_location_id):
                raise ValidationError("Both pickup and dropoff locations are required")
            from_leg, to_leg = self.route_service.resolve_locations(
                routes, data.from_location_id, data.to_location_id
            )
        else:
            from_leg, to_leg = self.route_service.resolve_leg_range(routes, data.from_leg, data.to_leg)

        booking = Booking(
            id=new_id(),
            guest_id=data.guest_id,
            hotel_id=data.hotel_id,
            from_route_index=from_leg,
            to_route_index=to_leg,
            seats=data.seats,
            bags=data.bags,
            name=data.name,
            confirmation_num=data.confirmation_num,
            notes=data.notes,
            is_park_sleep_fly=data.is_park_sleep_fly,
            total_price=self.route_service.calculate_total_charges(routes, from_leg, to_leg, data.seats),
            payment_status=PaymentStatus.UNPAID,
            payment_method=data.payment_method,
            origin=data.origin,
            created_at=now,
        )
        request = AllocationRequest(
            trip_id=trip.id,
            hotel_id=data.hotel_id,
            scheduled_date=data.scheduled_date,
            desired_time=data.desired_time,
            seats=data.seats,
            from_leg=from_leg,
            to_leg=to_leg,
            origin=data.origin,
        )
        allocation = self.allocator.assign_booking(db, request, booking, now, user=user)

        desired = data.desired_time.strftime("%H:%M")
        assigned = allocation.scheduled_start_time.strftime("%H:%M")
        if allocation.scheduled_start_time <= data.desired_time < allocation.scheduled_end_time:
            message = f"Your shuttle is booked for {assigned}."
        else:
            message = f"{desired} was unavailable; your shuttle is booked for {assigned}."
        if booking.booking_status == BookingStatus.PENDING:
            message += " Awaiting frontdesk confirmation."

        notifier.notify("NEW_BOOKING", booking, message)
        return BookingResult(
            booking=BookingSchema.model_validate(booking),
            assigned_slot=AssignedSlot(
                trip_instance_id=allocation.trip_instance_id,
                shuttle_id=allocation.shuttle_id,
                scheduled_date=allocation.scheduled_date,
                scheduled_start_time=allocation.scheduled_start_time,
                scheduled_end_time=allocation.scheduled_end_time,
            ),
            message=message,
        )

    def _locked_booking(self, db: Session, view: LedgerView, booking_id: str) -> Booking:
        """Re-read a booking inside the ledger guard."""
        booking = (
            db.query(Booking)
            .filter_by(id=booking_id)
            .populate_existing()
            .one_or_none()
        )
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        if booking.trip_instance_id != view.trip_instance.id:
            raise InvalidTransition(f"Booking {booking_id} moved to another trip instance")
        return booking

    def _release(self, view: LedgerView, booking: Booking) -> None:
        """Give back the seats of a booking according to where they sit."""
        if booking.seat_ledger == SeatLedger.HELD:
            self.ledger.apply(
                view, booking.from_route_index, booking.to_route_index, held_delta=-booking.seats
            )
        elif booking.seat_ledger == SeatLedger.OCCUPIED:
            self.ledger.apply(
                view, booking.from_route_index, booking.to_route_index, occupied_delta=-booking.seats
            )
        booking.seat_ledger = SeatLedger.RELEASED
        trip_instance = view.trip_instance
        trip_instance.booking_ids = [
            bid for bid in (trip_instance.booking_ids or []) if bid != booking.id
        ]

    def confirm_booking(
        self,
        db: Session,
        booking_id: str,
        user_id: str,
        now: datetime,
        notifier: Notifier = None
    ) -> Booking:
        """
        Approve a PENDING booking, moving its held seats to occupied.

        Raises:
            InvalidTransition: if the booking is not PENDING
        """
        notifier = notifier or get_notifier()
        booking = self.get_booking(db, booking_id)
        if booking.booking_status != BookingStatus.PENDING:
            raise InvalidTransition(
                f"Cannot confirm a booking that is {booking.booking_status.value}"
            )

        with self.ledger.locked(db, booking.trip_instance_id) as view:
            booking = self._locked_booking(db, view, booking_id)
            if booking.booking_status != BookingStatus.PENDING:
                raise InvalidTransition(
                    f"Cannot confirm a booking that is {booking.booking_status.value}"
                )
            if view.trip_instance.status in (TripInstanceStatus.COMPLETED, TripInstanceStatus.CANCELLED):
                raise InvalidTransition(
                    f"Trip instance {view.trip_instance.id} is {view.trip_instance.status.value}"
                )
            before = booking_state(booking)

            if booking.seat_ledger == SeatLedger.HELD:
                # move, not add: the leg totals stay unchanged
                self.ledger.apply(
                    view, booking.from_route_index, booking.to_route_index,
                    held_delta=-booking.seats, occupied_delta=booking.seats
                )
            booking.seat_ledger = SeatLedger.OCCUPIED
            booking.booking_status = BookingStatus.CONFIRMED
            booking.confirmed_at = now
            booking.confirmed_by = user_id
            booking.updated_at = now

            self.audit_service.log_action(
                action="confirm",
                entity_type="booking",
                entity_id=booking.id,
                user=user_id,
                before_state=before,
                after_state=booking_state(booking),
                db=db,
            )

        logger.info("Booking %s confirmed by %s", booking.id, user_id)
        notifier.notify("BOOKING_CONFIRMED", booking, "Your shuttle booking is confirmed.")
        return booking

    def reject_booking(
        self,
        db: Session,
        booking_id: str,
        user_id: str,
        reason: str,
        now: datetime,
        cancelled_by: CancelledBy = CancelledBy.FRONTDESK,
        notifier: Notifier = None
    ) -> Booking:
        """
        Reject a PENDING booking and release its held seats.

        Raises:
            ValidationError: if no reason is given
            InvalidTransition: if the booking is not PENDING
        """
        notifier = notifier or get_notifier()
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        booking = self.get_booking(db, booking_id)
        if booking.booking_status != BookingStatus.PENDING:
            raise InvalidTransition(
                f"Cannot reject a booking that is {booking.booking_status.value}"
            )

        with self.ledger.locked(db, booking.trip_instance_id) as view:
            booking = self._locked_booking(db, view, booking_id)
            if booking.booking_status != BookingStatus.PENDING:
                raise InvalidTransition(
                    f"Cannot reject a booking that is {booking.booking_status.value}"
                )
            before = booking_state(booking)
            self._release(view, booking)
            self._mark_rejected(booking, user_id, reason, cancelled_by, now)

            self.audit_service.log_action(
                action="reject",
                entity_type="booking",
                entity_id=booking.id,
                user=user_id,
                before_state=before,
                after_state=booking_state(booking),
                metadata={"reason": reason, "cancelled_by": cancelled_by.value},
                db=db,
            )

        logger.info("Booking %s rejected by %s (%s)", booking.id, user_id, cancelled_by.value)
        notifier.notify("BOOKING_REJECTED", booking, f"Your shuttle booking was rejected: {reason}")
        return booking

    @staticmethod
    def _mark_rejected(
        booking: Booking,
        user_id: Optional[str],
        reason: str,
        cancelled_by: CancelledBy,
        now: datetime
    ) -> None:
        booking.booking_status = BookingStatus.REJECTED
        booking.cancellation_reason = reason
        booking.cancelled_by = cancelled_by
        booking.cancelled_by_user_id = user_id
        booking.cancelled_at = now
        booking.updated_at = now

    def cancel_booking(
        self,
        db: Session,
        booking_id: str,
        user_id: str,
        reason: str,
        now: datetime,
        cancelled_by: CancelledBy = CancelledBy.GUEST,
        notifier: Notifier = None
    ) -> Booking:
        """
        Cancel a booking, releasing whatever seats it holds.

        Idempotent: cancelling an already released booking returns it
        unchanged. A guest may only cancel their own booking.

        Raises:
            Forbidden: if a guest cancels someone else's booking
            InvalidTransition: if the trip instance already completed
        """
        notifier = notifier or get_notifier()
        booking = self.get_booking(db, booking_id)
        if cancelled_by == CancelledBy.GUEST and booking.guest_id != user_id:
            raise Forbidden("Guests may only cancel their own bookings")
        if booking.seat_ledger == SeatLedger.RELEASED or booking.booking_status == BookingStatus.REJECTED:
            logger.info("Booking %s already released, cancel is a no-op", booking.id)
            return booking

        with self.ledger.locked(db, booking.trip_instance_id) as view:
            booking = self._locked_booking(db, view, booking_id)
            if booking.seat_ledger == SeatLedger.RELEASED or booking.booking_status == BookingStatus.REJECTED:
                return booking
            if view.trip_instance.status == TripInstanceStatus.COMPLETED:
                raise InvalidTransition("Cannot cancel a booking on a completed trip")

            before = booking_state(booking)
            self._release(view, booking)
            self._mark_rejected(booking, user_id, reason or "Cancelled", cancelled_by, now)

            self.audit_service.log_action(
                action="cancel",
                entity_type="booking",
                entity_id=booking.id,
                user=user_id,
                before_state=before,
                after_state=booking_state(booking),
                metadata={"reason": reason, "cancelled_by": cancelled_by.value},
                db=db,
            )

        logger.info("Booking %s cancelled by %s (%s)", booking.id, user_id, cancelled_by.value)
        notifier.notify("BOOKING_CANCELLED", booking, "Your shuttle booking was cancelled.")
        return booking

    def update_payment_status(
        self,
        db: Session,
        booking_id: str,
        new_status: PaymentStatus,
        user_id: Optional[str],
        now: datetime,
        reason: Optional[str] = None
    ) -> Booking:
        """
        Move a booking along the payment state machine.

        UNPAID -> PAID, UNPAID -> WAIVED (needs a reason and an authorizing
        user), PAID -> REFUNDED.

        Raises:
            InvalidTransition: for any other move
            ValidationError: if a waiver lacks a reason or user
        """
        booking = self.get_booking(db, booking_id)
        current = booking.payment_status
        if new_status not in PAYMENT_TRANSITIONS.get(current, set()):
            raise InvalidTransition(
                f"Cannot change payment status from {current.value} to {new_status.value}"
            )
        if current == PaymentStatus.UNPAID and booking.booking_status == BookingStatus.REJECTED:
            raise InvalidTransition("Cannot take payment for a rejected booking")

        before = booking_state(booking)
        if new_status == PaymentStatus.WAIVED:
            if not reason or not reason.strip():
                raise ValidationError("A waiver reason is required")
            if not user_id or user_id == "system":
                raise ValidationError("A waiver must be authorized by a user")
            booking.waived_at = now
            booking.waived_by = user_id
            booking.waiver_reason = reason

        booking.payment_status = new_status
        booking.updated_at = now
        self.audit_service.log_action(
            action="payment",
            entity_type="booking",
            entity_id=booking.id,
            user=user_id,
            before_state=before,
            after_state=booking_state(booking),
            metadata={"from": current.value, "to": new_status.value, "reason": reason},
            db=db,
        )
        db.commit()
        db.refresh(booking)

        logger.info("Booking %s payment %s -> %s", booking.id, current.value, new_status.value)
        return booking

    def release_expired_holds(
        self,
        db: Session,
        now: datetime,
        ttl_minutes: Optional[int] = None,
        notifier: Notifier = None
    ) -> List[str]:
        """
        Reject PENDING bookings whose hold outlived the TTL.

        Returns:
            Ids of the bookings released by this sweep
        """
        ttl = settings.hold_ttl_minutes if ttl_minutes is None else ttl_minutes
        cutoff = now - timedelta(minutes=ttl)
        expired_ids = [
            row.id
            for row in db.query(Booking.id)
            .filter(
                Booking.booking_status == BookingStatus.PENDING,
                Booking.seat_ledger == SeatLedger.HELD,
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at.asc())
            .all()
        ]

        released = []
        for booking_id in expired_ids:
            try:
                self.reject_booking(
                    db,
                    booking_id,
                    user_id="system",
                    reason=f"Hold expired after {ttl} minutes",
                    now=now,
                    cancelled_by=CancelledBy.AUTO_CANCEL,
                    notifier=notifier,
                )
            except InvalidTransition:
                # confirmed or rejected between the scan and the lock
                continue
            released.append(booking_id)

        if released:
            logger.info("Released %d expired hold(s)", len(released))
        return released

    def verify_boarding(
        self,
        db: Session,
        booking_id: str,
        driver_id: str,
        now: datetime
    ) -> Booking:
        """
        Driver check-in of a confirmed passenger.

        Raises:
            InvalidTransition: if the booking is not CONFIRMED or already verified
            Forbidden: if the driver does not drive this booking's shuttle
        """
        booking = self.get_booking(db, booking_id)
        if booking.booking_status != BookingStatus.CONFIRMED:
            raise InvalidTransition("Only confirmed bookings can be verified")
        if booking.verified_at is not None:
            raise InvalidTransition(f"Booking {booking.id} was already verified")

        trip_instance = booking.trip_instance
        shuttle: Optional[Shuttle] = trip_instance.shuttle if trip_instance else None
        if shuttle is None or shuttle.current_driver_id != driver_id:
            raise Forbidden("Driver is not assigned to this booking's shuttle")

        before = booking_state(booking)
        booking.verified_at = now
        booking.verified_by = driver_id
        booking.updated_at = now
        self.audit_service.log_action(
            action="verify",
            entity_type="booking",
            entity_id=booking.id,
            user=driver_id,
            before_state=before,
            after_state=booking_state(booking),
            db=db,
        )
        db.commit()
        db.refresh(booking)
        return booking
