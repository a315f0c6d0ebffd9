"""Booking API endpoints."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime
from shuttlebook.backend.db.session import get_db
from shuttlebook.backend.core.security import get_current_user, get_current_role
from shuttlebook.backend.db.models import CancelledBy
from shuttlebook.backend.schemas.booking import (
    BookingCreate, BookingResult, BookingDecision, PaymentUpdate, HoldSweepResult,
    Booking as BookingSchema
)
from shuttlebook.backend.services.booking import BookingService
from shuttlebook.backend.services.notify import Notifier, get_notifier

router = APIRouter()


@router.post("/bookings", response_model=BookingResult, status_code=status.HTTP_201_CREATED)
def create_booking(
    booking: BookingCreate,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier)
):
    """
    Request seats on a trip.

    The allocator picks the slot closest to the desired time and a shuttle
    with room on every leg of the requested range.
    """
    return BookingService().create_booking(db, booking, datetime.utcnow(), user=user, notifier=notifier)


@router.get("/bookings/{booking_id}", response_model=BookingSchema)
async def get_booking(
    booking_id: str,
    db: Session = Depends(get_db)
):
    """Get a specific booking by ID."""
    return BookingService().get_booking(db, booking_id)


@router.post("/bookings/{booking_id}/confirm", response_model=BookingSchema)
def confirm_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier)
):
    """Approve a pending booking."""
    return BookingService().confirm_booking(db, booking_id, user, datetime.utcnow(), notifier=notifier)


@router.post("/bookings/{booking_id}/reject", response_model=BookingSchema)
def reject_booking(
    booking_id: str,
    decision: BookingDecision,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier)
):
    """Reject a pending booking."""
    return BookingService().reject_booking(
        db, booking_id, user, decision.reason, datetime.utcnow(), notifier=notifier
    )


@router.post("/bookings/{booking_id}/cancel", response_model=BookingSchema)
def cancel_booking(
    booking_id: str,
    decision: BookingDecision,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user),
    role: CancelledBy = Depends(get_current_role),
    notifier: Notifier = Depends(get_notifier)
):
    """Cancel a booking; guests may only cancel their own, cancelling twice is harmless."""
    return BookingService().cancel_booking(
        db, booking_id, user, decision.reason, datetime.utcnow(),
        cancelled_by=role, notifier=notifier
    )


@router.post("/bookings/{booking_id}/payment", response_model=BookingSchema)
def update_payment_status(
    booking_id: str,
    payment: PaymentUpdate,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user)
):
    """Mark a booking paid, waived or refunded."""
    return BookingService().update_payment_status(
        db, booking_id, payment.payment_status, user, datetime.utcnow(), reason=payment.reason
    )


@router.post("/bookings/{booking_id}/verify", response_model=BookingSchema)
def verify_boarding(
    booking_id: str,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user)
):
    """Driver check-in of a confirmed passenger."""
    return BookingService().verify_boarding(db, booking_id, user, datetime.utcnow())


@router.post("/bookings/sweep-holds", response_model=HoldSweepResult)
def sweep_expired_holds(
    ttl_minutes: Optional[int] = Query(None, ge=0, description="Override the configured hold TTL"),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Reject pending bookings whose seat hold has expired."""
    released = BookingService().release_expired_holds(
        db, datetime.utcnow(), ttl_minutes=ttl_minutes, notifier=notifier
    )
    return HoldSweepResult(released_booking_ids=released, released_count=len(released))
