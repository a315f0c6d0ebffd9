"""Booking Pydantic schemas."""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, date, time
from shuttlebook.backend.db.models import (
    BookingStatus, PaymentStatus, PaymentMethod, BookingOrigin, SeatLedger, CancelledBy
)


class BookingCreate(BaseModel):
    """
    Booking request as sent by the guest app or the frontdesk.

    The leg range is given either as ``from_leg``/``to_leg`` indices or as
    ``from_location_id``/``to_location_id``; omitted means the whole route.
    """
    guest_id: str
    trip_id: str
    hotel_id: str
    scheduled_date: date
    desired_time: time
    seats: int = Field(..., gt=0, description="Seats to reserve")
    bags: int = Field(0, ge=0)
    from_leg: Optional[int] = Field(None, ge=0)
    to_leg: Optional[int] = Field(None, ge=0)
    from_location_id: Optional[str] = None
    to_location_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.APP
    origin: BookingOrigin = BookingOrigin.GUEST
    name: Optional[str] = None
    confirmation_num: Optional[str] = None
    notes: str = ""
    is_park_sleep_fly: bool = False


class Booking(BaseModel):
    """Schema for booking response."""
    id: str
    guest_id: str
    hotel_id: str
    trip_instance_id: Optional[str]
    from_route_index: int
    to_route_index: int
    seats: int
    bags: int
    name: Optional[str]
    confirmation_num: Optional[str]
    notes: str
    is_park_sleep_fly: bool
    total_price: float
    booking_status: BookingStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    origin: BookingOrigin
    seat_ledger: SeatLedger
    confirmed_at: Optional[datetime]
    confirmed_by: Optional[str]
    verified_at: Optional[datetime]
    verified_by: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[CancelledBy]
    cancelled_at: Optional[datetime]
    waived_at: Optional[datetime]
    waived_by: Optional[str]
    waiver_reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AssignedSlot(BaseModel):
    """Where the allocator placed the booking."""
    trip_instance_id: str
    shuttle_id: Optional[str]
    scheduled_date: date
    scheduled_start_time: time
    scheduled_end_time: time


class BookingResult(BaseModel):
    """Response of a successful booking request."""
    booking: Booking
    assigned_slot: AssignedSlot
    message: str


class BookingDecision(BaseModel):
    """Reject / cancel request body."""
    reason: str = Field(..., min_length=1)


class PaymentUpdate(BaseModel):
    """Payment status transition request."""
    payment_status: PaymentStatus
    reason: Optional[str] = Field(None, description="Required when waiving")


class HoldSweepResult(BaseModel):
    """Outcome of an expired-hold sweep."""
    released_booking_ids: list[str]
    released_count: int
