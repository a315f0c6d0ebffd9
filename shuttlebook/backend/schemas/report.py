"""Reporting Pydantic schemas."""
from pydantic import BaseModel
from typing import List, Optional
from datetime import date, time
from shuttlebook.backend.db.models import TripInstanceStatus


class DashboardOverview(BaseModel):
    """Hotel-wide counters."""
    total_bookings: int
    confirmed_bookings: int
    pending_bookings: int
    rejected_bookings: int
    total_earnings: float
    total_trips: int
    scheduled_trips: int
    in_progress_trips: int
    completed_trips: int
    cancelled_trips: int
    total_shuttles: int
    active_shuttles: int


class PeriodStats(BaseModel):
    """Bookings and earnings over a period."""
    bookings: int
    earnings: float


class DailyBookings(BaseModel):
    """One day of the booking chart."""
    day: date
    total: int
    confirmed: int
    pending: int
    rejected: int
    earnings: float


class DashboardStats(BaseModel):
    """Admin dashboard payload."""
    overview: DashboardOverview
    today: PeriodStats
    last_7_days: PeriodStats
    last_30_days: PeriodStats
    daily_bookings: List[DailyBookings]
    payment_stats: dict[str, int]
    payment_method_stats: dict[str, int]


class ActiveTrip(BaseModel):
    """Today's trip instance summary."""
    trip_instance_id: str
    trip_name: str
    scheduled_start_time: time
    scheduled_end_time: time
    status: TripInstanceStatus
    shuttle_id: Optional[str]
    vehicle_number: Optional[str]
    driver_id: Optional[str]
    capacity: int
    max_occupied: int
    max_held: int
    booking_count: int


class ManifestEntry(BaseModel):
    """One run on a driver's daily manifest."""
    trip_instance_id: str
    trip_name: str
    shuttle_id: str
    vehicle_number: str
    scheduled_start_time: time
    scheduled_end_time: time
    status: TripInstanceStatus
    total_seats: int
    max_occupied: int
    max_held: int
    booking_count: int
