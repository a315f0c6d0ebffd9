"""Dashboard and manifest views.

Trip-level summaries report the full-route maximum occupancy. Range-scoped
maxima are only used for availability (see ``CapacityAllocator``).
"""
from collections import Counter
from datetime import date, timedelta
from typing import List
from sqlalchemy.orm import Session
from shuttlebook.backend.db.models import (
    Booking, Trip, TripInstance, Shuttle, BookingStatus, PaymentStatus, PaymentMethod,
    TripInstanceStatus
)
from shuttlebook.backend.schemas.trip_instance import TripInstanceSnapshot, LegOccupancy
from shuttlebook.backend.schemas.report import (
    DashboardStats, DashboardOverview, PeriodStats, DailyBookings, ActiveTrip, ManifestEntry
)
from shuttlebook.backend.services.ledger import OccupancyLedger

DASHBOARD_DAYS = 30


def _earnings(bookings: List[Booking]) -> float:
    return round(
        sum(b.total_price or 0.0 for b in bookings if b.payment_status == PaymentStatus.PAID), 2
    )


class ReportingService:
    """Read-only views over trip instances and bookings; never locks."""

    def __init__(self, ledger: OccupancyLedger = None):
        self.ledger = ledger or OccupancyLedger()

    def trip_instance_snapshot(self, db: Session, trip_instance_id: str) -> TripInstanceSnapshot:
        """Per-leg occupancy and full-route max of one trip instance."""
        view = self.ledger.load(db, trip_instance_id)
        trip_instance = view.trip_instance
        shuttle = trip_instance.shuttle

        per_leg = [
            LegOccupancy(
                order_index=ri.order_index,
                seats_occupied=ri.seats_occupied,
                seat_held=ri.seat_held,
                used_seats=ri.used_seats,
                available_seats=max(0, view.capacity - ri.used_seats),
                completed=ri.completed,
            )
            for ri in view.route_instances
        ]
        return TripInstanceSnapshot(
            trip_instance_id=trip_instance.id,
            trip_id=trip_instance.trip_id,
            trip_name=trip_instance.trip.name,
            shuttle_id=trip_instance.shuttle_id,
            vehicle_number=shuttle.vehicle_number if shuttle else None,
            scheduled_date=trip_instance.scheduled_date,
            scheduled_start_time=trip_instance.scheduled_start_time,
            scheduled_end_time=trip_instance.scheduled_end_time,
            status=trip_instance.status,
            capacity=view.capacity,
            max_used_seats=self.ledger.max_used(view.route_instances),
            per_leg_occupancy=per_leg,
            booking_count=len(trip_instance.booking_ids or []),
        )

    def dashboard_stats(self, db: Session, hotel_id: str, today: date) -> DashboardStats:
        """Booking, earnings, trip and fleet counters of one hotel."""
        bookings = db.query(Booking).filter_by(hotel_id=hotel_id).all()
        window_start = today - timedelta(days=DASHBOARD_DAYS)
        trip_instances = (
            db.query(TripInstance)
            .join(Trip, TripInstance.trip_id == Trip.id)
            .filter(Trip.hotel_id == hotel_id, TripInstance.scheduled_date >= window_start)
            .all()
        )
        shuttles = db.query(Shuttle).filter_by(hotel_id=hotel_id).all()

        by_status = Counter(b.booking_status for b in bookings)
        trip_status = Counter(ti.status for ti in trip_instances)

        def created_on(booking: Booking) -> date:
            return booking.created_at.date()

        today_bookings = [b for b in bookings if created_on(b) == today]
        last_7 = [b for b in bookings if created_on(b) >= today - timedelta(days=7)]
        last_30 = [b for b in bookings if created_on(b) >= window_start]

        daily = []
        for offset in range(DASHBOARD_DAYS - 1, -1, -1):
            day = today - timedelta(days=offset)
            day_bookings = [b for b in bookings if created_on(b) == day]
            day_status = Counter(b.booking_status for b in day_bookings)
            daily.append(DailyBookings(
                day=day,
                total=len(day_bookings),
                confirmed=day_status[BookingStatus.CONFIRMED],
                pending=day_status[BookingStatus.PENDING],
                rejected=day_status[BookingStatus.REJECTED],
                earnings=_earnings(day_bookings),
            ))

        payment_status = Counter(b.payment_status for b in bookings)
        payment_method = Counter(b.payment_method for b in bookings)

        return DashboardStats(
            overview=DashboardOverview(
                total_bookings=len(bookings),
                confirmed_bookings=by_status[BookingStatus.CONFIRMED],
                pending_bookings=by_status[BookingStatus.PENDING],
                rejected_bookings=by_status[BookingStatus.REJECTED],
                total_earnings=_earnings(bookings),
                total_trips=len(trip_instances),
                scheduled_trips=trip_status[TripInstanceStatus.SCHEDULED],
                in_progress_trips=trip_status[TripInstanceStatus.IN_PROGRESS],
                completed_trips=trip_status[TripInstanceStatus.COMPLETED],
                cancelled_trips=trip_status[TripInstanceStatus.CANCELLED],
                total_shuttles=len(shuttles),
                active_shuttles=sum(1 for s in shuttles if s.is_active),
            ),
            today=PeriodStats(bookings=len(today_bookings), earnings=_earnings(today_bookings)),
            last_7_days=PeriodStats(bookings=len(last_7), earnings=_earnings(last_7)),
            last_30_days=PeriodStats(bookings=len(last_30), earnings=_earnings(last_30)),
            daily_bookings=daily,
            payment_stats={status.value.lower(): payment_status[status] for status in PaymentStatus},
            payment_method_stats={method.value.lower(): payment_method[method] for method in PaymentMethod},
        )

    def active_trips(self, db: Session, hotel_id: str, today: date) -> List[ActiveTrip]:
        """Today's SCHEDULED and IN_PROGRESS trip instances of a hotel."""
        trip_instances = (
            db.query(TripInstance)
            .join(Trip, TripInstance.trip_id == Trip.id)
            .filter(
                Trip.hotel_id == hotel_id,
                TripInstance.scheduled_date == today,
                TripInstance.status.in_([TripInstanceStatus.SCHEDULED, TripInstanceStatus.IN_PROGRESS]),
            )
            .order_by(TripInstance.scheduled_start_time.asc())
            .all()
        )

        result = []
        for trip_instance in trip_instances:
            legs = trip_instance.route_instances
            shuttle = trip_instance.shuttle
            result.append(ActiveTrip(
                trip_instance_id=trip_instance.id,
                trip_name=trip_instance.trip.name,
                scheduled_start_time=trip_instance.scheduled_start_time,
                scheduled_end_time=trip_instance.scheduled_end_time,
                status=trip_instance.status,
                shuttle_id=trip_instance.shuttle_id,
                vehicle_number=shuttle.vehicle_number if shuttle else None,
                driver_id=shuttle.current_driver_id if shuttle else None,
                capacity=self.ledger.capacity_for(trip_instance),
                max_occupied=max((ri.seats_occupied for ri in legs), default=0),
                max_held=max((ri.seat_held for ri in legs), default=0),
                booking_count=len(trip_instance.booking_ids or []),
            ))
        return result

    def driver_manifest(self, db: Session, driver_id: str, day: date) -> List[ManifestEntry]:
        """Runs of the driver's current shuttle on one day."""
        shuttle = db.query(Shuttle).filter_by(current_driver_id=driver_id, is_active=True).first()
        if shuttle is None:
            return []

        trip_instances = (
            db.query(TripInstance)
            .filter_by(shuttle_id=shuttle.id, scheduled_date=day)
            .order_by(TripInstance.scheduled_start_time.asc())
            .all()
        )
        return [
            ManifestEntry(
                trip_instance_id=ti.id,
                trip_name=ti.trip.name,
                shuttle_id=shuttle.id,
                vehicle_number=shuttle.vehicle_number,
                scheduled_start_time=ti.scheduled_start_time,
                scheduled_end_time=ti.scheduled_end_time,
                status=ti.status,
                total_seats=shuttle.total_seats,
                max_occupied=max((ri.seats_occupied for ri in ti.route_instances), default=0),
                max_held=max((ri.seat_held for ri in ti.route_instances), default=0),
                booking_count=len(ti.booking_ids or []),
            )
            for ti in trip_instances
        ]
