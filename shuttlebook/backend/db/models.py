"""SQLAlchemy 2.0 database models."""
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Time, ForeignKey, JSON, Enum as SQLEnum,
    Boolean, Float, Text, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime
import enum
import uuid


Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class LocationType(str, enum.Enum):
    """Location type enumeration."""
    AIRPORT = "airport"
    HOTEL = "hotel"
    OTHER = "other"


class TripInstanceStatus(str, enum.Enum):
    """Trip instance lifecycle states."""
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BookingStatus(str, enum.Enum):
    """Booking approval states."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class PaymentStatus(str, enum.Enum):
    """Booking payment states."""
    UNPAID = "UNPAID"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    WAIVED = "WAIVED"


class PaymentMethod(str, enum.Enum):
    """How the guest pays."""
    APP = "APP"
    FRONTDESK = "FRONTDESK"
    DEPOSIT = "DEPOSIT"


class BookingOrigin(str, enum.Enum):
    """Who created the booking; decides hold vs. commit."""
    GUEST = "GUEST"
    FRONTDESK = "FRONTDESK"


class SeatLedger(str, enum.Enum):
    """Which route instance counter a booking's seats currently sit in."""
    HELD = "HELD"
    OCCUPIED = "OCCUPIED"
    RELEASED = "RELEASED"


class CancelledBy(str, enum.Enum):
    """Actor behind a rejection or cancellation."""
    GUEST = "GUEST"
    DRIVER = "DRIVER"
    FRONTDESK = "FRONTDESK"
    ADMIN = "ADMIN"
    AUTO_CANCEL = "AUTO_CANCEL"
    SYSTEM = "SYSTEM"


ACTIVE_TRIP_INSTANCE_STATUSES = (TripInstanceStatus.SCHEDULED, TripInstanceStatus.IN_PROGRESS)


class Hotel(Base):
    """Hotel model."""
    __tablename__ = "hotels"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    time_zone = Column(String, nullable=False, default="UTC")
    default_seat_capacity = Column(Integer, nullable=True)  # ceiling while no shuttle is bound
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    shuttles = relationship("Shuttle", back_populates="hotel", cascade="all, delete-orphan")
    trips = relationship("Trip", back_populates="hotel", cascade="all, delete-orphan")


class Location(Base):
    """Pickup / dropoff location."""
    __tablename__ = "locations"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False, default="")
    location_type = Column(SQLEnum(LocationType), nullable=False, default=LocationType.OTHER)
    hotel_id = Column(String, ForeignKey("hotels.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Shuttle(Base):
    """Physical vehicle."""
    __tablename__ = "shuttles"
    __table_args__ = (
        Index("ix_shuttles_hotel_active", "hotel_id", "is_active"),
    )

    id = Column(String, primary_key=True, default=new_id)
    hotel_id = Column(String, ForeignKey("hotels.id"), nullable=False, index=True)
    vehicle_number = Column(String, nullable=False, index=True)
    total_seats = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    current_driver_id = Column(String, nullable=True, index=True)  # weak reference
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    hotel = relationship("Hotel", back_populates="shuttles")


class Trip(Base):
    """Recurring service definition (e.g. Hotel <-> Airport)."""
    __tablename__ = "trips"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    hotel_id = Column(String, ForeignKey("hotels.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)  # False once archived
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    hotel = relationship("Hotel", back_populates="trips")
    routes = relationship(
        "Route", back_populates="trip", order_by="Route.order_index", cascade="all, delete-orphan"
    )
    schedules = relationship(
        "TripSchedule", back_populates="trip", order_by="TripSchedule.start_time",
        cascade="all, delete-orphan"
    )


class TripSchedule(Base):
    """Daily service window of a trip, cut into bookable slots."""
    __tablename__ = "trip_schedules"

    id = Column(String, primary_key=True, default=new_id)
    trip_id = Column(String, ForeignKey("trips.id"), nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Relationships
    trip = relationship("Trip", back_populates="schedules")


class Route(Base):
    """One leg of a trip."""
    __tablename__ = "routes"
    __table_args__ = (
        UniqueConstraint("trip_id", "order_index", name="uq_routes_trip_order"),
    )

    id = Column(String, primary_key=True, default=new_id)
    trip_id = Column(String, ForeignKey("trips.id"), nullable=False, index=True)
    order_index = Column(Integer, nullable=False)
    start_location_id = Column(String, ForeignKey("locations.id"), nullable=False)
    end_location_id = Column(String, ForeignKey("locations.id"), nullable=False)
    charges = Column(Float, nullable=False, default=0.0)  # per seat

    # Relationships
    trip = relationship("Trip", back_populates="routes")
    start_location = relationship("Location", foreign_keys=[start_location_id])
    end_location = relationship("Location", foreign_keys=[end_location_id])


class TripInstance(Base):
    """One scheduled occurrence of a trip."""
    __tablename__ = "trip_instances"
    __table_args__ = (
        UniqueConstraint(
            "slot_owner", "scheduled_date", "scheduled_start_time", "scheduled_end_time",
            name="uq_trip_instances_slot"
        ),
        Index("ix_trip_instances_shuttle_date", "shuttle_id", "scheduled_date"),
        Index("ix_trip_instances_trip_date", "trip_id", "scheduled_date", "scheduled_start_time"),
    )

    id = Column(String, primary_key=True, default=new_id)
    trip_id = Column(String, ForeignKey("trips.id"), nullable=False)
    shuttle_id = Column(String, ForeignKey("shuttles.id"), nullable=True)
    # shuttle id, or "trip:<trip_id>" while provisional
    slot_owner = Column(String, nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_start_time = Column(Time, nullable=False)
    scheduled_end_time = Column(Time, nullable=False)
    status = Column(SQLEnum(TripInstanceStatus), nullable=False, default=TripInstanceStatus.SCHEDULED)
    actual_start_time = Column(DateTime, nullable=True)
    actual_end_time = Column(DateTime, nullable=True)
    booking_ids = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    trip = relationship("Trip")
    shuttle = relationship("Shuttle")
    route_instances = relationship(
        "RouteInstance", back_populates="trip_instance", order_by="RouteInstance.order_index",
        cascade="all, delete-orphan"
    )


class RouteInstance(Base):
    """Per-leg occupancy ledger of a trip instance."""
    __tablename__ = "route_instances"
    __table_args__ = (
        UniqueConstraint("trip_instance_id", "order_index", name="uq_route_instances_order"),
    )

    id = Column(String, primary_key=True, default=new_id)
    trip_instance_id = Column(String, ForeignKey("trip_instances.id"), nullable=False, index=True)
    route_id = Column(String, ForeignKey("routes.id"), nullable=False, index=True)
    order_index = Column(Integer, nullable=False)
    seats_occupied = Column(Integer, nullable=False, default=0)
    seat_held = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    eta = Column(String, nullable=True)

    # Relationships
    trip_instance = relationship("TripInstance", back_populates="route_instances")
    route = relationship("Route")

    @property
    def used_seats(self) -> int:
        return self.seats_occupied + self.seat_held


class Booking(Base):
    """Guest reservation over a leg sub-range of one trip instance."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_hotel_status", "hotel_id", "booking_status"),
    )

    id = Column(String, primary_key=True, default=new_id)
    guest_id = Column(String, nullable=False, index=True)
    hotel_id = Column(String, ForeignKey("hotels.id"), nullable=False, index=True)
    trip_instance_id = Column(String, ForeignKey("trip_instances.id"), nullable=True, index=True)
    from_route_index = Column(Integer, nullable=False)
    to_route_index = Column(Integer, nullable=False)
    seats = Column(Integer, nullable=False)
    bags = Column(Integer, nullable=False, default=0)
    name = Column(String, nullable=True)
    confirmation_num = Column(String, nullable=True, index=True)
    notes = Column(Text, nullable=False, default="")
    is_park_sleep_fly = Column(Boolean, nullable=False, default=False)
    total_price = Column(Float, nullable=False, default=0.0)

    booking_status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.UNPAID)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    origin = Column(SQLEnum(BookingOrigin), nullable=False, default=BookingOrigin.GUEST)
    seat_ledger = Column(SQLEnum(SeatLedger), nullable=False, default=SeatLedger.HELD)

    confirmed_at = Column(DateTime, nullable=True)
    confirmed_by = Column(String, nullable=True)

    # boarding check-in by the driver
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(String, nullable=True)

    cancellation_reason = Column(String, nullable=True)
    cancelled_by = Column(SQLEnum(CancelledBy), nullable=True)
    cancelled_by_user_id = Column(String, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    waived_at = Column(DateTime, nullable=True)
    waived_by = Column(String, nullable=True)
    waiver_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    trip_instance = relationship("TripInstance")


class AuditLog(Base):
    """Audit log model for tracking booking and trip transitions."""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_id)
    entity_type = Column(String, nullable=False)  # booking, trip_instance, trip
    entity_id = Column(String, nullable=False, index=True)
    user = Column(String, nullable=False)
    action = Column(String, nullable=False)  # create, confirm, reject, cancel, etc.
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    before_hash = Column(String, nullable=True)
    after_hash = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
