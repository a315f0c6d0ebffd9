"""Trip instance Pydantic schemas."""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, date, time
from shuttlebook.backend.db.models import TripInstanceStatus


class RouteInstance(BaseModel):
    """Per-leg occupancy."""
    id: str
    route_id: str
    order_index: int
    seats_occupied: int
    seat_held: int
    completed: bool
    eta: Optional[str] = None

    class Config:
        from_attributes = True


class LegOccupancy(BaseModel):
    """Per-leg occupancy with free seats against the instance capacity."""
    order_index: int
    seats_occupied: int
    seat_held: int
    used_seats: int
    available_seats: int
    completed: bool


class TripInstance(BaseModel):
    """Schema for trip instance response."""
    id: str
    trip_id: str
    shuttle_id: Optional[str]
    scheduled_date: date
    scheduled_start_time: time
    scheduled_end_time: time
    status: TripInstanceStatus
    actual_start_time: Optional[datetime]
    actual_end_time: Optional[datetime]
    booking_ids: List[str]
    route_instances: List[RouteInstance]

    class Config:
        from_attributes = True


class TripInstanceSnapshot(BaseModel):
    """Driver / admin dashboard view of one trip instance."""
    trip_instance_id: str
    trip_id: str
    trip_name: str
    shuttle_id: Optional[str]
    vehicle_number: Optional[str]
    scheduled_date: date
    scheduled_start_time: time
    scheduled_end_time: time
    status: TripInstanceStatus
    capacity: int
    max_used_seats: int = Field(..., description="Max over the whole route")
    per_leg_occupancy: List[LegOccupancy]
    booking_count: int


class TripInstanceCancel(BaseModel):
    """Cancel request body."""
    reason: str = Field(..., min_length=1)


class AssignShuttleRequest(BaseModel):
    """Bind or rebind a shuttle."""
    shuttle_id: str
