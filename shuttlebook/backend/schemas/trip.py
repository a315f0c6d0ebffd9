"""Trip template Pydantic schemas."""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, time


class LegCreate(BaseModel):
    """One pickup -> dropoff leg of a new trip."""
    start_location_id: str
    end_location_id: str
    charges: float = Field(0.0, ge=0, description="Per-seat price of the leg")


class ScheduleWindow(BaseModel):
    """Daily service window; cut into bookable slots."""
    start_time: time
    end_time: time


class TripCreate(BaseModel):
    """Schema for creating a trip."""
    name: str = Field(..., min_length=1, description="Trip name, e.g. Hotel <-> Airport")
    hotel_id: str
    legs: List[LegCreate] = Field(..., min_length=1, description="Ordered legs")
    schedules: List[ScheduleWindow] = Field(default_factory=list)


class TripUpdate(BaseModel):
    """Partial update of a trip."""
    name: Optional[str] = Field(None, min_length=1)
    legs: Optional[List[LegCreate]] = Field(None, min_length=1)
    schedules: Optional[List[ScheduleWindow]] = None


class Route(BaseModel):
    """Schema for route (leg) response."""
    id: str
    order_index: int
    start_location_id: str
    end_location_id: str
    charges: float

    class Config:
        from_attributes = True


class TripSchedule(BaseModel):
    """Schema for schedule window response."""
    id: str
    start_time: time
    end_time: time

    class Config:
        from_attributes = True


class Trip(BaseModel):
    """Schema for trip response."""
    id: str
    name: str
    hotel_id: str
    is_active: bool
    routes: List[Route]
    schedules: List[TripSchedule]
    created_at: datetime

    class Config:
        from_attributes = True
