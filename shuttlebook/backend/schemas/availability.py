"""Availability Pydantic schemas."""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, time


class ShuttleAvailability(BaseModel):
    """Free seats on one shuttle for a slot and leg range."""
    shuttle_id: Optional[str] = Field(None, description="None for a provisional trip instance")
    vehicle_number: Optional[str] = None
    total_seats: int = Field(..., ge=0)
    available_seats: int = Field(..., ge=0)
    trip_instance_id: Optional[str] = None


class AvailabilityReport(BaseModel):
    """Read-only availability for one slot."""
    trip_id: str
    scheduled_date: date
    start_time: time
    end_time: time
    from_leg: int
    to_leg: int
    total_available_seats: int = Field(..., ge=0)
    shuttles: List[ShuttleAvailability]


class Slot(BaseModel):
    """Bookable slot cut from a schedule window."""
    start_time: time
    end_time: time
    available_seats: int = Field(..., ge=0, description="Largest room on a single shuttle")


class SlotCapacity(BaseModel):
    """Capacity of a single slot."""
    max_capacity: int = Field(..., ge=0, description="Largest active shuttle")
    available_capacity: int = Field(..., ge=0, description="Largest free room on one shuttle")
