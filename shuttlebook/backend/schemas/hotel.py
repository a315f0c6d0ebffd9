"""Hotel, shuttle and location Pydantic schemas."""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from shuttlebook.backend.db.models import LocationType


class HotelCreate(BaseModel):
    """Schema for creating a hotel."""
    name: str = Field(..., min_length=1, description="Hotel name")
    slug: str = Field(..., min_length=1, description="URL slug, unique")
    time_zone: str = Field("UTC", description="IANA time zone")
    default_seat_capacity: Optional[int] = Field(
        None, gt=0, description="Seat ceiling for trip instances awaiting a shuttle"
    )


class Hotel(BaseModel):
    """Schema for hotel response."""
    id: str
    name: str
    slug: str
    time_zone: str
    default_seat_capacity: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class ShuttleCreate(BaseModel):
    """Schema for creating a shuttle."""
    hotel_id: str
    vehicle_number: str = Field(..., min_length=1)
    total_seats: int = Field(..., gt=0, description="Seat count of the vehicle")
    is_active: bool = True
    current_driver_id: Optional[str] = None


class ShuttleUpdate(BaseModel):
    """Partial update of a shuttle."""
    is_active: Optional[bool] = None
    current_driver_id: Optional[str] = None


class Shuttle(BaseModel):
    """Schema for shuttle response."""
    id: str
    hotel_id: str
    vehicle_number: str
    total_seats: int
    is_active: bool
    current_driver_id: Optional[str]

    class Config:
        from_attributes = True


class LocationCreate(BaseModel):
    """Schema for creating a location."""
    name: str = Field(..., min_length=1)
    address: str = ""
    location_type: LocationType = LocationType.OTHER
    hotel_id: Optional[str] = None


class Location(BaseModel):
    """Schema for location response."""
    id: str
    name: str
    address: str
    location_type: LocationType
    hotel_id: Optional[str]

    class Config:
        from_attributes = True
