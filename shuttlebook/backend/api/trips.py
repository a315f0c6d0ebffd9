"""Trip template and availability API endpoints."""
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date, datetime, time
from shuttlebook.backend.db.session import get_db
from shuttlebook.backend.core.security import get_current_user
from shuttlebook.backend.schemas.trip import TripCreate, TripUpdate, Trip as TripSchema
from shuttlebook.backend.schemas.availability import AvailabilityReport, Slot, SlotCapacity
from shuttlebook.backend.services.trip import TripService
from shuttlebook.backend.services.allocator import CapacityAllocator

router = APIRouter()


@router.post("/trips", response_model=TripSchema, status_code=status.HTTP_201_CREATED)
async def create_trip(
    trip: TripCreate,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user)
):
    """Create a trip with its legs and schedule windows."""
    return TripService().create_trip(db, trip, user=user)


@router.get("/trips", response_model=List[TripSchema])
async def list_trips(
    hotel_id: Optional[str] = Query(None, description="Filter by hotel ID"),
    include_archived: bool = Query(False),
    db: Session = Depends(get_db)
):
    """List trips."""
    return TripService().list_trips(db, hotel_id=hotel_id, include_archived=include_archived)


@router.get("/trips/{trip_id}", response_model=TripSchema)
async def get_trip(
    trip_id: str,
    db: Session = Depends(get_db)
):
    """Get a specific trip by ID."""
    return TripService().get_trip(db, trip_id)


@router.patch("/trips/{trip_id}", response_model=TripSchema)
async def update_trip(
    trip_id: str,
    trip_update: TripUpdate,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user)
):
    """Update a trip; legs are frozen once trip instances exist."""
    return TripService().update_trip(db, trip_id, trip_update, user=user)


@router.delete("/trips/{trip_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_trip(
    trip_id: str,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user)
):
    """Delete a trip, or archive it when past instances reference it."""
    TripService().delete_trip(db, trip_id, user=user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/trips/{trip_id}/availability", response_model=AvailabilityReport)
async def get_availability(
    trip_id: str,
    scheduled_date: date = Query(..., description="Service date"),
    start_time: time = Query(..., description="Slot start"),
    end_time: time = Query(..., description="Slot end"),
    from_leg: Optional[int] = Query(None, ge=0),
    to_leg: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db)
):
    """Free seats per shuttle for one slot and leg range."""
    return CapacityAllocator().find_availability(
        db, trip_id, scheduled_date, start_time, end_time, from_leg=from_leg, to_leg=to_leg
    )


@router.get("/trips/{trip_id}/slots", response_model=List[Slot])
async def get_available_slots(
    trip_id: str,
    scheduled_date: date = Query(..., description="Service date"),
    seats: int = Query(1, ge=1),
    from_leg: Optional[int] = Query(None, ge=0),
    to_leg: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db)
):
    """Slots of a day that still fit the requested seats."""
    return CapacityAllocator().get_available_slots(
        db, trip_id, scheduled_date, seats, datetime.utcnow(), from_leg=from_leg, to_leg=to_leg
    )


@router.get("/trips/{trip_id}/slot-capacity", response_model=SlotCapacity)
async def get_slot_capacity(
    trip_id: str,
    scheduled_date: date = Query(...),
    start_time: time = Query(...),
    end_time: time = Query(...),
    from_leg: Optional[int] = Query(None, ge=0),
    to_leg: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db)
):
    """Largest shuttle and largest free room for one slot."""
    return CapacityAllocator().get_slot_capacity(
        db, trip_id, scheduled_date, start_time, end_time, from_leg=from_leg, to_leg=to_leg
    )
