"""Trip instance lifecycle API endpoints (driver and frontdesk)."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
from shuttlebook.backend.db.session import get_db
from shuttlebook.backend.core.security import get_current_user
from shuttlebook.backend.schemas.trip_instance import (
    TripInstance as TripInstanceSchema, TripInstanceSnapshot, TripInstanceCancel, AssignShuttleRequest
)
from shuttlebook.backend.schemas.booking import Booking as BookingSchema
from shuttlebook.backend.services.trip_instance import TripInstanceService
from shuttlebook.backend.services.booking import BookingService
from shuttlebook.backend.services.reporting import ReportingService
from shuttlebook.backend.services.notify import Notifier, get_notifier

router = APIRouter()


@router.get("/trip-instances/{trip_instance_id}", response_model=TripInstanceSnapshot)
async def get_trip_instance_snapshot(
    trip_instance_id: str,
    db: Session = Depends(get_db)
):
    """Occupancy snapshot of a trip instance."""
    return ReportingService().trip_instance_snapshot(db, trip_instance_id)


@router.get("/trip-instances/{trip_instance_id}/bookings", response_model=List[BookingSchema])
async def list_trip_instance_bookings(
    trip_instance_id: str,
    db: Session = Depends(get_db)
):
    """Bookings placed on a trip instance."""
    TripInstanceService().get(db, trip_instance_id)
    return BookingService().list_for_trip_instance(db, trip_instance_id)


@router.post("/trip-instances/{trip_instance_id}/start", response_model=TripInstanceSchema)
def start_trip_instance(
    trip_instance_id: str,
    db: Session = Depends(get_db),
    driver_id: Optional[str] = Query(None, description="Checked against the shuttle's current driver")
):
    """Driver starts the run."""
    return TripInstanceService().start(db, trip_instance_id, datetime.utcnow(), driver_id=driver_id)


@router.post("/trip-instances/{trip_instance_id}/legs/{leg_index}/complete", response_model=TripInstanceSchema)
def complete_leg(
    trip_instance_id: str,
    leg_index: int,
    db: Session = Depends(get_db),
    driver_id: Optional[str] = Query(None, description="Checked against the shuttle's current driver")
):
    """Driver reached the end of a leg."""
    return TripInstanceService().mark_leg_completed(
        db, trip_instance_id, leg_index, datetime.utcnow(), driver_id=driver_id
    )


@router.post("/trip-instances/{trip_instance_id}/complete", response_model=TripInstanceSchema)
def complete_trip_instance(
    trip_instance_id: str,
    db: Session = Depends(get_db),
    driver_id: Optional[str] = Query(None)
):
    """Driver finishes the run."""
    return TripInstanceService().complete(db, trip_instance_id, datetime.utcnow(), driver_id=driver_id)


@router.post("/trip-instances/{trip_instance_id}/revert-leg", response_model=TripInstanceSchema)
def revert_last_leg(
    trip_instance_id: str,
    db: Session = Depends(get_db),
    driver_id: Optional[str] = Query(None)
):
    """Undo the last leg completion."""
    return TripInstanceService().revert_last_leg(db, trip_instance_id, driver_id=driver_id)


@router.post("/trip-instances/{trip_instance_id}/cancel", response_model=TripInstanceSchema)
def cancel_trip_instance(
    trip_instance_id: str,
    cancel: TripInstanceCancel,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier)
):
    """Cancel a run and reject its bookings."""
    return TripInstanceService().cancel(
        db, trip_instance_id, user, cancel.reason, datetime.utcnow(), notifier=notifier
    )


@router.post("/trip-instances/{trip_instance_id}/assign-shuttle", response_model=TripInstanceSchema)
def assign_shuttle(
    trip_instance_id: str,
    assignment: AssignShuttleRequest,
    db: Session = Depends(get_db),
    user: str = Depends(get_current_user)
):
    """Bind a shuttle to a provisional or scheduled run."""
    return TripInstanceService().assign_shuttle(db, trip_instance_id, assignment.shuttle_id, user_id=user)
