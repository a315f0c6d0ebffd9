"""Dashboard and manifest API endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date, datetime
from shuttlebook.backend.db.session import get_db
from shuttlebook.backend.db.models import Hotel as HotelModel
from shuttlebook.backend.schemas.report import DashboardStats, ActiveTrip, ManifestEntry
from shuttlebook.backend.services.reporting import ReportingService

router = APIRouter()


def _require_hotel(db: Session, hotel_id: str) -> None:
    if not db.query(HotelModel.id).filter_by(id=hotel_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Hotel {hotel_id} not found"
        )


@router.get("/reports/hotels/{hotel_id}/dashboard", response_model=DashboardStats)
async def get_dashboard(
    hotel_id: str,
    db: Session = Depends(get_db)
):
    """Admin dashboard counters for the last 30 days."""
    _require_hotel(db, hotel_id)
    return ReportingService().dashboard_stats(db, hotel_id, datetime.utcnow().date())


@router.get("/reports/hotels/{hotel_id}/active-trips", response_model=List[ActiveTrip])
async def get_active_trips(
    hotel_id: str,
    db: Session = Depends(get_db)
):
    """Today's scheduled and running trip instances."""
    _require_hotel(db, hotel_id)
    return ReportingService().active_trips(db, hotel_id, datetime.utcnow().date())


@router.get("/reports/drivers/{driver_id}/manifest", response_model=List[ManifestEntry])
async def get_driver_manifest(
    driver_id: str,
    day: Optional[date] = Query(None, description="Defaults to today"),
    db: Session = Depends(get_db)
):
    """Runs of the driver's shuttle for one day."""
    return ReportingService().driver_manifest(db, driver_id, day or datetime.utcnow().date())
