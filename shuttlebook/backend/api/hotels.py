"""Hotel, shuttle and location CRUD API endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from shuttlebook.backend.db.session import get_db
from shuttlebook.backend.db.models import (
    Hotel as HotelModel, Shuttle as ShuttleModel, Location as LocationModel
)
from shuttlebook.backend.schemas.hotel import (
    HotelCreate, Hotel as HotelSchema,
    ShuttleCreate, ShuttleUpdate, Shuttle as ShuttleSchema,
    LocationCreate, Location as LocationSchema
)

router = APIRouter()


def _get_hotel_or_404(db: Session, hotel_id: str) -> HotelModel:
    hotel = db.query(HotelModel).filter_by(id=hotel_id).first()
    if not hotel:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Hotel {hotel_id} not found"
        )
    return hotel


@router.post("/hotels", response_model=HotelSchema, status_code=status.HTTP_201_CREATED)
async def create_hotel(
    hotel: HotelCreate,
    db: Session = Depends(get_db)
):
    """Create a new hotel."""
    if db.query(HotelModel).filter_by(slug=hotel.slug).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Hotel slug {hotel.slug} is already taken"
        )
    db_hotel = HotelModel(**hotel.model_dump())
    db.add(db_hotel)
    db.commit()
    db.refresh(db_hotel)

    return db_hotel


@router.get("/hotels", response_model=List[HotelSchema])
async def list_hotels(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """List hotels."""
    return db.query(HotelModel).offset(skip).limit(limit).all()


@router.get("/hotels/{hotel_id}", response_model=HotelSchema)
async def get_hotel(
    hotel_id: str,
    db: Session = Depends(get_db)
):
    """Get a specific hotel by ID."""
    return _get_hotel_or_404(db, hotel_id)


@router.post("/shuttles", response_model=ShuttleSchema, status_code=status.HTTP_201_CREATED)
async def create_shuttle(
    shuttle: ShuttleCreate,
    db: Session = Depends(get_db)
):
    """Register a shuttle for a hotel."""
    _get_hotel_or_404(db, shuttle.hotel_id)
    db_shuttle = ShuttleModel(**shuttle.model_dump())
    db.add(db_shuttle)
    db.commit()
    db.refresh(db_shuttle)

    return db_shuttle


@router.get("/hotels/{hotel_id}/shuttles", response_model=List[ShuttleSchema])
async def list_shuttles(
    hotel_id: str,
    active: Optional[bool] = Query(None, description="Filter by active flag"),
    db: Session = Depends(get_db)
):
    """List the shuttles of a hotel."""
    _get_hotel_or_404(db, hotel_id)
    query = db.query(ShuttleModel).filter_by(hotel_id=hotel_id)

    if active is not None:
        query = query.filter_by(is_active=active)

    return query.order_by(ShuttleModel.vehicle_number.asc()).all()


@router.patch("/shuttles/{shuttle_id}", response_model=ShuttleSchema)
async def update_shuttle(
    shuttle_id: str,
    shuttle_update: ShuttleUpdate,
    db: Session = Depends(get_db)
):
    """Activate / deactivate a shuttle or change its driver."""
    shuttle = db.query(ShuttleModel).filter_by(id=shuttle_id).first()
    if not shuttle:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Shuttle {shuttle_id} not found"
        )

    # Update fields
    for key, value in shuttle_update.model_dump(exclude_unset=True).items():
        setattr(shuttle, key, value)

    db.commit()
    db.refresh(shuttle)

    return shuttle


@router.post("/locations", response_model=LocationSchema, status_code=status.HTTP_201_CREATED)
async def create_location(
    location: LocationCreate,
    db: Session = Depends(get_db)
):
    """Create a pickup / dropoff location."""
    if location.hotel_id:
        _get_hotel_or_404(db, location.hotel_id)
    db_location = LocationModel(**location.model_dump())
    db.add(db_location)
    db.commit()
    db.refresh(db_location)

    return db_location


@router.get("/locations", response_model=List[LocationSchema])
async def list_locations(
    hotel_id: Optional[str] = Query(None, description="Filter by hotel ID"),
    db: Session = Depends(get_db)
):
    """List locations."""
    query = db.query(LocationModel)

    if hotel_id:
        query = query.filter_by(hotel_id=hotel_id)

    return query.order_by(LocationModel.name.asc()).all()
