"""Trip template service."""
from typing import List, Optional
import logging
from sqlalchemy.orm import Session
from shuttlebook.backend.db.models import (
    Trip, Route, TripSchedule, TripInstance, Hotel, Location, ACTIVE_TRIP_INSTANCE_STATUSES
)
from shuttlebook.backend.schemas.trip import TripCreate, TripUpdate, LegCreate, ScheduleWindow
from shuttlebook.backend.core.errors import NotFound, ValidationError, InvalidTransition
from shuttlebook.backend.services.audit import AuditService

logger = logging.getLogger(__name__)


class TripService:
    """Creates and maintains trip templates (legs and schedule windows)."""

    def __init__(self):
        self.audit_service = AuditService()

    def get_trip(self, db: Session, trip_id: str) -> Trip:
        trip = db.query(Trip).filter_by(id=trip_id).first()
        if not trip:
            raise NotFound(f"Trip {trip_id} not found")
        return trip

    def list_trips(
        self,
        db: Session,
        hotel_id: Optional[str] = None,
        include_archived: bool = False
    ) -> List[Trip]:
        query = db.query(Trip)
        if hotel_id:
            query = query.filter_by(hotel_id=hotel_id)
        if not include_archived:
            query = query.filter_by(is_active=True)
        return query.order_by(Trip.created_at.asc()).all()

    def _validate_legs(self, db: Session, legs: List[LegCreate]) -> None:
        """Legs must exist, connect end to start, and never loop on themselves."""
        if not legs:
            raise ValidationError("A trip needs at least one leg")

        location_ids = {leg.start_location_id for leg in legs} | {leg.end_location_id for leg in legs}
        found = {
            row.id for row in db.query(Location.id).filter(Location.id.in_(location_ids)).all()
        }
        missing = location_ids - found
        if missing:
            raise ValidationError(f"Unknown location(s): {', '.join(sorted(missing))}")

        for index, leg in enumerate(legs):
            if leg.start_location_id == leg.end_location_id:
                raise ValidationError(f"Leg {index} starts and ends at the same location")
            if index > 0 and legs[index - 1].end_location_id != leg.start_location_id:
                raise ValidationError(f"Leg {index} does not start where leg {index - 1} ends")

    @staticmethod
    def _validate_schedules(schedules: List[ScheduleWindow]) -> None:
        for window in schedules:
            if window.start_time >= window.end_time:
                raise ValidationError(
                    f"Schedule window {window.start_time}-{window.end_time} must end after it starts"
                )

    @staticmethod
    def _build_routes(legs: List[LegCreate]) -> List[Route]:
        return [
            Route(
                order_index=index,
                start_location_id=leg.start_location_id,
                end_location_id=leg.end_location_id,
                charges=leg.charges,
            )
            for index, leg in enumerate(legs)
        ]

    @staticmethod
    def _build_schedules(schedules: List[ScheduleWindow]) -> List[TripSchedule]:
        return [
            TripSchedule(start_time=window.start_time, end_time=window.end_time)
            for window in schedules
        ]

    def create_trip(self, db: Session, data: TripCreate, user: Optional[str] = None) -> Trip:
        """
        Create a trip with its legs and schedule windows.

        Leg order indices are assigned 0..n-1 from the list order.
        """
        hotel = db.query(Hotel).filter_by(id=data.hotel_id).first()
        if not hotel:
            raise NotFound(f"Hotel {data.hotel_id} not found")
        self._validate_legs(db, data.legs)
        self._validate_schedules(data.schedules)

        trip = Trip(name=data.name, hotel_id=hotel.id, is_active=True)
        trip.routes = self._build_routes(data.legs)
        trip.schedules = self._build_schedules(data.schedules)
        db.add(trip)
        db.flush()

        self.audit_service.log_action(
            action="create",
            entity_type="trip",
            entity_id=trip.id,
            user=user,
            metadata={"legs": len(data.legs), "schedules": len(data.schedules)},
            db=db,
        )
        db.commit()
        db.refresh(trip)

        logger.info("Created trip %s (%s) with %d leg(s)", trip.id, trip.name, len(data.legs))
        return trip

    def _has_instances(self, db: Session, trip_id: str, active_only: bool = False) -> bool:
        query = db.query(TripInstance.id).filter(TripInstance.trip_id == trip_id)
        if active_only:
            query = query.filter(TripInstance.status.in_(ACTIVE_TRIP_INSTANCE_STATUSES))
        return query.first() is not None

    def update_trip(self, db: Session, trip_id: str, data: TripUpdate, user: Optional[str] = None) -> Trip:
        """
        Update name, schedule windows or legs.

        Raises:
            InvalidTransition: if legs change while trip instances exist
        """
        trip = self.get_trip(db, trip_id)
        changes = data.model_dump(exclude_unset=True)

        if "legs" in changes and data.legs is not None:
            if self._has_instances(db, trip.id):
                raise InvalidTransition("Legs cannot change once trip instances exist")
            self._validate_legs(db, data.legs)
            trip.routes = []
            db.flush()
            trip.routes = self._build_routes(data.legs)

        if "schedules" in changes and data.schedules is not None:
            self._validate_schedules(data.schedules)
            trip.schedules = self._build_schedules(data.schedules)

        if "name" in changes and data.name:
            trip.name = data.name

        self.audit_service.log_action(
            action="update",
            entity_type="trip",
            entity_id=trip.id,
            user=user,
            metadata={"fields": sorted(changes)},
            db=db,
        )
        db.commit()
        db.refresh(trip)
        return trip

    def delete_trip(self, db: Session, trip_id: str, user: Optional[str] = None) -> bool:
        """
        Delete a trip, or archive it when finished instances reference it.

        Returns:
            True if the trip was removed, False if it was archived

        Raises:
            InvalidTransition: if a SCHEDULED or IN_PROGRESS instance exists
        """
        trip = self.get_trip(db, trip_id)
        if self._has_instances(db, trip.id, active_only=True):
            raise InvalidTransition("Cannot delete a trip with scheduled or running instances")

        if self._has_instances(db, trip.id):
            trip.is_active = False
            action = "archive"
        else:
            db.delete(trip)
            action = "delete"

        self.audit_service.log_action(
            action=action,
            entity_type="trip",
            entity_id=trip_id,
            user=user,
            db=db,
        )
        db.commit()
        logger.info("Trip %s %sd", trip_id, action)
        return action == "delete"
