"""Leg-range helpers over a trip's ordered routes."""
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session
from shuttlebook.backend.db.models import Route
from shuttlebook.backend.core.errors import ValidationError


class RouteService:
    """Resolves and prices leg sub-ranges of a trip."""

    def get_routes(self, db: Session, trip_id: str) -> List[Route]:
        """Routes of a trip ordered by leg index."""
        return (
            db.query(Route)
            .filter_by(trip_id=trip_id)
            .order_by(Route.order_index.asc())
            .all()
        )

    def resolve_leg_range(
        self,
        routes: List[Route],
        from_leg: Optional[int] = None,
        to_leg: Optional[int] = None
    ) -> Tuple[int, int]:
        """
        Validate a leg range, defaulting to the whole route.

        Raises:
            ValidationError: if the trip has no legs or the range is out of bounds
        """
        if not routes:
            raise ValidationError("Trip has no routes defined")

        last = len(routes) - 1
        start = 0 if from_leg is None else from_leg
        end = last if to_leg is None else to_leg

        if start < 0 or end > last:
            raise ValidationError(f"Leg range {start}..{end} is outside 0..{last}")
        if start > end:
            raise ValidationError(f"Leg range {start}..{end} is reversed")
        return start, end

    def resolve_locations(
        self,
        routes: List[Route],
        from_location_id: str,
        to_location_id: str
    ) -> Tuple[int, int]:
        """
        Map a pickup and dropoff location to the leg range that connects them.

        The range starts at the first leg leaving the pickup and ends at the
        last leg arriving at the dropoff.
        """
        if not routes:
            raise ValidationError("Trip has no routes defined")
        if from_location_id == to_location_id:
            raise ValidationError("Pickup and dropoff cannot be the same location")

        from_index = next(
            (i for i, route in enumerate(routes) if route.start_location_id == from_location_id),
            None
        )
        to_index = None
        for i, route in enumerate(routes):
            if route.end_location_id == to_location_id:
                to_index = i

        if from_index is None:
            raise ValidationError("Pickup location is not a stop on this trip")
        if to_index is None:
            raise ValidationError("Dropoff location is not a stop on this trip")
        if from_index > to_index:
            raise ValidationError("Pickup must come before dropoff on this trip")
        return from_index, to_index

    def calculate_total_charges(self, routes: List[Route], from_leg: int, to_leg: int, seats: int) -> float:
        """Per-seat charges of the legs in range, times seats."""
        per_seat = sum(route.charges for route in routes[from_leg:to_leg + 1])
        return round(per_seat * seats, 2)
