"""Audit logging service."""
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
import hashlib
import json
from shuttlebook.backend.db.models import AuditLog, Booking, TripInstance


def booking_state(booking: Booking) -> Dict[str, Any]:
    """Fields of a booking that matter for the audit trail."""
    return {
        "booking_status": booking.booking_status.value if booking.booking_status else None,
        "payment_status": booking.payment_status.value if booking.payment_status else None,
        "seat_ledger": booking.seat_ledger.value if booking.seat_ledger else None,
        "trip_instance_id": booking.trip_instance_id,
        "from_route_index": booking.from_route_index,
        "to_route_index": booking.to_route_index,
        "seats": booking.seats,
    }


def trip_instance_state(trip_instance: TripInstance) -> Dict[str, Any]:
    """Fields of a trip instance that matter for the audit trail."""
    return {
        "status": trip_instance.status.value if trip_instance.status else None,
        "shuttle_id": trip_instance.shuttle_id,
        "legs": [
            [ri.order_index, ri.seats_occupied, ri.seat_held, ri.completed]
            for ri in trip_instance.route_instances
        ],
    }


class AuditService:
    """Service for audit logging."""

    @staticmethod
    def _hash(state: Optional[Dict[str, Any]]) -> Optional[str]:
        if not state:
            return None
        return hashlib.sha256(
            json.dumps(state, sort_keys=True, default=str).encode()
        ).hexdigest()[:16]

    def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        user: Optional[str],
        before_state: Optional[Dict[str, Any]] = None,
        after_state: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        db: Session = None
    ) -> Optional[AuditLog]:
        """
        Record an action in the audit log.

        The entry joins the caller's transaction; it is persisted when the
        caller commits, so a rolled back ledger change leaves no audit row.

        Args:
            action: Action name (create, confirm, reject, cancel, start, etc.)
            entity_type: booking, trip_instance or trip
            entity_id: Id of the affected row
            user: User identifier
            before_state: State before action (optional)
            after_state: State after action (optional)
            metadata: Additional metadata (optional)
            db: Database session

        Returns:
            AuditLog entry or None if db not provided
        """
        if db is None:
            return None

        audit_entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            user=user or "system",
            action=action,
            before_hash=self._hash(before_state),
            after_hash=self._hash(after_state),
            metadata_json=metadata or {}
        )
        db.add(audit_entry)
        return audit_entry

    def history(self, db: Session, entity_id: str) -> list[AuditLog]:
        """Audit entries for one entity, oldest first."""
        return (
            db.query(AuditLog)
            .filter_by(entity_id=entity_id)
            .order_by(AuditLog.timestamp.asc())
            .all()
        )
