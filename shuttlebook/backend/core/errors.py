"""Domain exceptions raised by the booking core.

Services raise these; the API layer maps them to HTTP responses in
``main.py``.
"""
from typing import Optional


class ShuttleBookError(Exception):
    """Base class for all booking-core errors."""

    status_code = 400
    public_message: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> str:
        return self.public_message or self.message


class ValidationError(ShuttleBookError):
    """Malformed input, rejected before any ledger is touched."""
    status_code = 422


class NotFound(ShuttleBookError):
    """Unknown trip, hotel, shuttle, booking or trip instance."""
    status_code = 404


class Forbidden(ShuttleBookError):
    """Caller may not act on this record (e.g. another guest's booking)."""
    status_code = 403


class InsufficientCapacity(ShuttleBookError):
    """No shuttle or slot has room for the requested seats."""
    status_code = 409


class TripInstanceUnavailable(ShuttleBookError):
    """Target trip instance is COMPLETED or CANCELLED."""
    status_code = 409


class InvalidTransition(ShuttleBookError):
    """A state-machine move that is not allowed from the current state."""
    status_code = 409


class ConcurrencyConflict(ShuttleBookError):
    """Lost the race for a trip instance ledger after all retries."""
    status_code = 503
    public_message = "The shuttle is busy right now, please try again."
