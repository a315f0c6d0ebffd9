"""Notification interface for booking events.

Delivery (push, email, in-app) is handled by the surrounding platform; the
core only announces what happened.
"""
from abc import ABC, abstractmethod
import logging
from shuttlebook.backend.db.models import Booking

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Abstract base class for booking notification sinks."""

    @abstractmethod
    def notify(self, event: str, booking: Booking, message: str) -> None:
        """
        Announce a booking event.

        Args:
            event: NEW_BOOKING, BOOKING_CONFIRMED, BOOKING_REJECTED or BOOKING_CANCELLED
            booking: The affected booking
            message: Human readable message for the guest or staff
        """
        pass


class LogNotifier(Notifier):
    """Writes notifications to the application log."""

    def notify(self, event: str, booking: Booking, message: str) -> None:
        logger.info("%s booking=%s guest=%s: %s", event, booking.id, booking.guest_id, message)


_notifier: Notifier = LogNotifier()


def get_notifier() -> Notifier:
    """Dependency returning the active notifier."""
    return _notifier
