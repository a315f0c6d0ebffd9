"""Tests for log redaction."""
import logging
from shuttlebook.backend.core.logging import RedactionFilter
from shuttlebook.backend.services.redaction import RedactionService


def test_redact_text():
    service = RedactionService()

    text = "Guest jane.doe@example.com called from +44 20 7946 0958 about pickup"
    redacted = service.redact_text(text)

    assert "jane.doe@example.com" not in redacted
    assert "[EMAIL_REDACTED]" in redacted
    assert "[PHONE_REDACTED]" in redacted
    assert service.redact_text("Shuttle SH-01 departs 09:00") == "Shuttle SH-01 departs 09:00"


def test_filter_scrubs_args():
    record = logging.LogRecord(
        "shuttlebook", logging.INFO, __file__, 1,
        "Booking for %s on %s seats", ("guest@example.com", 3), None
    )

    assert RedactionFilter().filter(record) is True
    assert record.getMessage() == "Booking for [EMAIL_REDACTED] on 3 seats"
