"""Logging configuration with guest contact redaction."""
import logging
import sys
from shuttlebook.backend.services.redaction import RedactionService

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"

QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access")


class RedactionFilter(logging.Filter):
    """Scrub guest emails and phone numbers from a record before it is emitted."""

    def __init__(self, redaction_service: RedactionService = None):
        super().__init__()
        self.redaction_service = redaction_service or RedactionService()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = self.redaction_service.redact_text(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.redaction_service.redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    redaction_filter = RedactionFilter()
    for handler in logging.root.handlers:
        handler.addFilter(redaction_filter)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.root.level))
