"""PII redaction service."""
import re


class RedactionService:
    """Service for redacting guest contact details from text."""

    # Common email pattern
    EMAIL_PATTERN = re.compile(
        r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b'
    )

    # International phone numbers (leading + and country code)
    PHONE_PATTERN = re.compile(
        r'(?<!\w)\+\d[\d\s().-]{7,}\d\b'
    )

    def redact_email(self, text: str) -> str:
        """Redact email addresses."""
        return self.EMAIL_PATTERN.sub('[EMAIL_REDACTED]', text)

    def redact_phone(self, text: str) -> str:
        """Redact phone numbers."""
        return self.PHONE_PATTERN.sub('[PHONE_REDACTED]', text)

    def redact_text(self, text: str) -> str:
        """Redact all PII from text."""
        if not isinstance(text, str):
            return text

        result = self.redact_email(text)
        result = self.redact_phone(result)
        return result
