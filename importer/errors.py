"""Error taxonomy for the calendar import pipeline."""
from typing import Dict, Optional


class CalendarImportError(Exception):
    """Base error for one import session; `stage` names the failing step."""

    stage = 'import'

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if stage:
            self.stage = stage

    def to_dict(self) -> Dict[str, str]:
        """Serialize for the UI layer."""
        return {'error': self.message, 'stage': self.stage}


class TransportFailure(CalendarImportError):
    """Network error, non-2xx status or relay wrapper failure."""

    stage = 'transport'

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyOrInvalidPayload(CalendarImportError):
    """The calendar was reached but the payload is missing or too short."""

    stage = 'payload'


class ParseFailure(CalendarImportError):
    """The fetched text did not yield any usable events."""

    stage = 'parse'


class NoEventsFound(ParseFailure):

    def __init__(self, message: str = 'No events found in the calendar'):
        super().__init__(message)


class MalformedCalendarData(ParseFailure):

    def __init__(
        self,
        message: str = (
            'Failed to parse calendar data. The file may be corrupted '
            'or in an unsupported format.'
        )
    ):
        super().__init__(message)


class PersistenceFailure(CalendarImportError):
    """Writing calendar or event rows failed."""

    stage = 'persist'


class SessionCancelled(CalendarImportError):
    """The session was cancelled or superseded before its result arrived."""

    stage = 'session'
