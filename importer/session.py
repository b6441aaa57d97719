"""Explicit state of one calendar import attempt."""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from importer.errors import CalendarImportError
from processor.models import ClassifiedSource, ExternalCalendarSource, NormalizedEvent


class SessionState(str, Enum):
    PENDING = 'pending'
    FETCHED = 'fetched'
    SAVED = 'saved'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


@dataclass
class ImportSession:
    """
    Context threaded from classification through persistence.

    `classified` is None for pasted ICS text, which has no source URL.
    """
    user_id: str
    classified: Optional[ClassifiedSource] = None
    name: Optional[str] = None
    events: List[NormalizedEvent] = field(default_factory=list)
    state: SessionState = SessionState.PENDING
    error: Optional[CalendarImportError] = None
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    
    @property
    def source(self) -> ExternalCalendarSource:
        if self.classified is None:
            return ExternalCalendarSource.ICS
        return self.classified.source
    
    @property
    def url(self) -> Optional[str]:
        return self.classified.original_url if self.classified else None
    
    @property
    def calendar_id(self) -> Optional[str]:
        return self.classified.calendar_id if self.classified else None
