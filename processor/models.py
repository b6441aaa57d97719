"""Data models for calendar ingestion."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class ExternalCalendarSource(str, Enum):
    """Provider an imported calendar comes from."""
    GOOGLE = 'google'
    OUTLOOK = 'outlook'
    ICLOUD = 'icloud'
    ICS = 'ics'


class SyncStatus(str, Enum):
    LOCAL = 'local'
    SYNCED = 'synced'
    CONFLICT = 'conflict'
    IMPORTED = 'imported'


@dataclass
class ClassifiedSource:
    """Result of classifying a user-supplied calendar URL."""
    source: ExternalCalendarSource
    original_url: str
    fetch_url: str
    calendar_id: Optional[str] = None
    recognized: bool = True


@dataclass
class RawCalendarProperty:
    """A single `KEY[;PARAM=...]:VALUE` content line."""
    key: str
    params: Dict[str, str]
    value: str


@dataclass
class RawEventBlock:
    """Properties of one VEVENT, keyed by property name."""
    properties: Dict[str, RawCalendarProperty] = field(default_factory=dict)
    
    def add(self, prop: RawCalendarProperty) -> None:
        # First occurrence wins
        self.properties.setdefault(prop.key, prop)
    
    def get(self, key: str) -> Optional[RawCalendarProperty]:
        return self.properties.get(key)
    
    def value(self, key: str) -> Optional[str]:
        prop = self.properties.get(key)
        return prop.value if prop else None
    
    def __contains__(self, key: str) -> bool:
        return key in self.properties


@dataclass
class NormalizedEvent:
    """Provider-independent event produced by the normalizer."""
    external_id: str
    title: str
    start: datetime
    end: datetime
    all_day: bool
    source: ExternalCalendarSource
    description: Optional[str] = None
    location: Optional[str] = None


@dataclass
class Calendar:
    """Persisted external calendar owned by one user."""
    id: str
    user_id: str
    name: str
    color_code: str
    url: str
    is_visible: bool
    external_source: str
    external_id: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class Event:
    """Persisted event, imported or locally authored."""
    id: str
    user_id: str
    title: str
    start_time: str
    end_time: str
    all_day: bool = False
    calendar_id: Optional[str] = None
    external_id: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    color_code: Optional[str] = None
    external_source: Optional[str] = None
    sync_status: str = SyncStatus.LOCAL.value


@dataclass
class ImportResult:
    """Result of persisting one import session."""
    calendar: Optional[Calendar]
    added: int
    updated: int
    skipped: int
    errors: List[str] = field(default_factory=list)
