"""Merge engine persisting normalized events into the user's store."""
import logging
import uuid
from dataclasses import replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from fetcher.source_classifier import classify_source
from importer.errors import CalendarImportError
from importer.session import ImportSession
from processor.models import (
    Calendar,
    Event,
    ExternalCalendarSource,
    ImportResult,
    NormalizedEvent,
    SyncStatus,
)
from storage.dynamodb_manager import DynamoDBManager, utc_now_iso

logger = logging.getLogger(__name__)


class DedupPolicy(str, Enum):
    """How repeated imports of the same URL are merged."""
    SNAPSHOT = 'snapshot'
    UPSERT = 'upsert'


def format_instant(value) -> str:
    return value.isoformat(timespec='seconds')


def canonical_feed_url(url: str) -> str:
    """Map a stored or typed calendar URL to the URL actually fetched."""
    return classify_source(url).fetch_url


class ImportEngine:
    """Engine deciding insert, update or skip for an imported batch."""
    
    PASTED_COLOR = '#10B981'
    
    def __init__(
        self,
        storage: DynamoDBManager,
        policy: DedupPolicy = DedupPolicy.SNAPSHOT,
        default_color: str = '#3B82F6'
    ):
        self.storage = storage
        self.policy = DedupPolicy(policy)
        self.default_color = default_color
    
    def calendar_name(self, session: ImportSession) -> str:
        """
        Derive the display name of an imported calendar.
        
        Args:
            session: Import session being saved
            
        Returns:
            Session name if given, else a provider-based label
        """
        if session.name and session.name.strip():
            return session.name.strip()
        if session.source == ExternalCalendarSource.GOOGLE:
            local_part = (session.calendar_id or '').split('@')[0]
            return f"Google Calendar ({local_part})"
        return f"{session.source.value.capitalize()} Calendar"
    
    def persist(self, session: ImportSession) -> ImportResult:
        """
        Persist the session's events and, for URL imports, their calendar.
        
        Args:
            session: Session holding fetched events
            
        Returns:
            ImportResult with added/updated/skipped counts
            
        Raises:
            CalendarImportError: If the session holds no events
            PersistenceFailure: If the write fails (nothing is left behind)
        """
        if not session.events:
            raise CalendarImportError('No calendar data to save', stage='persist')
        
        if session.classified is None:
            return self._persist_pasted(session)
        
        if self.policy == DedupPolicy.UPSERT:
            existing = self.storage.find_calendar_by_url(
                session.user_id,
                session.url,
                session.source.value,
                canonicalize=canonical_feed_url
            )
            if existing:
                return self._upsert(existing, session)
        
        return self._snapshot(session)
    
    def _snapshot(self, session: ImportSession) -> ImportResult:
        now = utc_now_iso()
        calendar = Calendar(
            id=str(uuid.uuid4()),
            user_id=session.user_id,
            name=self.calendar_name(session),
            color_code=self.default_color,
            url=session.url,
            is_visible=True,
            external_source=session.source.value,
            external_id=session.calendar_id,
            created_at=now,
            updated_at=now
        )
        events, duplicates = self._unique_events(session.events)
        rows = [
            self._to_row(event, session.user_id, calendar.id, SyncStatus.SYNCED)
            for event in events
        ]
        
        self.storage.save_import(calendar, rows)
        
        logger.info(
            f"Successfully saved {len(rows)} events from {session.source.value} calendar",
            extra={'calendar_id': calendar.id, 'session_id': session.session_id}
        )
        return ImportResult(calendar=calendar, added=len(rows), updated=0, skipped=duplicates)
    
    def _upsert(self, calendar: Calendar, session: ImportSession) -> ImportResult:
        stored = {
            event.external_id: event
            for event in self.storage.get_calendar_events(session.user_id, calendar.id)
            if event.external_id
        }
        events, skipped = self._unique_events(session.events)
        
        to_write: List[Event] = []
        previous: Dict[str, Event] = {}
        added = updated = 0
        
        for event in events:
            existing = stored.get(event.external_id)
            row = self._to_row(
                event,
                session.user_id,
                calendar.id,
                SyncStatus.SYNCED,
                event_id=existing.id if existing else None
            )
            if existing is None:
                to_write.append(row)
                added += 1
            elif self._events_differ(row, existing):
                # Keep per-event color overrides
                row.color_code = existing.color_code
                to_write.append(row)
                previous[row.id] = existing
                updated += 1
            else:
                skipped += 1
        
        refreshed = replace(calendar, updated_at=utc_now_iso())
        self.storage.save_import(
            refreshed,
            to_write,
            previous_calendar=calendar,
            previous_events=previous
        )
        
        logger.info(
            f"Re-import of calendar {calendar.id}: {added} added, "
            f"{updated} updated, {skipped} unchanged"
        )
        return ImportResult(calendar=refreshed, added=added, updated=updated, skipped=skipped)
    
    def _persist_pasted(self, session: ImportSession) -> ImportResult:
        rows = [
            self._to_row(event, session.user_id, None, SyncStatus.IMPORTED,
                         color_code=self.PASTED_COLOR)
            for event in session.events
        ]
        self.storage.save_import(None, rows)
        logger.info(f"Successfully imported {len(rows)} pasted events")
        return ImportResult(calendar=None, added=len(rows), updated=0, skipped=0)
    
    def _unique_events(
        self,
        events: List[NormalizedEvent]
    ) -> Tuple[List[NormalizedEvent], int]:
        seen = set()
        unique = []
        for event in events:
            if event.external_id in seen:
                logger.warning(f"Skipping duplicate external id {event.external_id!r}")
                continue
            seen.add(event.external_id)
            unique.append(event)
        return unique, len(events) - len(unique)
    
    def _to_row(
        self,
        event: NormalizedEvent,
        user_id: str,
        calendar_id: Optional[str],
        sync_status: SyncStatus,
        event_id: Optional[str] = None,
        color_code: Optional[str] = None
    ) -> Event:
        return Event(
            id=event_id or str(uuid.uuid4()),
            user_id=user_id,
            title=event.title,
            start_time=format_instant(event.start),
            end_time=format_instant(event.end),
            all_day=event.all_day,
            calendar_id=calendar_id,
            external_id=event.external_id,
            description=event.description,
            location=event.location,
            color_code=color_code,
            external_source=event.source.value,
            sync_status=sync_status.value
        )
    
    def _events_differ(self, event1: Event, event2: Event) -> bool:
        """
        Compare the imported content of two events.
        
        Color and sync status are local state and are not compared.
        """
        return (
            event1.title != event2.title or
            event1.description != event2.description or
            event1.location != event2.location or
            event1.start_time != event2.start_time or
            event1.end_time != event2.end_time or
            event1.all_day != event2.all_day
        )
