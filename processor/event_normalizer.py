"""Normalizer mapping ICS blocks and Google events onto NormalizedEvent."""
import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bs4 import BeautifulSoup

from processor.models import ExternalCalendarSource, NormalizedEvent, RawEventBlock

logger = logging.getLogger(__name__)

UNTITLED_TITLE = 'Untitled Event'
IMPORTED_TITLE = 'Imported Event'
DEFAULT_DURATION = timedelta(hours=1)

_ESCAPE_RE = re.compile(r'\\([\\;,nN])')


class InvalidEventDate(ValueError):
    """Raised in strict mode when an event date cannot be decoded."""


def unescape_text(value: str) -> str:
    """Undo ICS TEXT escaping of newlines, commas, semicolons and backslashes."""
    return _ESCAPE_RE.sub(
        lambda m: '\n' if m.group(1) in 'nN' else m.group(1),
        value
    )


def html_to_text(value: str) -> str:
    """
    Flatten an HTML fragment to plain text.

    Google Calendar descriptions are often HTML; plain text passes through
    unchanged.

    Args:
        value: Description text, possibly containing HTML

    Returns:
        Plain text
    """
    soup = BeautifulSoup(value, 'html.parser')
    if soup.find() is None:
        return value
    for br in soup.find_all('br'):
        br.replace_with('\n')
    return soup.get_text().strip()


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_instant(value: str) -> Tuple[datetime, bool]:
    """
    Parse an ISO date or date-time string.

    Args:
        value: `YYYY-MM-DD` or an ISO 8601 date-time, optionally zoned

    Returns:
        Tuple of (naive UTC datetime, all_day)

    Raises:
        ValueError: If the value cannot be parsed
    """
    value = value.strip()
    if len(value) == 10:
        return datetime.strptime(value, '%Y-%m-%d'), True
    if value.endswith(('Z', 'z')):
        value = value[:-1] + '+00:00'
    return to_utc_naive(datetime.fromisoformat(value)), False


def _fields_to_datetime(value: str) -> datetime:
    normalized = value.strip().upper().rstrip('Z').replace('T', '')
    if len(normalized) < 8 or not normalized.isdigit():
        raise ValueError(f"Unparseable ICS date: {value!r}")
    return datetime(
        int(normalized[0:4]),
        int(normalized[4:6]),
        int(normalized[6:8]),
        int(normalized[8:10] or '00'),
        int(normalized[10:12] or '00'),
        int(normalized[12:14] or '00')
    )


class EventNormalizer:
    """Normalizer for ICS and Google Calendar event data."""
    
    def __init__(self, strict_dates: bool = False):
        """
        Initialize the normalizer.
        
        Args:
            strict_dates: Drop events with undecodable dates instead of
                falling back to the current time
        """
        self.strict_dates = strict_dates
    
    def decode_ics_datetime(
        self,
        value: str,
        params: Optional[Dict[str, str]] = None
    ) -> Tuple[datetime, bool]:
        """
        Decode an ICS DATE or DATE-TIME value.
        
        Args:
            value: Raw value such as `20240105` or `20240105T090000Z`
            params: Property parameters (VALUE, TZID)
            
        Returns:
            Tuple of (naive datetime, all_day)
            
        Raises:
            InvalidEventDate: In strict mode, if the value cannot be decoded
        """
        params = params or {}
        all_day = (
            params.get('VALUE', '').upper() == 'DATE'
            or 'T' not in value.upper()
        )
        
        try:
            decoded = _fields_to_datetime(value)
        except ValueError as e:
            if self.strict_dates:
                raise InvalidEventDate(str(e)) from e
            logger.warning(f"Falling back to current time for date {value!r}: {e}")
            return datetime.now(timezone.utc).replace(tzinfo=None), all_day
        
        tzid = params.get('TZID')
        if tzid and not all_day and not value.strip().upper().endswith('Z'):
            decoded = self._localize(decoded, tzid)
        
        return decoded, all_day
    
    def _localize(self, wall_clock: datetime, tzid: str) -> datetime:
        try:
            zone = ZoneInfo(tzid)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug(f"Unknown TZID {tzid!r}, keeping wall clock time")
            return wall_clock
        return to_utc_naive(wall_clock.replace(tzinfo=zone))
    
    def normalize_ics_blocks(
        self,
        blocks: Iterable[RawEventBlock],
        source: ExternalCalendarSource,
        default_title: str = UNTITLED_TITLE
    ) -> List[NormalizedEvent]:
        """
        Normalize parsed VEVENT blocks.
        
        Args:
            blocks: Raw event blocks from the ICS parser
            source: Provider the blocks were fetched from
            default_title: Title used when SUMMARY is empty
            
        Returns:
            List of NormalizedEvent objects sorted by start
        """
        events = []
        
        for block in blocks:
            try:
                events.append(self._normalize_block(block, source, default_title))
            except InvalidEventDate as e:
                logger.warning(
                    f"Skipping event '{block.value('SUMMARY')}': {e}"
                )
                continue
        
        events.sort(key=lambda event: event.start)
        logger.info(f"Normalized {len(events)} ICS events")
        return events
    
    def _normalize_block(
        self,
        block: RawEventBlock,
        source: ExternalCalendarSource,
        default_title: str
    ) -> NormalizedEvent:
        dtstart = block.get('DTSTART')
        start, all_day = self.decode_ics_datetime(dtstart.value, dtstart.params)
        
        dtend = block.get('DTEND')
        if dtend and dtend.value.strip():
            end, _ = self.decode_ics_datetime(dtend.value, dtend.params)
        else:
            end = start + DEFAULT_DURATION
        if end < start:
            end = start + DEFAULT_DURATION
        
        external_id = self._external_id(
            block.value('UID'), block.value('SUMMARY'), start, end
        )
        recurrence_id = block.value('RECURRENCE-ID')
        if recurrence_id:
            # Overridden instances share the UID of their series
            external_id = f"{external_id}/{recurrence_id.strip()}"

        return NormalizedEvent(
            external_id=external_id,
            title=self._text(block.value('SUMMARY')) or default_title,
            start=start,
            end=end,
            all_day=all_day,
            source=source,
            description=self._text(block.value('DESCRIPTION')),
            location=self._text(block.value('LOCATION'))
        )
    
    def normalize_google_items(self, items: Iterable[Dict[str, Any]]) -> List[NormalizedEvent]:
        """
        Normalize raw Google Calendar API event resources.
        
        `start`/`end` carry either `dateTime` (zoned instant) or `date`
        (all-day); the first present wins.
        
        Args:
            items: `items` array of an events.list response
            
        Returns:
            List of NormalizedEvent objects
        """
        events = []
        
        for item in items:
            start_info = item.get('start') or {}
            end_info = item.get('end') or {}
            raw_start = start_info.get('dateTime') or start_info.get('date')
            raw_end = end_info.get('dateTime') or end_info.get('date')
            
            event = self._from_iso_fields(
                external_id=item.get('id'),
                title=item.get('summary'),
                raw_start=raw_start,
                raw_end=raw_end,
                description=item.get('description'),
                location=item.get('location')
            )
            if event:
                events.append(event)
        
        return events
    
    def normalize_relay_events(self, events: Iterable[Dict[str, Any]]) -> List[NormalizedEvent]:
        """
        Normalize the `events` array returned by the Google relay.
        
        Args:
            events: Relay events with ISO `start`/`end` strings
            
        Returns:
            List of NormalizedEvent objects sorted by start
        """
        normalized = []
        
        for event in events:
            item = self._from_iso_fields(
                external_id=event.get('id'),
                title=event.get('title'),
                raw_start=event.get('start'),
                raw_end=event.get('end'),
                description=event.get('description'),
                location=event.get('location'),
                all_day=event.get('allDay')
            )
            if item:
                normalized.append(item)
        
        normalized.sort(key=lambda event: event.start)
        return normalized
    
    def _from_iso_fields(
        self,
        external_id: Optional[str],
        title: Optional[str],
        raw_start: Optional[str],
        raw_end: Optional[str],
        description: Optional[str],
        location: Optional[str],
        all_day: Optional[bool] = None
    ) -> Optional[NormalizedEvent]:
        if not raw_start:
            logger.warning(f"Skipping Google event {external_id!r} without start")
            return None
        try:
            start, start_all_day = parse_iso_instant(raw_start)
        except ValueError as e:
            logger.warning(f"Skipping Google event {external_id!r} with bad start: {e}")
            return None
        
        try:
            end = parse_iso_instant(raw_end)[0] if raw_end else start + DEFAULT_DURATION
        except ValueError:
            end = start + DEFAULT_DURATION
        if end < start:
            end = start + DEFAULT_DURATION
        
        return NormalizedEvent(
            external_id=self._external_id(external_id, title, start, end),
            title=(title or '').strip() or UNTITLED_TITLE,
            start=start,
            end=end,
            all_day=start_all_day if all_day is None else bool(all_day),
            source=ExternalCalendarSource.GOOGLE,
            description=html_to_text(description) if description else None,
            location=location or None
        )
    
    def _text(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return unescape_text(value).strip() or None
    
    def _external_id(
        self,
        uid: Optional[str],
        title: Optional[str],
        start: datetime,
        end: datetime
    ) -> str:
        """
        Return the provider id, or a content hash when there is none.
        
        The hash of title, start and end keeps re-imports of the same
        id-less event on the same key.
        """
        if uid and uid.strip():
            return uid.strip()
        composite = f"{(title or '').strip()}|{start.isoformat()}|{end.isoformat()}"
        return f"external-{hashlib.sha256(composite.encode('utf-8')).hexdigest()[:32]}"
