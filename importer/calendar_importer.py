"""Coordinator for one user-triggered calendar import at a time."""
import logging
import threading
from typing import List, NoReturn, Optional

from fetcher.calendar_fetcher import CalendarFetcher
from fetcher.source_classifier import classify_source
from importer.errors import CalendarImportError, NoEventsFound, SessionCancelled
from importer.import_engine import ImportEngine
from importer.session import ImportSession, SessionState
from processor.event_normalizer import IMPORTED_TITLE, UNTITLED_TITLE, EventNormalizer
from processor.ics_parser import IcsParser
from processor.models import ExternalCalendarSource, ImportResult, NormalizedEvent

logger = logging.getLogger(__name__)


class CalendarImporter:
    """
    Runs the classify, fetch, parse, normalize and persist steps.

    Only the most recently started session is active. Results that arrive
    for a cancelled or superseded session are discarded.
    """

    def __init__(
        self,
        fetcher: CalendarFetcher,
        engine: ImportEngine,
        parser: Optional[IcsParser] = None,
        normalizer: Optional[EventNormalizer] = None
    ):
        self.fetcher = fetcher
        self.engine = engine
        self.parser = parser or IcsParser()
        self.normalizer = normalizer or EventNormalizer()
        self._lock = threading.Lock()
        self._active_session_id: Optional[str] = None

    def start(self, user_id: str, url: Optional[str] = None, name: Optional[str] = None) -> ImportSession:
        """
        Open a new session, superseding any previous one.

        Args:
            user_id: Owner of the import
            url: Calendar URL, or None for pasted ICS text
            name: Optional display name for the saved calendar

        Returns:
            The new active ImportSession
        """
        session = ImportSession(
            user_id=user_id,
            classified=classify_source(url) if url is not None else None,
            name=name
        )
        with self._lock:
            self._active_session_id = session.session_id
        return session

    def is_active(self, session: ImportSession) -> bool:
        with self._lock:
            return (
                self._active_session_id == session.session_id
                and session.state != SessionState.CANCELLED
            )

    def cancel(self, session: ImportSession) -> None:
        """Dismiss a session; any late result for it is discarded."""
        with self._lock:
            if self._active_session_id == session.session_id:
                self._active_session_id = None
        session.state = SessionState.CANCELLED
        logger.info(f"Import session {session.session_id} cancelled")

    def clear(self) -> None:
        with self._lock:
            self._active_session_id = None

    def import_from_url(self, user_id: str, url: str, name: Optional[str] = None) -> ImportSession:
        """
        Fetch and normalize a remote calendar without persisting it.

        Args:
            user_id: Owner of the import
            url: Calendar URL or bare Google calendar id
            name: Optional display name for the saved calendar

        Returns:
            Session in FETCHED state holding the normalized events

        Raises:
            CalendarImportError: Any stage failure, with its stage set
        """
        session = self.start(user_id, url=url, name=name)
        return self.fetch(session)

    def import_from_text(self, user_id: str, ics_text: str, name: Optional[str] = None) -> ImportSession:
        """
        Parse pasted ICS text into a session.

        Args:
            user_id: Owner of the import
            ics_text: Raw ICS document
            name: Optional label for the session

        Returns:
            Session in FETCHED state holding the normalized events
        """
        session = self.start(user_id, name=name)
        try:
            session.events = self._parse_ics(ics_text, ExternalCalendarSource.ICS, IMPORTED_TITLE)
        except CalendarImportError as e:
            self._fail(session, e)
        session.state = SessionState.FETCHED
        return session

    def fetch(self, session: ImportSession) -> ImportSession:
        """
        Retrieve and normalize the events of a URL session.

        Args:
            session: Session created by start() with a URL

        Returns:
            The same session in FETCHED state

        Raises:
            SessionCancelled: If the session is no longer active
            CalendarImportError: Any stage failure
        """
        classified = session.classified
        if classified is None:
            raise CalendarImportError('No calendar URL to import', stage='classify')

        try:
            if classified.source == ExternalCalendarSource.GOOGLE:
                if not classified.calendar_id:
                    raise CalendarImportError(
                        'Could not extract calendar ID from Google Calendar URL',
                        stage='classify'
                    )
                relay_events = self.fetcher.fetch_google_events(classified.calendar_id)
                self._ensure_active(session)
                events = self.normalizer.normalize_relay_events(relay_events)
            else:
                ics_text = self.fetcher.fetch_ics(classified.fetch_url)
                self._ensure_active(session)
                events = self._parse_ics(ics_text, classified.source)
        except SessionCancelled:
            raise
        except CalendarImportError as e:
            self._fail(session, e)

        session.events = events
        session.state = SessionState.FETCHED
        logger.info(
            f"Fetched {len(events)} events from {classified.source.value} calendar",
            extra={'session_id': session.session_id}
        )
        return session

    def save(self, session: ImportSession) -> ImportResult:
        """
        Persist a fetched session through the merge engine.

        Args:
            session: Session in FETCHED state

        Returns:
            ImportResult of the merge

        Raises:
            SessionCancelled: If the session is no longer active
            CalendarImportError: If there is nothing to save or the write fails
        """
        self._ensure_active(session)
        try:
            result = self.engine.persist(session)
        except CalendarImportError as e:
            self._fail(session, e)

        session.state = SessionState.SAVED
        with self._lock:
            if self._active_session_id == session.session_id:
                self._active_session_id = None
        return result

    def _parse_ics(
        self,
        ics_text: str,
        source: ExternalCalendarSource,
        default_title: str = UNTITLED_TITLE
    ) -> List[NormalizedEvent]:
        blocks = self.parser.parse(ics_text)
        if not blocks:
            raise NoEventsFound()
        events = self.normalizer.normalize_ics_blocks(blocks, source, default_title)
        if not events:
            raise NoEventsFound()
        return events

    def _ensure_active(self, session: ImportSession) -> None:
        if not self.is_active(session):
            logger.info(f"Discarding result of inactive session {session.session_id}")
            raise SessionCancelled('Import was cancelled')

    def _fail(self, session: ImportSession, error: CalendarImportError) -> NoReturn:
        if not self.is_active(session):
            raise SessionCancelled('Import was cancelled') from error
        session.state = SessionState.FAILED
        session.error = error
        logger.error(
            f"Calendar import error: {error.message}",
            extra={'stage': error.stage, 'session_id': session.session_id}
        )
        raise error
