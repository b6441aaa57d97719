"""Google Calendar API v3 client used by the backend relay."""
import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)


class GoogleApiError(Exception):
    """Non-2xx response from the Google Calendar API."""
    
    def __init__(self, status_code: int, body: str):
        super().__init__(f"Google Calendar API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


def add_months(value: datetime, months: int) -> datetime:
    """Shift a datetime by whole months, clamping the day to the month end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _format_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.000Z')


class GoogleCalendarApi:
    """Client for the events.list endpoint using a server-side API key."""
    
    BASE_URL = 'https://www.googleapis.com/calendar/v3/calendars'
    
    def __init__(
        self,
        api_key: str,
        timeout: int = 30,
        lookahead_months: int = 6,
        max_results: int = 250
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.lookahead_months = lookahead_months
        self.max_results = max_results
    
    def list_events(
        self,
        calendar_id: str,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        List upcoming event instances of a calendar.
        
        Recurring events are expanded by the provider (`singleEvents`).
        
        Args:
            calendar_id: Google calendar identifier
            now: Window start (defaults to the current instant)
            
        Returns:
            Raw event resources; empty if the response has no items
            
        Raises:
            GoogleApiError: If the API answers with a non-2xx status
            requests.RequestException: On network failure
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        
        params = {
            'key': self.api_key,
            'timeMin': _format_rfc3339(now),
            'timeMax': _format_rfc3339(add_months(now, self.lookahead_months)),
            'singleEvents': 'true',
            'orderBy': 'startTime',
            'maxResults': self.max_results
        }
        url = f"{self.BASE_URL}/{quote(calendar_id, safe='')}/events"
        
        logger.info(f"Fetching from Google Calendar API: {calendar_id}")
        response = requests.get(url, params=params, timeout=self.timeout)
        
        if not response.ok:
            logger.error(
                f"Google Calendar API error: {response.status_code} {response.text}"
            )
            raise GoogleApiError(response.status_code, response.text)
        
        items = response.json().get('items')
        if not items:
            logger.info("No events found in calendar")
            return []
        
        return items
