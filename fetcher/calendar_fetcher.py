"""HTTP transport for calendar imports: CORS relay and Google relay."""
import logging
from typing import Any, Dict, List

import requests

from importer.errors import EmptyOrInvalidPayload, TransportFailure

logger = logging.getLogger(__name__)

GOOGLE_API_DISABLED_MESSAGE = (
    'Google Calendar API is not enabled. Please enable the Google Calendar '
    'API in your Google Cloud Console and ensure your API key has access to it.'
)


class CalendarFetcher:
    """Fetcher for remote calendars reachable only through relays."""
    
    def __init__(
        self,
        cors_proxy_url: str,
        google_relay_url: str = '',
        timeout: int = 30,
        min_ics_length: int = 50
    ):
        """
        Initialize the calendar fetcher.
        
        Args:
            cors_proxy_url: Pass-through relay answering `{contents: ...}`
            google_relay_url: Backend relay holding the Google API key
            timeout: HTTP request timeout in seconds (default: 30)
            min_ics_length: Shortest payload accepted as an ICS document
        """
        self.cors_proxy_url = cors_proxy_url
        self.google_relay_url = google_relay_url
        self.timeout = timeout
        self.min_ics_length = min_ics_length
    
    def fetch_ics(self, fetch_url: str) -> str:
        """
        Fetch raw ICS text through the CORS relay.
        
        Args:
            fetch_url: Canonical ICS URL of the calendar
            
        Returns:
            Raw ICS text
            
        Raises:
            TransportFailure: Network error, timeout, non-2xx or bad wrapper
            EmptyOrInvalidPayload: Contents missing or implausibly short
        """
        logger.info(f"Fetching calendar from: {fetch_url}")
        
        try:
            response = requests.get(
                self.cors_proxy_url,
                params={'url': fetch_url},
                timeout=self.timeout
            )
        except requests.Timeout as e:
            raise TransportFailure(
                f"Timed out fetching calendar after {self.timeout} seconds"
            ) from e
        except requests.RequestException as e:
            raise TransportFailure(f"Failed to fetch calendar: {e}") from e
        
        if not response.ok:
            raise TransportFailure(
                f"Failed to fetch calendar: {response.status_code} {response.reason}",
                status_code=response.status_code
            )
        
        try:
            data = response.json()
        except ValueError as e:
            raise TransportFailure('Invalid response from calendar proxy') from e
        
        if not isinstance(data, dict) or 'contents' not in data:
            raise TransportFailure('Invalid response from calendar proxy')
        
        upstream_status = (data.get('status') or {}).get('http_code')
        if isinstance(upstream_status, int) and upstream_status >= 400:
            raise TransportFailure(
                f"Failed to fetch calendar: {upstream_status}",
                status_code=upstream_status
            )
        
        contents = data.get('contents')
        if not isinstance(contents, str) or len(contents) < self.min_ics_length:
            raise EmptyOrInvalidPayload('Invalid or empty calendar data received')
        
        logger.info(f"Fetched {len(contents)} characters of calendar data")
        return contents
    
    def fetch_google_events(self, calendar_id: str) -> List[Dict[str, Any]]:
        """
        Fetch already-normalized events for a Google calendar via the relay.
        
        Args:
            calendar_id: Google calendar identifier
            
        Returns:
            The relay's `events` array (empty if absent)
            
        Raises:
            TransportFailure: Relay error, network error or timeout
        """
        if not self.google_relay_url:
            raise TransportFailure('Google Calendar relay URL is not configured')
        
        logger.info(f"Using Google Calendar API for calendar: {calendar_id}")
        
        try:
            response = requests.post(
                self.google_relay_url,
                json={'calendarId': calendar_id},
                timeout=self.timeout
            )
        except requests.Timeout as e:
            raise TransportFailure(
                f"Timed out fetching Google Calendar after {self.timeout} seconds"
            ) from e
        except requests.RequestException as e:
            raise TransportFailure(f"Failed to fetch Google Calendar: {e}") from e
        
        try:
            data = response.json()
        except ValueError:
            data = None
        
        if isinstance(data, dict) and data.get('error'):
            logger.error(
                f"Google Calendar relay error: {data['error']}",
                extra={'status_code': response.status_code}
            )
            raise TransportFailure(data['error'], status_code=response.status_code)
        
        if not response.ok:
            if response.status_code == 403 or 'blocked' in response.text.lower():
                raise TransportFailure(
                    GOOGLE_API_DISABLED_MESSAGE,
                    status_code=response.status_code
                )
            raise TransportFailure(
                f"Failed to fetch Google Calendar: "
                f"{response.status_code} {response.reason}",
                status_code=response.status_code
            )
        
        if not isinstance(data, dict):
            raise TransportFailure('Invalid response from Google Calendar relay')
        
        return data.get('events') or []
