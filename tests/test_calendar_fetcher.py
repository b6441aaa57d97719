"""Unit tests for CalendarFetcher."""
import json

import pytest
import responses
from requests.exceptions import ConnectionError, Timeout

from fetcher.calendar_fetcher import GOOGLE_API_DISABLED_MESSAGE, CalendarFetcher
from importer.errors import EmptyOrInvalidPayload, TransportFailure

PROXY_URL = 'https://proxy.example.com/get'
RELAY_URL = 'https://relay.example.com/google-calendar'

VALID_ICS = (
    "BEGIN:VCALENDAR\nVERSION:2.0\nBEGIN:VEVENT\nSUMMARY:Standup\n"
    "DTSTART:20240105T090000Z\nEND:VEVENT\nEND:VCALENDAR\n"
)


@pytest.fixture
def fetcher():
    return CalendarFetcher(
        cors_proxy_url=PROXY_URL,
        google_relay_url=RELAY_URL,
        timeout=30
    )


class TestFetchIcs:
    """Test cases for the CORS relay path."""
    
    @responses.activate
    def test_fetch_ics_success(self, fetcher):
        responses.add(responses.GET, PROXY_URL, json={'contents': VALID_ICS}, status=200)
        
        text = fetcher.fetch_ics('https://example.com/cal.ics')
        
        assert text == VALID_ICS
        assert len(responses.calls) == 1
        assert 'url=https%3A%2F%2Fexample.com%2Fcal.ics' in responses.calls[0].request.url
    
    @responses.activate
    def test_fetch_ics_non_2xx(self, fetcher):
        responses.add(responses.GET, PROXY_URL, body='Server Error', status=500)
        
        with pytest.raises(TransportFailure) as exc_info:
            fetcher.fetch_ics('https://example.com/cal.ics')
        
        assert exc_info.value.status_code == 500
        assert exc_info.value.message.startswith('Failed to fetch calendar: 500')
        assert exc_info.value.stage == 'transport'
        # No automatic retries
        assert len(responses.calls) == 1
    
    @responses.activate
    def test_fetch_ics_network_error(self, fetcher):
        responses.add(responses.GET, PROXY_URL, body=ConnectionError('Connection refused'))
        
        with pytest.raises(TransportFailure, match='Failed to fetch calendar'):
            fetcher.fetch_ics('https://example.com/cal.ics')
    
    @responses.activate
    def test_fetch_ics_timeout(self, fetcher):
        responses.add(responses.GET, PROXY_URL, body=Timeout('Request timed out'))
        
        with pytest.raises(TransportFailure, match='Timed out fetching calendar after 30 seconds'):
            fetcher.fetch_ics('https://example.com/cal.ics')
    
    @responses.activate
    def test_fetch_ics_wrapper_not_json(self, fetcher):
        responses.add(responses.GET, PROXY_URL, body='<html>oops</html>', status=200)
        
        with pytest.raises(TransportFailure, match='Invalid response from calendar proxy'):
            fetcher.fetch_ics('https://example.com/cal.ics')
    
    @responses.activate
    def test_fetch_ics_wrapper_without_contents(self, fetcher):
        responses.add(responses.GET, PROXY_URL, json={'something': 'else'}, status=200)
        
        with pytest.raises(TransportFailure, match='Invalid response from calendar proxy'):
            fetcher.fetch_ics('https://example.com/cal.ics')
    
    @responses.activate
    def test_fetch_ics_upstream_status(self, fetcher):
        responses.add(
            responses.GET,
            PROXY_URL,
            json={'contents': None, 'status': {'http_code': 404}},
            status=200
        )
        
        with pytest.raises(TransportFailure) as exc_info:
            fetcher.fetch_ics('https://example.com/missing.ics')
        
        assert exc_info.value.status_code == 404
    
    @responses.activate
    def test_fetch_ics_too_short(self, fetcher):
        responses.add(responses.GET, PROXY_URL, json={'contents': 'BEGIN:VCALENDAR'}, status=200)
        
        with pytest.raises(EmptyOrInvalidPayload) as exc_info:
            fetcher.fetch_ics('https://example.com/cal.ics')
        
        assert exc_info.value.message == 'Invalid or empty calendar data received'
        assert exc_info.value.stage == 'payload'
    
    @responses.activate
    def test_fetch_ics_null_contents(self, fetcher):
        responses.add(responses.GET, PROXY_URL, json={'contents': None}, status=200)
        
        with pytest.raises(EmptyOrInvalidPayload):
            fetcher.fetch_ics('https://example.com/cal.ics')


class TestFetchGoogleEvents:
    """Test cases for the Google relay path."""
    
    @responses.activate
    def test_fetch_google_events_success(self, fetcher):
        events = [{'id': 'g1', 'title': 'Offsite', 'start': '2024-01-05T14:00:00',
                   'end': '2024-01-05T15:00:00', 'allDay': False}]
        responses.add(responses.POST, RELAY_URL, json={'events': events}, status=200)
        
        result = fetcher.fetch_google_events('abc@group.calendar.google.com')
        
        assert result == events
        assert json.loads(responses.calls[0].request.body) == {
            'calendarId': 'abc@group.calendar.google.com'
        }
    
    @responses.activate
    def test_fetch_google_events_missing_events_is_empty(self, fetcher):
        responses.add(responses.POST, RELAY_URL, json={}, status=200)
        
        assert fetcher.fetch_google_events('abc') == []
    
    @responses.activate
    def test_relay_error_message_is_surfaced_verbatim(self, fetcher):
        message = 'Google Calendar API error: 404 - {"error": {"code": 404, "message": "Not Found"}}'
        responses.add(responses.POST, RELAY_URL, json={'error': message}, status=404)
        
        with pytest.raises(TransportFailure) as exc_info:
            fetcher.fetch_google_events('missing@example.com')
        
        assert exc_info.value.message == message
        assert str(exc_info.value) == message
        assert exc_info.value.status_code == 404
    
    @responses.activate
    def test_relay_forbidden_without_body(self, fetcher):
        responses.add(responses.POST, RELAY_URL, body='Forbidden', status=403)
        
        with pytest.raises(TransportFailure) as exc_info:
            fetcher.fetch_google_events('abc')
        
        assert exc_info.value.message == GOOGLE_API_DISABLED_MESSAGE
    
    @responses.activate
    def test_relay_timeout(self, fetcher):
        responses.add(responses.POST, RELAY_URL, body=Timeout('Request timed out'))
        
        with pytest.raises(TransportFailure, match='Timed out'):
            fetcher.fetch_google_events('abc')
    
    def test_relay_not_configured(self):
        fetcher = CalendarFetcher(cors_proxy_url=PROXY_URL)
        
        with pytest.raises(TransportFailure, match='not configured'):
            fetcher.fetch_google_events('abc')
