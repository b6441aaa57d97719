"""AWS Lambda handler relaying Google Calendar event lists to the browser."""
import json
import logging
import time
from typing import Any, Dict, Optional

from config.logging_config import setup_logging
from config.settings import Settings
from fetcher.google_calendar_api import GoogleApiError, GoogleCalendarApi
from processor.event_normalizer import EventNormalizer

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
    'Access-Control-Allow-Methods': 'POST, OPTIONS'
}


def _response(status_code: int, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    headers = dict(CORS_HEADERS)
    if body is not None:
        headers['Content-Type'] = 'application/json'
    return {
        'statusCode': status_code,
        'headers': headers,
        'body': json.dumps(body) if body is not None else ''
    }


def request_method(event: Dict[str, Any]) -> str:
    method = event.get('httpMethod')
    if not method:
        method = event.get('requestContext', {}).get('http', {}).get('method', 'POST')
    return method.upper()


def request_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get('body')
    if not body:
        return {}
    if isinstance(body, dict):
        return body
    return json.loads(body)


def _format_instant(value, all_day: bool) -> str:
    if all_day:
        return value.date().isoformat()
    # Naive instants are UTC
    return value.isoformat(timespec='seconds') + 'Z'


def serialize_event(event) -> Dict[str, Any]:
    """Render a NormalizedEvent in the relay's wire format."""
    data = {
        'id': event.external_id,
        'title': event.title,
        'start': _format_instant(event.start, event.all_day),
        'end': _format_instant(event.end, event.all_day),
        'allDay': event.all_day
    }
    if event.description:
        data['description'] = event.description
    if event.location:
        data['location'] = event.location
    return data


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Relay a Google Calendar events.list call, keeping the API key server-side.
    
    Args:
        event: API Gateway proxy event with a JSON body `{calendarId}`
        context: Lambda context object
        
    Returns:
        API Gateway response with `{events}` or `{error}` and CORS headers
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    
    # Handle CORS preflight requests
    if request_method(event) == 'OPTIONS':
        return _response(200)
    
    start_time = time.time()
    
    try:
        calendar_id = request_body(event).get('calendarId')
        
        if not calendar_id:
            return _response(400, {'error': 'Calendar ID is required'})
        
        if not settings.google_api_key:
            logger.error("Google Calendar API key not found")
            return _response(500, {'error': 'Google Calendar API key not configured'})
        
        api = GoogleCalendarApi(
            api_key=settings.google_api_key,
            timeout=settings.timeout_seconds,
            lookahead_months=settings.google_lookahead_months,
            max_results=settings.google_max_results
        )
        
        try:
            items = api.list_events(calendar_id)
        except GoogleApiError as e:
            return _response(e.status_code, {'error': str(e)})
        
        events = EventNormalizer().normalize_google_items(items)
        
        logger.info(
            f"Successfully fetched {len(events)} events from Google Calendar",
            extra={
                'calendar_id': calendar_id,
                'duration_seconds': round(time.time() - start_time, 2)
            }
        )
        return _response(200, {'events': [serialize_event(item) for item in events]})
    
    except Exception as e:
        logger.error(
            f"Error in google-calendar relay: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {'error': 'Internal server error', 'details': str(e)})
