"""AWS Lambda handler running a calendar import for the UI."""
import json
import logging
import time
from typing import Any, Dict

from config.logging_config import setup_logging
from config.settings import Settings
from fetcher.calendar_fetcher import CalendarFetcher
from importer.calendar_importer import CalendarImporter
from importer.errors import CalendarImportError
from importer.import_engine import DedupPolicy, ImportEngine
from processor.event_normalizer import EventNormalizer
from lambda_function import CORS_HEADERS, request_body, request_method, serialize_event
from storage.dynamodb_manager import DynamoDBManager

ERROR_STATUS = {
    'classify': 400,
    'transport': 502,
    'payload': 422,
    'parse': 422,
    'persist': 500,
    'session': 409
}


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {**CORS_HEADERS, 'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def build_importer(settings: Settings) -> CalendarImporter:
    """
    Wire fetcher, storage and engine from settings.
    
    Raises:
        ValueError: If IMPORT_DEDUP_POLICY names no known policy
    """
    try:
        policy = DedupPolicy(settings.dedup_policy)
    except ValueError as e:
        choices = ', '.join(item.value for item in DedupPolicy)
        raise ValueError(
            f"IMPORT_DEDUP_POLICY must be one of {choices}, got {settings.dedup_policy!r}"
        ) from e
    
    fetcher = CalendarFetcher(
        cors_proxy_url=settings.cors_proxy_url,
        google_relay_url=settings.google_relay_url,
        timeout=settings.timeout_seconds,
        min_ics_length=settings.min_ics_length
    )
    storage = DynamoDBManager(
        calendars_table=settings.calendars_table,
        events_table=settings.events_table
    )
    engine = ImportEngine(
        storage,
        policy=policy,
        default_color=settings.default_calendar_color
    )
    return CalendarImporter(
        fetcher,
        engine,
        normalizer=EventNormalizer(strict_dates=settings.strict_dates)
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Import a calendar from a URL or pasted ICS text.
    
    Args:
        event: API Gateway proxy event with a JSON body
            `{userId, url | icsText, name?, action: import | preview}`
        context: Lambda context object
        
    Returns:
        Response with import statistics, previewed events, or `{error, stage}`
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    
    if request_method(event) == 'OPTIONS':
        return {'statusCode': 200, 'headers': dict(CORS_HEADERS), 'body': ''}
    
    start_time = time.time()
    
    try:
        body = request_body(event)
    except ValueError:
        return _response(400, {'error': 'Request body must be JSON', 'stage': 'request'})
    
    user_id = body.get('userId')
    url = (body.get('url') or '').strip()
    ics_text = body.get('icsText') or ''
    action = body.get('action', 'import')
    
    if not user_id:
        return _response(400, {'error': 'User ID is required', 'stage': 'request'})
    if not url and not ics_text.strip():
        return _response(400, {'error': 'Calendar URL or ICS data is required', 'stage': 'request'})
    if action not in ('import', 'preview'):
        return _response(400, {'error': f"Unknown action: {action}", 'stage': 'request'})
    
    try:
        importer = build_importer(settings)
    except ValueError as e:
        logger.error(f"Invalid import configuration: {e}")
        return _response(500, {'error': f"Invalid configuration: {e}", 'stage': 'config'})
    
    try:
        if url:
            session = importer.import_from_url(user_id, url, name=body.get('name'))
        else:
            session = importer.import_from_text(user_id, ics_text, name=body.get('name'))
        
        if action == 'preview':
            return _response(200, {
                'source': session.source.value,
                'events': [serialize_event(item) for item in session.events]
            })
        
        result = importer.save(session)
        duration = time.time() - start_time
        
        logger.info(
            "Calendar import completed successfully",
            extra={
                'events_added': result.added,
                'events_updated': result.updated,
                'events_skipped': result.skipped,
                'duration_seconds': round(duration, 2)
            }
        )
        
        return _response(200, {
            'message': 'Import completed successfully',
            'calendar_id': result.calendar.id if result.calendar else None,
            'statistics': {
                'events_fetched': len(session.events),
                'events_added': result.added,
                'events_updated': result.updated,
                'events_skipped': result.skipped,
                'duration_seconds': round(duration, 2)
            }
        })
    
    except CalendarImportError as e:
        return _response(ERROR_STATUS.get(e.stage, 500), e.to_dict())
    
    except Exception as e:
        logger.error(
            f"Calendar import failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {'error': 'Internal server error', 'stage': 'import', 'details': str(e)})
