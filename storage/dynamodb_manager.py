"""DynamoDB manager for calendar and event storage operations."""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from importer.errors import PersistenceFailure
from processor.models import Calendar, Event

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (ClientError, BotoCoreError)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='seconds')


class DynamoDBManager:
    """Manager for DynamoDB operations on calendars and events."""
    
    BATCH_SIZE = 25  # DynamoDB batch operation limit
    CALENDAR_INDEX = 'calendar-index'
    
    def __init__(
        self,
        calendars_table: str,
        events_table: str,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB resource and table references.
        
        Args:
            calendars_table: Table keyed by user_id / calendar_id
            events_table: Table keyed by user_id / event_id with a
                calendar-index GSI on calendar_id / external_id
            region_name: AWS region (defaults to the environment)
        """
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.calendars_table = self.dynamodb.Table(calendars_table)
        self.events_table = self.dynamodb.Table(events_table)
        logger.info(
            f"Initialized DynamoDBManager for tables: {calendars_table}, {events_table}"
        )
    
    # Calendars
    
    def put_calendar(self, calendar: Calendar) -> None:
        try:
            self.calendars_table.put_item(Item=self._calendar_to_item(calendar))
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to save calendar: {e}") from e
    
    def get_calendar(self, user_id: str, calendar_id: str) -> Optional[Calendar]:
        try:
            response = self.calendars_table.get_item(
                Key={'user_id': user_id, 'calendar_id': calendar_id}
            )
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to load calendar: {e}") from e
        item = response.get('Item')
        return self._item_to_calendar(item) if item else None
    
    def list_calendars(self, user_id: str) -> List[Calendar]:
        """
        List every calendar owned by a user, oldest first.
        
        Args:
            user_id: Owner of the calendars
            
        Returns:
            List of Calendar objects
        """
        items = self._query_all(
            self.calendars_table,
            KeyConditionExpression=Key('user_id').eq(user_id)
        )
        calendars = [self._item_to_calendar(item) for item in items]
        calendars.sort(key=lambda calendar: calendar.created_at)
        return calendars
    
    def find_calendar_by_url(
        self,
        user_id: str,
        url: str,
        external_source: str,
        canonicalize: Optional[Callable[[str], str]] = None
    ) -> Optional[Calendar]:
        """
        Return the user's oldest calendar imported from `url`, if any.
        
        Args:
            user_id: Owner of the calendars
            url: URL the calendar was imported from
            external_source: Provider tag of the calendar
            canonicalize: Maps a URL to the form compared, so spellings of
                the same feed match
                
        Returns:
            Matching Calendar or None
        """
        canonicalize = canonicalize or (lambda value: value)
        target = canonicalize(url)
        for calendar in self.list_calendars(user_id):
            if (
                calendar.external_source == external_source
                and calendar.url
                and canonicalize(calendar.url) == target
            ):
                return calendar
        return None
    
    def set_calendar_visibility(
        self,
        user_id: str,
        calendar_id: str,
        is_visible: bool
    ) -> None:
        self._update_calendar(user_id, calendar_id, 'is_visible', is_visible)
    
    def set_calendar_color(self, user_id: str, calendar_id: str, color_code: str) -> None:
        self._update_calendar(user_id, calendar_id, 'color_code', color_code)
    
    def _update_calendar(
        self,
        user_id: str,
        calendar_id: str,
        attribute: str,
        value: Any
    ) -> None:
        try:
            self.calendars_table.update_item(
                Key={'user_id': user_id, 'calendar_id': calendar_id},
                UpdateExpression='SET #attr = :value, updated_at = :now',
                ConditionExpression=Attr('calendar_id').exists(),
                ExpressionAttributeNames={'#attr': attribute},
                ExpressionAttributeValues={':value': value, ':now': utc_now_iso()}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise PersistenceFailure(f"Calendar not found: {calendar_id}") from e
            raise PersistenceFailure(f"Failed to update calendar: {e}") from e
        except BotoCoreError as e:
            raise PersistenceFailure(f"Failed to update calendar: {e}") from e
    
    def delete_calendar(self, user_id: str, calendar_id: str) -> int:
        """
        Delete a calendar together with all of its events.
        
        Args:
            user_id: Owner of the calendar
            calendar_id: Calendar to delete
            
        Returns:
            Count of deleted events
        """
        events = self.get_calendar_events(user_id, calendar_id)
        deleted = self.batch_delete_events(user_id, [event.id for event in events])
        
        try:
            self.calendars_table.delete_item(
                Key={'user_id': user_id, 'calendar_id': calendar_id}
            )
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to delete calendar: {e}") from e
        
        logger.info(f"Deleted calendar {calendar_id} and {deleted} events")
        return deleted
    
    # Events
    
    def put_event(self, event: Event) -> None:
        try:
            self.events_table.put_item(Item=self._event_to_item(event))
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to save event: {e}") from e
    
    def get_event(self, user_id: str, event_id: str) -> Optional[Event]:
        try:
            response = self.events_table.get_item(
                Key={'user_id': user_id, 'event_id': event_id}
            )
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to load event: {e}") from e
        item = response.get('Item')
        return self._item_to_event(item) if item else None
    
    def delete_event(self, user_id: str, event_id: str) -> None:
        try:
            self.events_table.delete_item(Key={'user_id': user_id, 'event_id': event_id})
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to delete event: {e}") from e
    
    def get_calendar_events(self, user_id: str, calendar_id: str) -> List[Event]:
        """
        Retrieve the events of one calendar through the calendar index.
        
        Args:
            user_id: Owner of the calendar
            calendar_id: Calendar whose events to load
            
        Returns:
            List of Event objects
        """
        items = self._query_all(
            self.events_table,
            IndexName=self.CALENDAR_INDEX,
            KeyConditionExpression=Key('calendar_id').eq(calendar_id)
        )
        return [
            self._item_to_event(item) for item in items
            if item.get('user_id') == user_id
        ]
    
    def query_events(
        self,
        user_id: str,
        range_start: datetime,
        range_end: datetime,
        visible_only: bool = True
    ) -> List[Event]:
        """
        Query a user's events overlapping a time range.
        
        Events of hidden calendars are excluded when `visible_only` is set;
        events without their own color inherit the calendar color.
        
        Args:
            user_id: Owner of the events
            range_start: Start of the range (inclusive)
            range_end: End of the range (inclusive)
            visible_only: Exclude events whose calendar is hidden
            
        Returns:
            List of Event objects sorted by start time
        """
        items = self._query_all(
            self.events_table,
            KeyConditionExpression=Key('user_id').eq(user_id),
            FilterExpression=(
                Attr('start_time').lte(range_end.isoformat(timespec='seconds'))
                & Attr('end_time').gte(range_start.isoformat(timespec='seconds'))
            )
        )
        calendars = {calendar.id: calendar for calendar in self.list_calendars(user_id)}
        
        events = []
        for item in items:
            event = self._item_to_event(item)
            calendar = calendars.get(event.calendar_id) if event.calendar_id else None
            if event.calendar_id and visible_only and (calendar is None or not calendar.is_visible):
                continue
            if calendar and not event.color_code:
                event.color_code = calendar.color_code
            events.append(event)
        
        events.sort(key=lambda event: event.start_time)
        return events
    
    def save_import(
        self,
        calendar: Optional[Calendar],
        events: List[Event],
        previous_calendar: Optional[Calendar] = None,
        previous_events: Optional[Dict[str, Event]] = None
    ) -> None:
        """
        Write a calendar and its events as one unit of work.
        
        Every write is journaled first; on failure the journal is replayed
        backwards, deleting new rows and restoring overwritten ones.
        
        Args:
            calendar: Calendar to write, or None for calendar-less events
            events: Events to insert or overwrite
            previous_calendar: Stored calendar being overwritten, if any
            previous_events: Stored events being overwritten, by event id
            
        Raises:
            PersistenceFailure: If any write fails (after rollback)
        """
        previous_events = previous_events or {}
        journal: List[Tuple[Any, Dict[str, str], Optional[Dict[str, Any]]]] = []
        
        try:
            if calendar is not None:
                before = self._calendar_to_item(previous_calendar) if previous_calendar else None
                journal.append((self.calendars_table, self._calendar_key(calendar), before))
                self.calendars_table.put_item(Item=self._calendar_to_item(calendar))
            
            for i in range(0, len(events), self.BATCH_SIZE):
                batch = events[i:i + self.BATCH_SIZE]
                for event in batch:
                    previous = previous_events.get(event.id)
                    before = self._event_to_item(previous) if previous else None
                    journal.append((self.events_table, self._event_key(event), before))
                self._write_batch([self._event_to_item(event) for event in batch])
        
        except _STORAGE_ERRORS as e:
            logger.error(
                f"Import write failed, rolling back {len(journal)} writes: {e}"
            )
            self._rollback(journal)
            raise PersistenceFailure(f"Failed to save calendar: {e}") from e
        
        logger.info(
            f"Saved {len(events)} events"
            + (f" for calendar {calendar.id}" if calendar else "")
        )
    
    def _write_batch(self, items: List[Dict[str, Any]]) -> None:
        with self.events_table.batch_writer() as writer:
            for item in items:
                writer.put_item(Item=item)
    
    def _rollback(self, journal) -> None:
        for table, key, before in reversed(journal):
            try:
                if before is None:
                    table.delete_item(Key=key)
                else:
                    table.put_item(Item=before)
            except _STORAGE_ERRORS as e:
                logger.error(f"Rollback failed for {key}: {e}")
    
    def batch_delete_events(self, user_id: str, event_ids: List[str]) -> int:
        """
        Delete events from DynamoDB in batches of 25 items.
        
        Args:
            user_id: Owner of the events
            event_ids: List of event IDs to delete
            
        Returns:
            Count of deleted events
        """
        if not event_ids:
            return 0
        
        logger.info(f"Deleting {len(event_ids)} events from DynamoDB")
        deleted = 0
        
        try:
            for i in range(0, len(event_ids), self.BATCH_SIZE):
                batch = event_ids[i:i + self.BATCH_SIZE]
                with self.events_table.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={'user_id': user_id, 'event_id': event_id})
                deleted += len(batch)
        except _STORAGE_ERRORS as e:
            raise PersistenceFailure(f"Failed to delete events: {e}") from e
        
        return deleted
    
    def _query_all(self, table, **kwargs) -> List[Dict[str, Any]]:
        try:
            response = table.query(**kwargs)
            items = response.get('Items', [])
            
            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
        except _STORAGE_ERRORS as e:
            logger.error(f"Error querying {table.name}: {e}")
            raise PersistenceFailure(f"Failed to query {table.name}: {e}") from e
        
        return items
    
    def _calendar_key(self, calendar: Calendar) -> Dict[str, str]:
        return {'user_id': calendar.user_id, 'calendar_id': calendar.id}
    
    def _event_key(self, event: Event) -> Dict[str, str]:
        return {'user_id': event.user_id, 'event_id': event.id}
    
    def _calendar_to_item(self, calendar: Calendar) -> Dict[str, Any]:
        item = {
            'user_id': calendar.user_id,
            'calendar_id': calendar.id,
            'name': calendar.name,
            'color_code': calendar.color_code,
            'url': calendar.url,
            'is_visible': calendar.is_visible,
            'external_source': calendar.external_source,
            'created_at': calendar.created_at,
            'updated_at': calendar.updated_at
        }
        if calendar.external_id:
            item['external_id'] = calendar.external_id
        return item
    
    def _item_to_calendar(self, item: Dict[str, Any]) -> Calendar:
        return Calendar(
            id=item['calendar_id'],
            user_id=item['user_id'],
            name=item['name'],
            color_code=item['color_code'],
            url=item['url'],
            is_visible=bool(item.get('is_visible', True)),
            external_source=item['external_source'],
            external_id=item.get('external_id'),
            created_at=item['created_at'],
            updated_at=item['updated_at']
        )
    
    def _event_to_item(self, event: Event) -> Dict[str, Any]:
        item = {
            'user_id': event.user_id,
            'event_id': event.id,
            'title': event.title,
            'start_time': event.start_time,
            'end_time': event.end_time,
            'all_day': event.all_day,
            'sync_status': event.sync_status
        }
        
        # Optional attributes; GSI key attributes must be absent rather than null
        for name in ('calendar_id', 'external_id', 'description', 'location',
                     'color_code', 'external_source'):
            value = getattr(event, name)
            if value:
                item[name] = value
        
        return item
    
    def _item_to_event(self, item: Dict[str, Any]) -> Event:
        return Event(
            id=item['event_id'],
            user_id=item['user_id'],
            title=item['title'],
            start_time=item['start_time'],
            end_time=item['end_time'],
            all_day=bool(item.get('all_day', False)),
            calendar_id=item.get('calendar_id'),
            external_id=item.get('external_id'),
            description=item.get('description'),
            location=item.get('location'),
            color_code=item.get('color_code'),
            external_source=item.get('external_source'),
            sync_status=item.get('sync_status', 'local')
        )
