"""Unit tests for DynamoDB manager."""
from datetime import datetime
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from importer.errors import PersistenceFailure
from processor.models import Calendar, Event

USER_ID = 'user-1'


def make_calendar(calendar_id='cal-1', user_id=USER_ID, **overrides):
    data = dict(
        id=calendar_id,
        user_id=user_id,
        name='Work',
        color_code='#3B82F6',
        url='https://example.com/work.ics',
        is_visible=True,
        external_source='ics',
        external_id=None,
        created_at='2024-01-01T00:00:00+00:00',
        updated_at='2024-01-01T00:00:00+00:00'
    )
    data.update(overrides)
    return Calendar(**data)


def make_event(event_id, calendar_id='cal-1', start='2024-01-05T09:00:00',
               end='2024-01-05T10:00:00', user_id=USER_ID, **overrides):
    data = dict(
        id=event_id,
        user_id=user_id,
        title=f'Event {event_id}',
        start_time=start,
        end_time=end,
        calendar_id=calendar_id,
        external_id=f'ext-{event_id}' if calendar_id else None,
        external_source='ics' if calendar_id else None,
        sync_status='synced' if calendar_id else 'local'
    )
    data.update(overrides)
    return Event(**data)


def client_error(operation='BatchWriteItem'):
    return ClientError(
        {'Error': {'Code': 'ProvisionedThroughputExceededException', 'Message': 'Slow down'}},
        operation
    )


def test_put_and_get_calendar(dynamodb_manager):
    calendar = make_calendar(external_id='abc@example.com')
    
    dynamodb_manager.put_calendar(calendar)
    
    assert dynamodb_manager.get_calendar(USER_ID, 'cal-1') == calendar
    assert dynamodb_manager.get_calendar('someone-else', 'cal-1') is None


def test_list_calendars_scoped_to_user(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('cal-1'))
    dynamodb_manager.put_calendar(make_calendar('cal-2', created_at='2024-02-01T00:00:00+00:00'))
    dynamodb_manager.put_calendar(make_calendar('cal-3', user_id='user-2'))
    
    calendars = dynamodb_manager.list_calendars(USER_ID)
    
    assert [calendar.id for calendar in calendars] == ['cal-1', 'cal-2']


def test_find_calendar_by_url(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('cal-1'))
    
    found = dynamodb_manager.find_calendar_by_url(USER_ID, 'https://example.com/work.ics', 'ics')
    
    assert found.id == 'cal-1'
    assert dynamodb_manager.find_calendar_by_url(
        USER_ID, 'https://example.com/work.ics', 'outlook'
    ) is None


def test_find_calendar_by_url_with_canonical_form(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('cal-1'))
    
    found = dynamodb_manager.find_calendar_by_url(
        USER_ID,
        'HTTPS://EXAMPLE.COM/WORK.ICS',
        'ics',
        canonicalize=str.lower
    )
    
    assert found.id == 'cal-1'


def test_set_calendar_visibility_and_color(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('cal-1'))
    
    dynamodb_manager.set_calendar_visibility(USER_ID, 'cal-1', False)
    dynamodb_manager.set_calendar_color(USER_ID, 'cal-1', '#EF4444')
    
    calendar = dynamodb_manager.get_calendar(USER_ID, 'cal-1')
    assert calendar.is_visible is False
    assert calendar.color_code == '#EF4444'
    assert calendar.updated_at != calendar.created_at


def test_update_missing_calendar_fails(dynamodb_manager):
    with pytest.raises(PersistenceFailure, match='Calendar not found'):
        dynamodb_manager.set_calendar_visibility(USER_ID, 'nope', False)


def test_put_get_delete_local_event(dynamodb_manager):
    event = make_event('local-1', calendar_id=None, description='Dentist', location='Main St')
    
    dynamodb_manager.put_event(event)
    
    assert dynamodb_manager.get_event(USER_ID, 'local-1') == event
    
    dynamodb_manager.delete_event(USER_ID, 'local-1')
    
    assert dynamodb_manager.get_event(USER_ID, 'local-1') is None


def test_get_calendar_events_uses_index(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('cal-1'))
    dynamodb_manager.put_event(make_event('e1'))
    dynamodb_manager.put_event(make_event('e2'))
    dynamodb_manager.put_event(make_event('e3', calendar_id='cal-2'))
    dynamodb_manager.put_event(make_event('local', calendar_id=None))
    
    events = dynamodb_manager.get_calendar_events(USER_ID, 'cal-1')
    
    assert sorted(event.id for event in events) == ['e1', 'e2']


def test_delete_calendar_cascades(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('cal-1'))
    for i in range(30):
        dynamodb_manager.put_event(make_event(f'e{i}'))
    dynamodb_manager.put_event(make_event('local', calendar_id=None))
    
    deleted = dynamodb_manager.delete_calendar(USER_ID, 'cal-1')
    
    assert deleted == 30
    assert dynamodb_manager.get_calendar(USER_ID, 'cal-1') is None
    assert dynamodb_manager.get_calendar_events(USER_ID, 'cal-1') == []
    assert dynamodb_manager.get_event(USER_ID, 'local') is not None


def test_query_events_by_range_and_visibility(dynamodb_manager):
    dynamodb_manager.put_calendar(make_calendar('visible', color_code='#10B981'))
    dynamodb_manager.put_calendar(make_calendar('hidden', is_visible=False))
    dynamodb_manager.put_event(make_event('in-range', calendar_id='visible'))
    dynamodb_manager.put_event(make_event('hidden-event', calendar_id='hidden'))
    dynamodb_manager.put_event(make_event(
        'local', calendar_id=None, start='2024-01-05T08:00:00', end='2024-01-05T08:30:00'
    ))
    dynamodb_manager.put_event(make_event(
        'out-of-range', calendar_id='visible', start='2024-02-01T09:00:00',
        end='2024-02-01T10:00:00'
    ))
    
    events = dynamodb_manager.query_events(
        USER_ID, datetime(2024, 1, 5), datetime(2024, 1, 6)
    )
    
    assert [event.id for event in events] == ['local', 'in-range']
    assert events[1].color_code == '#10B981'
    
    everything = dynamodb_manager.query_events(
        USER_ID, datetime(2024, 1, 5), datetime(2024, 1, 6), visible_only=False
    )
    assert {event.id for event in everything} == {'local', 'in-range', 'hidden-event'}


def test_save_import_writes_calendar_and_events(dynamodb_manager):
    calendar = make_calendar('cal-1')
    events = [make_event(f'e{i}') for i in range(30)]
    
    dynamodb_manager.save_import(calendar, events)
    
    assert dynamodb_manager.get_calendar(USER_ID, 'cal-1') is not None
    assert len(dynamodb_manager.get_calendar_events(USER_ID, 'cal-1')) == 30


def test_save_import_rolls_back_on_failure(dynamodb_manager):
    """A failing event batch leaves neither calendar nor events behind."""
    calendar = make_calendar('cal-1')
    events = [make_event(f'e{i}') for i in range(30)]
    original_write = dynamodb_manager._write_batch
    calls = []
    
    def failing_second_batch(items):
        calls.append(len(items))
        if len(calls) == 2:
            raise client_error()
        original_write(items)
    
    with patch.object(dynamodb_manager, '_write_batch', side_effect=failing_second_batch):
        with pytest.raises(PersistenceFailure, match='Failed to save calendar'):
            dynamodb_manager.save_import(calendar, events)
    
    assert calls == [25, 5]
    assert dynamodb_manager.get_calendar(USER_ID, 'cal-1') is None
    assert dynamodb_manager.get_calendar_events(USER_ID, 'cal-1') == []


def test_save_import_rollback_restores_overwritten_rows(dynamodb_manager):
    calendar = make_calendar('cal-1')
    original = make_event('e1', title='Original title')
    dynamodb_manager.save_import(calendar, [original])
    
    changed = make_event('e1', title='Changed title')
    
    with patch.object(dynamodb_manager, '_write_batch', side_effect=client_error()):
        with pytest.raises(PersistenceFailure):
            dynamodb_manager.save_import(
                calendar,
                [changed],
                previous_calendar=calendar,
                previous_events={'e1': original}
            )
    
    assert dynamodb_manager.get_event(USER_ID, 'e1').title == 'Original title'
    assert dynamodb_manager.get_calendar(USER_ID, 'cal-1') == calendar
