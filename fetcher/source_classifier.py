"""Classify user-supplied calendar URLs by provider."""
import logging
import re
from typing import Optional
from urllib.parse import quote, unquote, urlparse

from processor.models import ClassifiedSource, ExternalCalendarSource

logger = logging.getLogger(__name__)

GOOGLE_HOST = 'calendar.google.com'
OUTLOOK_HOSTS = ('outlook.live.com', 'outlook.office365.com')
ICLOUD_HOST = 'icloud.com'

GOOGLE_ICS_TEMPLATE = 'https://calendar.google.com/calendar/ical/{}/public/basic.ics'

_SRC_PARAM_RE = re.compile(r'(?:src=|cid=)([^&#]+)')
_ICAL_PATH_RE = re.compile(r'/calendar/ical/([^/?#]+)')


def detect_source(url: str) -> ExternalCalendarSource:
    """
    Determine the provider a URL points at.

    Args:
        url: Free-form URL or identifier typed by the user

    Returns:
        ExternalCalendarSource tag, `ics` when nothing matches
    """
    if GOOGLE_HOST in url:
        return ExternalCalendarSource.GOOGLE
    if any(host in url for host in OUTLOOK_HOSTS):
        return ExternalCalendarSource.OUTLOOK
    if ICLOUD_HOST in url:
        return ExternalCalendarSource.ICLOUD
    return ExternalCalendarSource.ICS


def rewrite_webcal(url: str) -> str:
    """Rewrite a webcal:// scheme to https://."""
    if url.lower().startswith('webcal://'):
        return 'https://' + url[len('webcal://'):]
    return url


def extract_google_calendar_id(url: str) -> Optional[str]:
    """
    Extract the calendar identifier from a Google Calendar URL.

    Tries the `src=`/`cid=` query value, then the `/calendar/ical/<id>/`
    path, then the last path segment after a `calendar` component. A
    value with no URL structure is taken as a bare calendar id.

    Args:
        url: Google Calendar URL or bare calendar id

    Returns:
        Decoded calendar id or None if nothing could be derived
    """
    match = _SRC_PARAM_RE.search(url)
    if match:
        return unquote(match.group(1))

    match = _ICAL_PATH_RE.search(url)
    if match:
        return unquote(match.group(1))

    if '://' not in url and '/' not in url:
        return url or None

    path_parts = urlparse(url).path.split('/')
    if 'calendar' in path_parts:
        index = path_parts.index('calendar')
        remaining = [part for part in path_parts[index + 1:] if part]
        if remaining:
            return unquote(remaining[-1])

    return None


def _outlook_ics_url(url: str) -> str:
    if url.endswith('.ics'):
        return url
    separator = '&' if '?' in url else '?'
    return f"{url}{separator}format=ics"


def classify_source(url: str) -> ClassifiedSource:
    """
    Classify a calendar URL and derive its canonical fetch URL.

    Classification never fails: unrecognized input degrades to the
    generic ICS path with `recognized=False`.

    Args:
        url: Free-form URL or identifier typed by the user

    Returns:
        ClassifiedSource describing provider, fetch URL and identifier
    """
    original_url = url.strip()
    canonical = rewrite_webcal(original_url)
    source = detect_source(canonical)

    if source == ExternalCalendarSource.GOOGLE:
        calendar_id = extract_google_calendar_id(canonical)
        fetch_url = (
            GOOGLE_ICS_TEMPLATE.format(quote(calendar_id, safe='@'))
            if calendar_id else canonical
        )
        return ClassifiedSource(
            source=source,
            original_url=original_url,
            fetch_url=fetch_url,
            calendar_id=calendar_id
        )

    if source == ExternalCalendarSource.OUTLOOK:
        return ClassifiedSource(
            source=source,
            original_url=original_url,
            fetch_url=_outlook_ics_url(canonical)
        )

    if source == ExternalCalendarSource.ICLOUD:
        return ClassifiedSource(
            source=source,
            original_url=original_url,
            fetch_url=canonical
        )

    logger.info(
        "URL matched no known provider, using generic ICS handling",
        extra={'url': original_url}
    )
    return ClassifiedSource(
        source=source,
        original_url=original_url,
        fetch_url=canonical,
        recognized=False
    )
