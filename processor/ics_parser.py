"""Line-oriented parser for the subset of iCalendar used by calendar import."""
import logging
import re
from typing import Dict, List, Optional

from importer.errors import MalformedCalendarData
from processor.models import RawCalendarProperty, RawEventBlock

logger = logging.getLogger(__name__)

_LINE_BREAK_RE = re.compile(r'\r\n|\r|\n')


def unfold_lines(text: str) -> List[str]:
    """
    Unfold RFC 5545 continuation lines.

    A physical line starting with a single space or tab continues the
    previous logical line; that one leading whitespace character is dropped.

    Args:
        text: Raw ICS document

    Returns:
        List of logical lines
    """
    lines: List[str] = []
    for line in _LINE_BREAK_RE.split(text.lstrip('\ufeff')):
        if line[:1] in (' ', '\t') and lines:
            lines[-1] += line[1:]
        else:
            lines.append(line)
    return lines


def _parse_params(raw_params: List[str]) -> Dict[str, str]:
    params = {}
    for raw in raw_params:
        if '=' not in raw:
            continue
        name, value = raw.split('=', 1)
        params[name.strip().upper()] = value.strip().strip('"')
    return params


def parse_content_line(line: str) -> Optional[RawCalendarProperty]:
    """
    Split a content line into key, params and value.

    Only the first colon separates name from value, so colons inside
    values (URLs, times) are preserved.

    Args:
        line: Unfolded content line

    Returns:
        RawCalendarProperty or None if the line has no colon
    """
    if ':' not in line:
        return None
    name, value = line.split(':', 1)
    parts = name.split(';')
    key = parts[0].strip().upper()
    if not key:
        return None
    return RawCalendarProperty(key=key, params=_parse_params(parts[1:]), value=value)


class IcsParser:
    """Parser turning ICS text into one RawEventBlock per VEVENT."""

    REQUIRED_PROPERTIES = ('SUMMARY', 'DTSTART')

    def parse(self, text: str) -> List[RawEventBlock]:
        """
        Parse ICS text into raw event blocks.

        Blocks lacking SUMMARY or DTSTART are dropped, as are VEVENTs left
        unterminated at the end of input.

        Args:
            text: Raw ICS document

        Returns:
            List of RawEventBlock objects in document order

        Raises:
            MalformedCalendarData: If the text cannot be tokenized as ICS
        """
        lines = [line.rstrip() for line in unfold_lines(text)]
        self._check_tokenizable(lines)

        blocks = []
        current: Optional[RawEventBlock] = None
        nested_depth = 0
        vevent_count = 0
        dropped = 0

        for line in lines:
            if not line:
                continue
            upper = line.upper()

            if upper == 'BEGIN:VEVENT':
                current = RawEventBlock()
                nested_depth = 0
                vevent_count += 1
            elif current is None:
                continue
            elif upper == 'END:VEVENT' and nested_depth == 0:
                if self._is_complete(current):
                    blocks.append(current)
                else:
                    dropped += 1
                    logger.debug(
                        "Dropping VEVENT without SUMMARY or DTSTART",
                        extra={'uid': current.value('UID')}
                    )
                current = None
            elif upper.startswith('BEGIN:'):
                # Nested component such as VALARM
                nested_depth += 1
            elif upper.startswith('END:'):
                nested_depth = max(nested_depth - 1, 0)
            elif nested_depth == 0:
                prop = parse_content_line(line)
                if prop:
                    current.add(prop)

        if current is not None:
            dropped += 1
            logger.warning("Dropping unterminated VEVENT at end of calendar data")

        logger.info(
            f"Parsed {len(blocks)} event blocks out of {vevent_count} VEVENTs "
            f"({dropped} dropped)"
        )
        return blocks

    def _check_tokenizable(self, lines: List[str]) -> None:
        first = next((line for line in lines if line.strip()), None)
        if first is None or not first.strip().upper().startswith('BEGIN:'):
            raise MalformedCalendarData()

    def _is_complete(self, block: RawEventBlock) -> bool:
        return all(key in block for key in self.REQUIRED_PROPERTIES)
