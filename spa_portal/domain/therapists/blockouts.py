"""
Blockout column codec.

The therapists.unavailable_blockouts column has held two encodings over
time: a JSON array of date strings, and a text value containing that array
JSON-encoded. Reading tries the array first, then the text form, and
otherwise yields no dates (the failure is logged, never raised). Writing
always produces the array of YYYY-MM-DD strings.
"""

import json
import logging
from collections.abc import Iterable
from datetime import date

from ...shared.dates import parse_calendar_date

logger = logging.getLogger(__name__)


class BlockoutParseError(ValueError):
    pass


def _decode_sequence(values) -> list[date]:
    days = set()
    for value in values:
        try:
            days.add(parse_calendar_date(value))
        except (ValueError, TypeError) as e:
            raise BlockoutParseError(f"Invalid blockout date {value!r}") from e
    return sorted(days)


def _decode_json_text(text: str) -> list[date]:
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise BlockoutParseError("Blockout text is not valid JSON") from e
    if not isinstance(decoded, list):
        raise BlockoutParseError(f"Blockout JSON holds {type(decoded).__name__}, expected a list")
    return _decode_sequence(decoded)


def parse_blockouts(raw, *, therapist_id: str = "?") -> list[date]:
    """Decode the stored column into sorted unique calendar days"""
    if raw is None or raw == "":
        return []
    try:
        if isinstance(raw, (list, tuple)):
            return _decode_sequence(raw)
        if isinstance(raw, str):
            return _decode_json_text(raw)
        raise BlockoutParseError(f"Unsupported blockout value of type {type(raw).__name__}")
    except BlockoutParseError as e:
        logger.error(f"❌ Failed to parse blockout dates for therapist {therapist_id}: {e}")
        return []


def serialize_blockouts(days: Iterable[date]) -> list[str]:
    return [d.isoformat() for d in sorted(set(days))]


def is_blocked(days: Iterable[date], day: date) -> bool:
    return day in set(days)
