"""
Cursor codec — the opaque resume position stored on a Run.

Two shapes:
    offset         int, index of the next item of a sliceable collection
    composite key  tuple of key values, the ordering key of the last item processed

Offsets encode as a JSON integer and keys as a JSON array, both in compact
canonical form so encode(decode(s)) == s for any string this module produced.
Key values that JSON has no type for (dates, times, decimals, UUIDs) are stored
as one-entry tagged objects, e.g. {"date":"2024-05-01"}.
"""
import json
import uuid
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple, Union

from maintenance_tasks.errors import CursorCorruptError

Position = Union[int, Tuple]

_SCALARS = (str, int, float, bool, type(None))

# datetime before date: every datetime is also a date
_TAGGED = (
    ('datetime', datetime, datetime.isoformat, datetime.fromisoformat),
    ('date', date, date.isoformat, date.fromisoformat),
    ('time', time, time.isoformat, time.fromisoformat),
    ('decimal', Decimal, str, Decimal),
    ('uuid', uuid.UUID, str, uuid.UUID),
)
_PARSERS = {tag: parse for tag, _, _, parse in _TAGGED}


def _encode_key_value(value):
    if isinstance(value, _SCALARS):
        return value
    for tag, cls, dump, _ in _TAGGED:
        if isinstance(value, cls):
            return {tag: dump(value)}
    raise TypeError(f'Unsupported cursor key value type: {type(value).__name__}')


def _decode_key_value(raw: str, value):
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict) and len(value) == 1:
        (tag, text), = value.items()
        if tag in _PARSERS and isinstance(text, str):
            try:
                return _PARSERS[tag](text)
            except (ValueError, InvalidOperation) as e:
                raise CursorCorruptError(raw, f'bad {tag} value {text!r}') from e
    raise CursorCorruptError(raw, 'key values must be scalars or tagged values')


def encode(position: Optional[Position]) -> Optional[str]:
    """Serialize a position. None means 'no progress yet' and stays None."""
    if position is None:
        return None
    if isinstance(position, bool):
        raise TypeError('Cursor offset must be an int, not bool')
    if isinstance(position, int):
        if position < 0:
            raise ValueError(f'Cursor offset must be >= 0, got {position}')
        return json.dumps(position)
    if isinstance(position, (tuple, list)):
        values = [_encode_key_value(value) for value in position]
        return json.dumps(values, separators=(',', ':'), ensure_ascii=False)
    raise TypeError(f'Unsupported cursor position type: {type(position).__name__}')


def decode(raw: Optional[str]) -> Optional[Position]:
    """Parse a stored cursor. Anything unparseable raises CursorCorruptError."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CursorCorruptError(raw, str(e)) from e

    if isinstance(value, bool):
        raise CursorCorruptError(raw, 'boolean is not a position')
    if isinstance(value, int):
        if value < 0:
            raise CursorCorruptError(raw, 'negative offset')
        return value
    if isinstance(value, list):
        if not value:
            raise CursorCorruptError(raw, 'empty key')
        return tuple(_decode_key_value(raw, v) for v in value)
    raise CursorCorruptError(raw, f'unexpected {type(value).__name__}')
