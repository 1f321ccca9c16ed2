r"""
Typed task parameters and their validation rules.

A task declares parameters as class-level Attribute descriptors:

    class BackfillTask(Task):
        post_ids = Attribute('string', presence=True, format=r'\A\d+(,\d+)*\Z')
        limit = Attribute('integer', default=100, inclusion=Range(1, 1000))

Values are cast on assignment. Inclusion sets are a tagged variant:
    FixedSet([...])          literal options (the only kind offered as choices)
    Range(low, high)         inclusive, either bound may be None (open)
    Computed(fn | 'method')  resolved lazily at validation time
"""
import inspect
import re
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from maintenance_tasks.errors import InclusionUndefinedError


# ── Casting ──────────────────────────────────────────────────────────────────

_TRUE = {'1', 'true', 't', 'yes', 'y', 'on'}
_FALSE = {'0', 'false', 'f', 'no', 'n', 'off'}


def _cast_integer(value):
    if isinstance(value, bool):
        raise ValueError('boolean is not an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f'{value} is not a whole number')
        return int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError(f'{value} is not a whole number')
        return int(value)
    return int(str(value).strip())


def _cast_float(value):
    if isinstance(value, bool):
        raise ValueError('boolean is not a float')
    return float(value)


def _cast_decimal(value):
    if isinstance(value, bool):
        raise ValueError('boolean is not a decimal')
    try:
        # str() first so 12.34 becomes Decimal('12.34'), not the binary float expansion
        return value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f'{value!r} is not a decimal') from e


def _cast_boolean(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f'{value!r} is not a boolean')


def _cast_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def _cast_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).strip())


def _cast_time(value):
    if isinstance(value, time):
        return value
    if isinstance(value, datetime):
        return value.time()
    return time.fromisoformat(str(value).strip())


CASTERS = {
    'string': str,
    'integer': _cast_integer,
    'big_integer': _cast_integer,
    'float': _cast_float,
    'decimal': _cast_decimal,
    'boolean': _cast_boolean,
    'date': _cast_date,
    'datetime': _cast_datetime,
    'time': _cast_time,
}


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def cast(type_name: str, value):
    """Cast a raw value to an attribute type. Blank input is None for non-string types."""
    if value is None:
        return None
    if type_name != 'string' and is_blank(value):
        return None
    return CASTERS[type_name](value)


def serialize(value):
    """JSON-safe form of a cast value; cast() accepts it back."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime, time)):
        return value.isoformat()
    return value


def call_with_optional_task(fn, task):
    """Call fn() or fn(task), depending on how many arguments it takes."""
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return fn()
    positional = [p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)]
    if positional and positional[0].default is inspect.Parameter.empty:
        return fn(task)
    return fn()


# ── Inclusion rules ──────────────────────────────────────────────────────────

class InclusionRule:
    """Base for the inclusion variants."""

    def includes(self, value, task) -> bool:
        raise NotImplementedError

    def choices(self) -> Optional[List[Any]]:
        return None


class FixedSet(InclusionRule):
    def __init__(self, values):
        self.values = values

    def includes(self, value, task) -> bool:
        return value in self.values

    def choices(self):
        # Stepped ranges and other lazy sequences validate but are not offered as options
        if isinstance(self.values, (list, tuple, set, frozenset)):
            return list(self.values)
        return None

    def __repr__(self):
        return f'FixedSet({self.values!r})'


class Range(InclusionRule):
    def __init__(self, low=None, high=None):
        self.low = low
        self.high = high

    def includes(self, value, task) -> bool:
        try:
            if self.low is not None and value < self.low:
                return False
            if self.high is not None and value > self.high:
                return False
        except TypeError:
            return False
        return True

    def __repr__(self):
        return f'Range({self.low!r}, {self.high!r})'


class Computed(InclusionRule):
    """Inclusion set produced at validation time by a callable or a task method name."""

    def __init__(self, source):
        self.source = source

    def resolve(self, field, task):
        source = self.source
        if isinstance(source, str):
            source = getattr(task, source, None)
            if source is None:
                raise InclusionUndefinedError(field, self.source)
        values = call_with_optional_task(source, task) if callable(source) else source
        try:
            iter(values)
        except TypeError:
            raise InclusionUndefinedError(field, self.source)
        return values

    def includes(self, value, task) -> bool:
        raise TypeError('Computed.includes needs a field name; use Attribute.validate')

    def __repr__(self):
        return f'Computed({self.source!r})'


def as_rule(inclusion) -> Optional[InclusionRule]:
    """Normalize the shorthand forms accepted by Attribute(inclusion=...)."""
    if inclusion is None or isinstance(inclusion, InclusionRule):
        return inclusion
    if isinstance(inclusion, (list, tuple, set, frozenset, range)):
        return FixedSet(inclusion)
    if callable(inclusion) or isinstance(inclusion, str):
        return Computed(inclusion)
    raise TypeError(f'Unsupported inclusion rule: {inclusion!r}')


# ── Attribute descriptor ─────────────────────────────────────────────────────

class Attribute:
    """A typed, validated task parameter."""

    def __init__(
        self,
        type: str = 'string',
        default=None,
        presence: bool = False,
        format: str = None,
        inclusion=None,
        allow_nil: bool = False,
        allow_blank: bool = False,
    ):
        if type not in CASTERS:
            raise ValueError(f"Unknown attribute type '{type}'. Available: {sorted(CASTERS)}")
        self.type = type
        self.default = cast(type, default)
        self.presence = presence
        self.format = re.compile(format) if isinstance(format, str) else format
        self.inclusion = as_rule(inclusion)
        self.allow_nil = allow_nil
        self.allow_blank = allow_blank
        self.name = None

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance.__dict__.get(self.name, self.default)

    def __set__(self, instance, value):
        errors = instance.__dict__.setdefault('_cast_errors', {})
        try:
            instance.__dict__[self.name] = cast(self.type, value)
            errors.pop(self.name, None)
        except (TypeError, ValueError):
            instance.__dict__[self.name] = value
            errors[self.name] = [f'is not a valid {self.type.replace("_", " ")}']

    def _skip(self, value) -> bool:
        return (value is None and self.allow_nil) or (is_blank(value) and self.allow_blank)

    def validate(self, task) -> List[str]:
        """Messages for this attribute's current value on task."""
        value = self.__get__(task)
        messages = []
        if self.presence and is_blank(value):
            messages.append("can't be blank")

        if self.format is not None and not self._skip(value):
            if value is None or not self.format.search(str(value)):
                messages.append('is invalid')

        if self.inclusion is not None and not self._skip(value):
            if isinstance(self.inclusion, Computed):
                included = value in self.inclusion.resolve(self.name, task)
            else:
                included = self.inclusion.includes(value, task)
            if not included:
                messages.append('is not included in the list')
        return messages

    def choices(self) -> Optional[List[Any]]:
        return self.inclusion.choices() if self.inclusion is not None else None

    def describe(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type,
            'default': serialize(self.default),
            'required': self.presence,
            'choices': self.choices(),
        }
