"""Tests for maintenance_tasks.engine.cursor — encoding resume positions."""
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from maintenance_tasks.engine.cursor import encode, decode
from maintenance_tasks.errors import CursorCorruptError


class TestEncode:

    def test_none_stays_none(self):
        assert encode(None) is None

    def test_offset(self):
        assert encode(0) == '0'
        assert encode(42) == '42'

    def test_composite_key_is_compact_json_array(self):
        assert encode((3, 'abc')) == '[3,"abc"]'

    def test_list_encodes_like_tuple(self):
        assert encode([1, 2]) == encode((1, 2))

    def test_non_ascii_kept_verbatim(self):
        assert encode(('café', 1)) == '["café",1]'

    def test_negative_offset_rejected(self):
        with pytest.raises(ValueError):
            encode(-1)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            encode(True)

    def test_dates_and_decimals_are_tagged(self):
        assert encode((date(2024, 5, 1), 7)) == '[{"date":"2024-05-01"},7]'
        assert encode((Decimal('12.50'),)) == '[{"decimal":"12.50"}]'

    def test_datetime_tagged_as_datetime_not_date(self):
        assert encode((datetime(2024, 5, 1, 9, 30),)) == '[{"datetime":"2024-05-01T09:30:00"}]'

    def test_non_scalar_key_value_rejected(self):
        with pytest.raises(TypeError):
            encode((1, object()))

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            encode({'id': 1})


class TestDecode:

    def test_none_stays_none(self):
        assert decode(None) is None

    def test_offset(self):
        assert decode('7') == 7

    def test_key_comes_back_as_tuple(self):
        assert decode('[3,"abc"]') == (3, 'abc')

    @pytest.mark.parametrize('position', [0, 1, 12345, (1,), (5, 'x'), ('a', 1.5, None)])
    def test_round_trip(self, position):
        assert decode(encode(position)) == position

    @pytest.mark.parametrize('position', [
        (date(2024, 2, 29), 3),
        (datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc), 'x'),
        (time(23, 59, 1),),
        (Decimal('0.10'), 1),
        (uuid.UUID('12345678-1234-5678-1234-567812345678'),),
    ])
    def test_typed_keys_round_trip(self, position):
        decoded = decode(encode(position))
        assert decoded == position
        assert [type(v) for v in decoded] == [type(v) for v in position]

    @pytest.mark.parametrize('raw', ['0', '99', '[1,"b"]', '["é",2.5,null]', '[{"date":"2024-05-01"},7]'])
    def test_canonical_strings_are_stable(self, raw):
        assert encode(decode(raw)) == raw

    @pytest.mark.parametrize('raw', [
        'not-json',
        '',
        '-1',
        'true',
        '1.5',
        '"abc"',
        '{"id": 1}',
        '[]',
        '[[1, 2]]',
        '[{"a": 1}]',
        '[{"date": "yesterday"}]',
        '[{"uuid": 5}]',
        '[{"date": "2024-01-01", "time": "10:00"}]',
    ])
    def test_corrupt_input_raises(self, raw):
        with pytest.raises(CursorCorruptError) as exc:
            decode(raw)
        assert exc.value.raw == raw
