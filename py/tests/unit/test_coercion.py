from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

import pytest

from ddbexpr_py import PropertyMetadata, TypeMismatch
from ddbexpr_py.coercion import apply_format, coerce_element, coerce_value, normalize_timezone, serialize_for_property, to_attribute_value


class Color(Enum):
    RED = 1


def test_numeric_formats_round_half_up() -> None:
    assert apply_format(1234.5678, "F2") == "1234.57"
    assert apply_format(Decimal("2.345"), "F2") == "2.35"
    assert apply_format(2.5, "F0") == "3"
    assert apply_format(1, "F2") == "1.00"
    assert apply_format(1234567.891, "N2") == "1,234,567.89"
    assert apply_format(42, "D5") == "00042"
    assert apply_format(-42, "D5") == "-00042"
    assert apply_format(7, "03d") == "007"


def test_numeric_format_errors() -> None:
    with pytest.raises(TypeMismatch, match="integral"):
        apply_format(1.5, "D2")
    with pytest.raises(TypeMismatch):
        apply_format(True, "F2")
    with pytest.raises(TypeMismatch):
        apply_format(Color.RED, "F2")
    with pytest.raises(TypeMismatch, match="invalid numeric format"):
        apply_format(1, "Q")


def test_date_formats() -> None:
    moment = datetime(2024, 3, 5, 7, 8, 9, 123456, tzinfo=UTC)
    assert apply_format(moment, "yyyy-MM-dd") == "2024-03-05"
    assert apply_format(moment, "yyyy-MM-ddTHH:mm:ss.fff") == "2024-03-05T07:08:09.123"
    assert apply_format(moment, "o") == "2024-03-05T07:08:09.123456+00:00"
    assert apply_format(moment, "%Y/%m/%d") == "2024/03/05"
    assert apply_format(moment, "HH:mm zzz") == "07:08 +00:00"
    assert apply_format(date(2024, 1, 2), "dd.MM.yy") == "02.01.24"


def test_normalize_timezone_kinds() -> None:
    eastern = timezone(timedelta(hours=-5))
    aware = datetime(2024, 1, 2, 23, 30, tzinfo=eastern)

    assert normalize_timezone(aware, "utc") == datetime(2024, 1, 3, 4, 30, tzinfo=UTC)
    assert normalize_timezone(datetime(2024, 1, 2, 10, 0), "utc") == datetime(2024, 1, 2, 10, 0, tzinfo=UTC)
    assert normalize_timezone(aware, "unspecified") is aware
    assert normalize_timezone(aware, None) is aware
    assert normalize_timezone(aware, "local").utcoffset() == aware.astimezone().utcoffset()
    assert normalize_timezone("not a date", "utc") == "not a date"


def test_timezone_runs_before_format() -> None:
    prop = PropertyMetadata(name="day", attribute_name="day", value_type=datetime, format="yyyy-MM-dd", timezone="utc")
    late_evening = datetime(2024, 1, 2, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert coerce_value(prop, late_evening) == "2024-01-03"


def test_check_type_rejects_incompatible_literals() -> None:
    prop = PropertyMetadata(name="active", attribute_name="active", value_type=bool)
    with pytest.raises(TypeMismatch, match="incompatible") as exc:
        coerce_value(prop, "yes")
    assert exc.value.property_name == "active"

    with pytest.raises(TypeMismatch, match="null is not allowed"):
        coerce_value(prop, None)

    nullable = PropertyMetadata(name="note", attribute_name="note", value_type=str, nullable=True)
    assert coerce_value(nullable, None) is None

    number = PropertyMetadata(name="n", attribute_name="n", value_type=int)
    with pytest.raises(TypeMismatch):
        coerce_value(number, True)


def test_converter_runs_first() -> None:
    class Cents:
        def to_dynamodb(self, value: object) -> object:
            return int(Decimal(str(value)) * 100)

        def from_dynamodb(self, value: object) -> object:
            return Decimal(str(value)) / 100

    prop = PropertyMetadata(name="price", attribute_name="price", value_type=Decimal, converter=Cents())
    assert serialize_for_property(prop, Decimal("12.34")) == (1234, {"N": "1234"})


def test_coerce_element_matches_whole_set_coercion() -> None:
    class Upper:
        def to_dynamodb(self, value: object) -> object:
            return {str(v).upper() for v in value}  # type: ignore[attr-defined]

        def from_dynamodb(self, value: object) -> object:
            return value

    codes = PropertyMetadata(name="codes", attribute_name="codes", value_type=set, is_set=True, converter=Upper())
    assert coerce_element(codes, "ab") == "AB"
    assert coerce_value(codes, {"ab"}) == {coerce_element(codes, "ab")}

    eastern = timezone(timedelta(hours=-5))
    seen = PropertyMetadata(
        name="seen", attribute_name="seen", value_type=set, is_set=True, timezone="utc", format="yyyy-MM-dd HH:mm"
    )
    late = datetime(2024, 1, 2, 23, 30, tzinfo=eastern)
    assert coerce_element(seen, late) == "2024-01-03 04:30"
    assert coerce_value(seen, {late}) == {"2024-01-03 04:30"}


def test_coerce_element_rejects_converters_that_change_cardinality() -> None:
    class Split:
        def to_dynamodb(self, value: object) -> object:
            return [c for v in value for c in str(v)]  # type: ignore[attr-defined]

        def from_dynamodb(self, value: object) -> object:
            return value

    letters = PropertyMetadata(name="letters", attribute_name="letters", value_type=list, converter=Split())
    with pytest.raises(TypeMismatch, match="single element"):
        coerce_element(letters, "ab")


def test_to_attribute_value_shapes() -> None:
    assert to_attribute_value(True) == {"BOOL": True}
    assert to_attribute_value(0.1) == {"N": "0.1"}
    assert to_attribute_value({"b", "a"}) == {"SS": ["a", "b"]}
    assert to_attribute_value({3, 1, 2}) == {"NS": ["1", "2", "3"]}
    assert to_attribute_value(set()) == {"NULL": True}
    assert to_attribute_value(Color.RED) == {"S": "RED"}
    assert to_attribute_value(uuid.UUID(int=1)) == {"S": "00000000-0000-0000-0000-000000000001"}
    assert to_attribute_value(("a", 1)) == {"L": [{"S": "a"}, {"N": "1"}]}
    assert to_attribute_value(date(2024, 1, 2)) == {"S": "2024-01-02"}

    with pytest.raises(TypeMismatch, match="cannot serialize"):
        to_attribute_value(object(), property_name="x")


def test_set_property_coerces_lists_to_sets() -> None:
    prop = PropertyMetadata(name="tags", attribute_name="tags", value_type=set, is_set=True)
    assert serialize_for_property(prop, ["b", "a", "b"]) == ({"a", "b"}, {"SS": ["a", "b"]})


def test_formatted_value_is_identical_on_every_path() -> None:
    prop = PropertyMetadata(name="amount", attribute_name="amount", value_type=float, format="F2")
    assert serialize_for_property(prop, 1234.5678) == ("1234.57", {"S": "1234.57"})
