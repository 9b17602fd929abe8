"""Value coercion shared by the write path and the query path.

A literal bound for a property goes through the same steps no matter where it
is used: converter, timezone normalization, format rendering, then
serialization into the DynamoDB tagged-union representation. Applying the
pipeline identically on both paths keeps stored values and filter values
byte-for-byte comparable.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, DecimalException
from enum import Enum
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.types import TypeSerializer

from .errors import TypeMismatch

if TYPE_CHECKING:
    from .model import PropertyMetadata, TimezoneKind

_serializer = TypeSerializer()

_NUMERIC_FORMAT = re.compile(r"^([FfNnDd])([0-9]{0,2})$")
_DATE_TOKENS = re.compile(r"yyyy|yy|MM|dd|HH|hh|mm|ss|ffffff|fff|tt|zzz")

_NUMBER_TYPES = (int, float, Decimal)
_SET_TYPES = (set, frozenset)


def is_number(value: Any) -> bool:
    return isinstance(value, _NUMBER_TYPES) and not isinstance(value, bool)


def normalize_timezone(value: Any, kind: TimezoneKind | None) -> Any:
    if kind is None or kind == "unspecified" or not isinstance(value, datetime):
        return value
    if kind == "utc":
        # Naive values are taken to already be UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return value.astimezone()


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def _format_number(value: Any, fmt: str) -> str:
    match = _NUMERIC_FORMAT.match(fmt)
    if match is None:
        try:
            return format(value, fmt)
        except (ValueError, TypeError) as err:
            raise TypeMismatch(f"invalid numeric format {fmt!r}") from err

    kind = match.group(1).upper()
    digits = match.group(2)
    number = _to_decimal(value)

    if kind == "D":
        if number != number.to_integral_value():
            raise TypeMismatch(f"format {fmt!r} requires an integral value")
        width = int(digits) if digits else 0
        integral = int(number)
        sign = "-" if integral < 0 else ""
        return sign + str(abs(integral)).zfill(width)

    places = int(digits) if digits else 2
    quantum = Decimal(1).scaleb(-places)
    try:
        rounded = number.quantize(quantum, rounding=ROUND_HALF_UP)
    except DecimalException as err:
        raise TypeMismatch(f"value cannot be rendered with format {fmt!r}") from err
    if kind == "N":
        return f"{rounded:,.{places}f}"
    return f"{rounded:.{places}f}"


def _format_temporal(value: date | time, fmt: str) -> str:
    if fmt in {"o", "O"}:
        return value.isoformat()
    if "%" in fmt:
        return value.strftime(fmt)

    def render(match: re.Match[str]) -> str:
        token = match.group(0)
        if token == "yyyy":
            return value.strftime("%Y")
        if token == "yy":
            return value.strftime("%y")
        if token == "MM":
            return value.strftime("%m")
        if token == "dd":
            return value.strftime("%d")
        if token == "HH":
            return value.strftime("%H")
        if token == "hh":
            return value.strftime("%I")
        if token == "mm":
            return value.strftime("%M")
        if token == "ss":
            return value.strftime("%S")
        if token == "ffffff":
            return value.strftime("%f")
        if token == "fff":
            return value.strftime("%f")[:3]
        if token == "tt":
            return value.strftime("%p")
        offset = value.strftime("%z")
        return f"{offset[:3]}:{offset[3:]}" if offset else ""

    return _DATE_TOKENS.sub(render, fmt)


def apply_format(value: Any, fmt: str, *, property_name: str | None = None) -> Any:
    if value is None:
        return None
    if isinstance(value, bool) or isinstance(value, Enum):
        raise TypeMismatch(
            f"{type(value).__name__} values do not support format strings ({fmt!r})", property_name=property_name
        )
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [apply_format(v, fmt, property_name=property_name) for v in value]
    if isinstance(value, _SET_TYPES):
        return {apply_format(v, fmt, property_name=property_name) for v in value}
    try:
        if is_number(value):
            return _format_number(value, fmt)
        if isinstance(value, (date, time)):
            return _format_temporal(value, fmt)
    except TypeMismatch as err:
        raise TypeMismatch(str(err), property_name=property_name) from err
    raise TypeMismatch(f"{type(value).__name__} values do not support format strings", property_name=property_name)


def check_type(prop: PropertyMetadata, value: Any) -> None:
    if value is None:
        if not prop.nullable and not prop.is_set:
            raise TypeMismatch("null is not allowed for a non-nullable property", property_name=prop.name)
        return

    expected = prop.value_type
    if expected is None or prop.converter is not None:
        return

    if expected is bool:
        ok = isinstance(value, bool)
    elif expected in _NUMBER_TYPES:
        ok = is_number(value)
    elif expected is datetime:
        ok = isinstance(value, datetime)
    elif expected is date:
        ok = isinstance(value, date)
    elif expected is bytes or expected is bytearray:
        ok = isinstance(value, (bytes, bytearray))
    elif expected in _SET_TYPES:
        ok = isinstance(value, (*_SET_TYPES, list, tuple))
    elif expected is list:
        ok = isinstance(value, (list, tuple))
    elif expected is dict:
        ok = isinstance(value, Mapping)
    else:
        ok = isinstance(value, expected)

    if not ok:
        raise TypeMismatch(
            f"{type(value).__name__} literal is incompatible with declared type {expected.__name__}",
            property_name=prop.name,
        )


def coerce_value(prop: PropertyMetadata, value: Any) -> Any:
    check_type(prop, value)
    if value is None:
        return None
    if prop.converter is not None:
        value = prop.converter.to_dynamodb(value)
    if prop.is_set and isinstance(value, (list, tuple)):
        value = set(value)
    value = normalize_timezone(value, prop.timezone)
    if isinstance(value, (list, _SET_TYPES)) and prop.timezone is not None:
        value = type(value)(normalize_timezone(v, prop.timezone) for v in value)
    if prop.format:
        value = apply_format(value, prop.format, property_name=prop.name)
    return value


def coerce_element(prop: PropertyMetadata, value: Any) -> Any:
    """Coerce one member of a set or list property the way `coerce_value` coerces the whole."""

    if value is None:
        return None
    if prop.converter is not None:
        wrapped = prop.converter.to_dynamodb({value} if prop.is_set else [value])
        if not isinstance(wrapped, (list, tuple, *_SET_TYPES)) or len(wrapped) != 1:
            raise TypeMismatch("converter must map a single element to a single element", property_name=prop.name)
        value = next(iter(wrapped))
    value = normalize_timezone(value, prop.timezone)
    if prop.format:
        value = apply_format(value, prop.format, property_name=prop.name)
    return value


def _native(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, tuple):
        return [_native(v) for v in value]
    if isinstance(value, list):
        return [_native(v) for v in value]
    if isinstance(value, _SET_TYPES):
        return {_native(v) for v in value}
    if isinstance(value, Mapping):
        return {str(k): _native(v) for k, v in value.items()}
    return value


def to_attribute_value(value: Any, *, property_name: str | None = None) -> dict[str, Any]:
    native = _native(value)
    if isinstance(native, set) and len(native) == 0:
        native = None
    try:
        av = _serializer.serialize(native)
    except (TypeError, DecimalException) as err:
        raise TypeMismatch(
            f"cannot serialize {type(value).__name__} value", property_name=property_name
        ) from err
    for set_kind in ("SS", "NS", "BS"):
        if set_kind in av:
            av[set_kind] = sorted(av[set_kind])
    return av


def serialize_for_property(prop: PropertyMetadata, value: Any) -> tuple[Any, dict[str, Any]]:
    coerced = coerce_value(prop, value)
    return coerced, to_attribute_value(coerced, property_name=prop.name)
