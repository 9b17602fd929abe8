from __future__ import annotations

import re
from collections.abc import Hashable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any

NAME_PREFIX = "#n"
VALUE_PREFIX = ":p"

_TOKEN = re.compile(r"#n[0-9]+|:p[0-9]+")


@dataclass(frozen=True)
class ParameterMetadata:
    token: str
    value: Any
    attribute_value: Any
    property_name: str | None = None
    attribute_name: str | None = None
    requires_encryption: bool = False
    sensitive: bool = False


def _freeze(av: Any) -> Hashable:
    if isinstance(av, dict):
        return tuple(sorted((str(k), _freeze(v)) for k, v in av.items()))
    if isinstance(av, (list, tuple)):
        return tuple(_freeze(v) for v in av)
    if isinstance(av, (bytes, bytearray)):
        return bytes(av)
    if isinstance(av, Decimal):
        return str(av)
    return av


class PlaceholderAllocator:
    """Issues `#n{i}` / `:p{i}` tokens for one compilation session.

    Identical attribute names, and identical values of the same type, reuse the
    token issued first. Values bound for encryption stay distinct per attribute
    and sensitive values never share a token with non-sensitive ones.
    """

    def __init__(self) -> None:
        self._name_tokens: dict[str, str] = {}
        self._value_tokens: dict[Hashable, str] = {}
        self._names: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._parameters: dict[str, ParameterMetadata] = {}

    @property
    def attribute_names(self) -> Mapping[str, str]:
        return MappingProxyType(self._names)

    @property
    def attribute_values(self) -> Mapping[str, Any]:
        return MappingProxyType(self._values)

    @property
    def parameters(self) -> Mapping[str, ParameterMetadata]:
        return MappingProxyType(self._parameters)

    def allocate_name(self, attribute_name: str) -> str:
        token = self._name_tokens.get(attribute_name)
        if token is not None:
            return token
        token = f"{NAME_PREFIX}{len(self._name_tokens)}"
        self._name_tokens[attribute_name] = token
        self._names[token] = attribute_name
        return token

    def allocate_value(
        self,
        value: Any,
        *,
        attribute_value: Any,
        property_name: str | None = None,
        attribute_name: str | None = None,
        requires_encryption: bool = False,
        sensitive: bool = False,
    ) -> str:
        key = (
            type(value).__qualname__,
            _freeze(attribute_value),
            requires_encryption,
            attribute_name if requires_encryption else None,
            sensitive,
        )
        token = self._value_tokens.get(key)
        if token is not None:
            return token

        token = f"{VALUE_PREFIX}{len(self._value_tokens)}"
        self._value_tokens[key] = token
        self._values[token] = attribute_value
        self._parameters[token] = ParameterMetadata(
            token=token,
            value=value,
            attribute_value=attribute_value,
            property_name=property_name,
            attribute_name=attribute_name,
            requires_encryption=requires_encryption,
            sensitive=sensitive,
        )
        return token


def referenced_tokens(expression: str) -> list[str]:
    seen: dict[str, None] = {}
    for match in _TOKEN.finditer(expression):
        seen.setdefault(match.group(0), None)
    return list(seen)
