from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .errors import ValidationError
from .placeholders import ParameterMetadata, PlaceholderAllocator, referenced_tokens
from .validation import MaxExpressionLength, SecurityValidationError, validate_expression


@dataclass(frozen=True)
class PendingEncryption:
    token: str
    property_name: str
    attribute_name: str
    plaintext: Any
    attribute_value: Any


@dataclass(frozen=True)
class CompiledExpression:
    expression: str
    attribute_names: Mapping[str, str]
    attribute_values: Mapping[str, Any]
    parameters: Mapping[str, ParameterMetadata]
    clauses: tuple[tuple[str, str], ...] = ()
    pending_encryption: tuple[PendingEncryption, ...] = ()

    @classmethod
    def from_allocator(
        cls,
        expression: str,
        allocator: PlaceholderAllocator,
        *,
        clauses: tuple[tuple[str, str], ...] = (),
        max_length: int = MaxExpressionLength,
    ) -> CompiledExpression:
        try:
            validate_expression(expression, max_length=max_length)
        except SecurityValidationError as err:
            raise ValidationError(f"invalid compiled expression: {err.detail}") from err

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        parameters: dict[str, ParameterMetadata] = {}
        for token in referenced_tokens(expression):
            if token in allocator.attribute_names:
                names[token] = allocator.attribute_names[token]
            elif token in allocator.attribute_values:
                values[token] = allocator.attribute_values[token]
                parameters[token] = allocator.parameters[token]

        pending = tuple(
            PendingEncryption(
                token=p.token,
                property_name=p.property_name or "",
                attribute_name=p.attribute_name or "",
                plaintext=p.value,
                attribute_value=p.attribute_value,
            )
            for p in parameters.values()
            if p.requires_encryption
        )
        return cls(
            expression=expression,
            attribute_names=MappingProxyType(names),
            attribute_values=MappingProxyType(values),
            parameters=MappingProxyType(parameters),
            clauses=clauses,
            pending_encryption=pending,
        )

    @property
    def requires_encryption(self) -> bool:
        return bool(self.pending_encryption)


def merge_request(**expressions: CompiledExpression | None) -> dict[str, Any]:
    """Build the expression half of a request from named compiled expressions.

    Keyword names are the request parameter names, e.g.
    `merge_request(KeyConditionExpression=k, FilterExpression=f)`.
    """

    req: dict[str, Any] = {}
    names: dict[str, str] = {}
    values: dict[str, Any] = {}

    for param, compiled in expressions.items():
        if compiled is None:
            continue
        if compiled.pending_encryption:
            tokens = ", ".join(p.token for p in compiled.pending_encryption)
            raise ValidationError(f"{param}: unresolved encrypted values ({tokens})")

        req[param] = compiled.expression
        for k, v in compiled.attribute_names.items():
            existing = names.get(k)
            if existing is not None and existing != v:
                raise ValidationError(f"expression attribute name collision: {k}")
            names[k] = v
        for k, v in compiled.attribute_values.items():
            existing = values.get(k)
            if existing is not None and existing != v:
                raise ValidationError(f"expression attribute value collision: {k}")
            values[k] = v

    if names:
        req["ExpressionAttributeNames"] = names
    if values:
        req["ExpressionAttributeValues"] = values
    return req
