from __future__ import annotations

import re
from collections.abc import Sequence

MaxAttributeNameLength = 255
MaxPropertyNameLength = 255
MaxExpressionLength = 4096  # DynamoDB expression string limit
MaxPatternLength = 1024


class SecurityValidationError(Exception):
    def __init__(self, *, type: str, detail: str) -> None:
        super().__init__(f"security validation failed: {type}")
        self.type = type
        self.detail = detail


_PROPERTY_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_RESOURCE_NAME = re.compile(r"^[a-zA-Z0-9_.-]+$")
_PLACEHOLDER_TOKEN = re.compile(r"^(#n|:p)[0-9]+$")


def validate_property_name(name: str) -> None:
    if not name:
        raise SecurityValidationError(type="InvalidProperty", detail="property name cannot be empty")
    if len(name) > MaxPropertyNameLength:
        raise SecurityValidationError(type="InvalidProperty", detail="property name exceeds maximum length")
    if _PROPERTY_NAME.match(name) is None:
        raise SecurityValidationError(
            type="InvalidProperty",
            detail="property name must start with letter or underscore and contain only alphanumeric characters and underscores",
        )


def validate_attribute_name(name: str) -> None:
    # Attribute names always travel as #n placeholders, so any printable text is legal.
    if not name:
        raise SecurityValidationError(type="InvalidAttribute", detail="attribute name cannot be empty")
    if len(name.encode("utf-8")) > MaxAttributeNameLength:
        raise SecurityValidationError(type="InvalidAttribute", detail="attribute name exceeds maximum length")
    if _contains_control_characters(name):
        raise SecurityValidationError(type="InvalidAttribute", detail="attribute name contains control characters")
    if _PLACEHOLDER_TOKEN.match(name) is not None:
        raise SecurityValidationError(type="InvalidAttribute", detail="attribute name collides with placeholder syntax")


def validate_table_name(name: str) -> None:
    if len(name) < 3 or len(name) > 255:
        raise SecurityValidationError(type="InvalidTableName", detail="table name length invalid")

    if _RESOURCE_NAME.match(name) is None:
        raise SecurityValidationError(type="InvalidTableName", detail="table name contains invalid characters")


def validate_index_name(name: str) -> None:
    if not name:
        return

    if len(name) < 3 or len(name) > 255:
        raise SecurityValidationError(type="InvalidIndexName", detail="index name length invalid")

    if _RESOURCE_NAME.match(name) is None:
        raise SecurityValidationError(type="InvalidIndexName", detail="index name contains invalid characters")


def validate_pattern_text(pattern: str) -> None:
    if len(pattern) > MaxPatternLength:
        raise SecurityValidationError(type="InvalidPattern", detail="pattern exceeds maximum length")
    if _contains_any_substring(pattern, ("\0", "\n", "\r")):
        raise SecurityValidationError(type="InvalidPattern", detail="pattern contains invalid control characters")


def validate_expression(expression: str, *, max_length: int = MaxExpressionLength) -> None:
    if len(expression.encode("utf-8")) > max_length:
        raise SecurityValidationError(type="InvalidExpression", detail="expression exceeds maximum length")

    if _contains_control_characters(expression):
        raise SecurityValidationError(type="InvalidExpression", detail="expression contains control characters")


def _contains_control_characters(value: str) -> bool:
    for ch in value:
        code = ord(ch)
        if 0 <= code <= 0x1F or code == 0x7F:
            return True
    return False


def _contains_any_substring(haystack: str, needles: Sequence[str]) -> bool:
    return any(n in haystack for n in needles)
