from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from .errors import DiscriminatorMismatchError, InvalidDiscriminatorPattern, ValidationError
from .validation import SecurityValidationError, validate_attribute_name, validate_pattern_text

if TYPE_CHECKING:
    from .placeholders import PlaceholderAllocator

log = logging.getLogger(__name__)

WILDCARD = "*"

type DiscriminatorStrategy = Literal["none", "exact", "starts_with", "ends_with", "contains", "complex"]
type OperationKind = Literal["key_condition", "filter", "write"]
type ConflictPolicy = Literal["warn", "error"]


def classify_pattern(pattern: str) -> DiscriminatorStrategy:
    wildcards = pattern.count(WILDCARD)
    if wildcards == 0:
        return "exact"
    if wildcards == 1:
        if pattern.startswith(WILDCARD) and len(pattern) > 1:
            return "ends_with"
        if pattern.endswith(WILDCARD) and len(pattern) > 1:
            return "starts_with"
        return "complex"
    if wildcards == 2 and pattern.startswith(WILDCARD) and pattern.endswith(WILDCARD) and len(pattern) > 2:
        return "contains"
    return "complex"


def pattern_text(pattern: str, strategy: DiscriminatorStrategy) -> str:
    if strategy == "starts_with":
        return pattern.rstrip(WILDCARD)
    if strategy == "ends_with":
        return pattern.lstrip(WILDCARD)
    if strategy == "contains":
        return pattern.strip(WILDCARD)
    return pattern


def _complex_reason(pattern: str) -> str:
    wildcards = pattern.count(WILDCARD)
    if wildcards == 1:
        return "single wildcard must be at the start or end of the pattern"
    if wildcards == 2:
        return "two wildcards must be at both the start and end of the pattern (e.g. '*text*')"
    return "patterns with more than two wildcards are not supported; use 'USER#*', '*#USER' or '*USER*'"


@dataclass(frozen=True)
class DiscriminatorConfig:
    """Which logical entity a physical item belongs to.

    `value` holds the exact text for the `exact` strategy; `pattern` holds the
    original wildcard pattern for the three pattern strategies.
    """

    attribute: str
    strategy: DiscriminatorStrategy
    value: str | None = None
    pattern: str | None = None

    @classmethod
    def from_settings(
        cls,
        attribute: str,
        *,
        value: str | None = None,
        pattern: str | None = None,
        on_conflict: ConflictPolicy = "warn",
    ) -> DiscriminatorConfig:
        try:
            validate_attribute_name(attribute)
        except SecurityValidationError as err:
            raise ValidationError(f"invalid discriminator attribute: {attribute!r}") from err

        if value and pattern:
            if on_conflict == "error":
                raise InvalidDiscriminatorPattern(
                    pattern=pattern, reason="discriminator value and pattern are mutually exclusive"
                )
            log.warning(
                "discriminator on %s defines both value %r and pattern %r; the pattern is ignored",
                attribute,
                value,
                pattern,
            )
            pattern = None

        if value:
            return cls(attribute=attribute, strategy="exact", value=value)

        if not pattern:
            return cls(attribute=attribute, strategy="none")

        if not pattern.strip():
            raise InvalidDiscriminatorPattern(pattern=pattern, reason="pattern cannot be empty or whitespace")
        try:
            validate_pattern_text(pattern)
        except SecurityValidationError as err:
            raise InvalidDiscriminatorPattern(pattern=pattern, reason=err.detail) from err

        strategy = classify_pattern(pattern)
        if strategy == "complex":
            raise InvalidDiscriminatorPattern(pattern=pattern, reason=_complex_reason(pattern))
        if strategy == "exact":
            return cls(attribute=attribute, strategy="exact", value=pattern)
        return cls(attribute=attribute, strategy=strategy, pattern=pattern)

    @property
    def text(self) -> str:
        if self.strategy == "exact":
            return self.value or ""
        return pattern_text(self.pattern or "", self.strategy)

    def describe(self) -> str:
        if self.strategy == "exact":
            return repr(self.value)
        return repr(self.pattern)


@dataclass(frozen=True)
class DiscriminatorClause:
    key_condition: str | None = None
    filter: str | None = None
    client_side: bool = False


class DiscriminatorMatcher:
    def __init__(self, config: DiscriminatorConfig) -> None:
        if config.strategy == "complex":
            raise InvalidDiscriminatorPattern(pattern=config.pattern or "", reason=_complex_reason(config.pattern or ""))
        if config.strategy in {"starts_with", "ends_with", "contains"} and not config.text:
            raise InvalidDiscriminatorPattern(pattern=config.pattern or "", reason="pattern has no literal text")
        self._config = config

    @property
    def config(self) -> DiscriminatorConfig:
        return self._config

    def matches(self, value: Any) -> bool:
        strategy = self._config.strategy
        if strategy == "none":
            return True
        if not isinstance(value, str):
            return False

        text = self._config.text
        if strategy == "exact":
            return value == text
        if strategy == "starts_with":
            return value.startswith(text)
        if strategy == "ends_with":
            return value.endswith(text)
        return text in value

    def ensure_matches(self, value: Any) -> None:
        if not self.matches(value):
            raise DiscriminatorMismatchError(
                attribute=self._config.attribute,
                expected=self._config.describe(),
                actual=value if isinstance(value, str) or value is None else str(value),
            )

    def write_value(self) -> str | None:
        if self._config.strategy == "exact":
            return self._config.value
        return None

    def contribute(
        self,
        kind: OperationKind,
        allocator: PlaceholderAllocator,
        *,
        partition_attribute: str | None = None,
        sort_attribute: str | None = None,
        sort_constrained: bool = False,
    ) -> DiscriminatorClause:
        strategy = self._config.strategy
        attribute = self._config.attribute
        if strategy == "none" or kind == "write":
            return DiscriminatorClause()

        if kind == "key_condition":
            if attribute == partition_attribute:
                return DiscriminatorClause(client_side=True)
            if attribute == sort_attribute:
                if not sort_constrained and strategy in {"exact", "starts_with"}:
                    return DiscriminatorClause(key_condition=self._render(allocator))
                return DiscriminatorClause(client_side=True)

        # DynamoDB has no suffix function: contains() narrows server-side, matches() decides.
        return DiscriminatorClause(filter=self._render(allocator), client_side=strategy == "ends_with")

    def _render(self, allocator: PlaceholderAllocator) -> str:
        name = allocator.allocate_name(self._config.attribute)
        text = self._config.text
        value = allocator.allocate_value(text, attribute_value={"S": text}, attribute_name=self._config.attribute)
        strategy = self._config.strategy
        if strategy == "exact":
            return f"{name} = {value}"
        if strategy == "starts_with":
            return f"begins_with({name}, {value})"
        return f"contains({name}, {value})"
