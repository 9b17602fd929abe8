from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal as TypingLiteral

from boto3.dynamodb.types import TypeDeserializer

from .compiled import CompiledExpression, merge_request
from .config import CompilerOptions
from .discriminator import DiscriminatorMatcher
from .errors import ValidationError
from .expressions import Predicate
from .model import EntityMetadata
from .placeholders import PlaceholderAllocator
from .redaction import log_compiled
from .translator import ExpressionTranslator, TranslationMode, join_terms

_deserializer = TypeDeserializer()


@dataclass(frozen=True)
class CompiledQuery:
    operation: TypingLiteral["query", "scan"]
    table_name: str
    index_name: str | None
    key_condition: CompiledExpression | None
    filter: CompiledExpression | None
    client_side: DiscriminatorMatcher | None = None

    def to_request(self) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.table_name}
        if self.index_name is not None:
            req["IndexName"] = self.index_name
        req.update(merge_request(KeyConditionExpression=self.key_condition, FilterExpression=self.filter))
        return req

    def filter_items(self, items: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Drop wire-format items whose discriminator the store could not check."""

        if self.client_side is None:
            return list(items)
        attribute = self.client_side.config.attribute
        out: list[Mapping[str, Any]] = []
        for item in items:
            raw = item.get(attribute)
            value = _deserializer.deserialize(raw) if raw is not None else None
            if self.client_side.matches(value):
                out.append(item)
        return out


class _ReadBuilder:
    def __init__(
        self,
        entity: EntityMetadata,
        *,
        index_name: str | None = None,
        options: CompilerOptions | None = None,
        apply_discriminator: bool = True,
    ) -> None:
        if index_name is not None and entity.index(index_name) is None:
            raise ValidationError(f"unknown index: {index_name}")
        self._entity = entity
        self._index_name = index_name
        self._options = options or CompilerOptions()
        self._apply_discriminator = apply_discriminator
        self._filters: list[Predicate] = []

    def _matcher(self) -> DiscriminatorMatcher | None:
        if not self._apply_discriminator:
            return None
        config = self._entity.discriminator_for(self._index_name)
        if config is None or config.strategy == "none":
            return None
        return DiscriminatorMatcher(config)

    def _translator(self, allocator: PlaceholderAllocator, mode: TranslationMode) -> ExpressionTranslator:
        return ExpressionTranslator(
            self._entity,
            allocator,
            mode=mode,
            index_name=self._index_name,
            redaction_placeholder=self._options.redaction_placeholder,
        )

    def _compile(self, expression: str | None, allocator: PlaceholderAllocator) -> CompiledExpression | None:
        if expression is None:
            return None
        return CompiledExpression.from_allocator(
            expression, allocator, max_length=self._options.max_expression_length
        )

    def _log(self, compiled: CompiledQuery) -> None:
        if not self._options.log_expressions:
            return
        placeholder = self._options.redaction_placeholder
        log_compiled(f"{compiled.operation} key condition", compiled.key_condition, placeholder=placeholder)
        log_compiled(f"{compiled.operation} filter", compiled.filter, placeholder=placeholder)


class QueryBuilder(_ReadBuilder):
    """Key condition plus filters for one Query against a table or index."""

    def __init__(
        self,
        entity: EntityMetadata,
        *,
        index_name: str | None = None,
        options: CompilerOptions | None = None,
        apply_discriminator: bool = True,
    ) -> None:
        super().__init__(entity, index_name=index_name, options=options, apply_discriminator=apply_discriminator)
        self._key: list[Predicate] = []

    def where(self, *predicates: Predicate) -> QueryBuilder:
        self._key.extend(predicates)
        return self

    def filter(self, *predicates: Predicate) -> QueryBuilder:
        self._filters.extend(predicates)
        return self

    def build(self) -> CompiledQuery:
        allocator = PlaceholderAllocator()
        keys = self._translator(allocator, "key_condition")
        key_terms: list[tuple[Any, str]] = [(p, keys.translate(p)) for p in self._key]
        keys.require_partition_key()

        filters = self._translator(allocator, "filter")
        filter_terms: list[tuple[Any, str]] = [(p, filters.translate(p)) for p in self._filters]

        matcher = self._matcher()
        client_side: DiscriminatorMatcher | None = None
        if matcher is not None:
            scope = keys.scope
            clause = matcher.contribute(
                "key_condition",
                allocator,
                partition_attribute=scope.partition.attribute_name if scope.partition else None,
                sort_attribute=scope.sort.attribute_name if scope.sort else None,
                sort_constrained=keys.sort_constrained,
            )
            if clause.key_condition is not None:
                key_terms.append((None, clause.key_condition))
            if clause.filter is not None:
                filter_terms.append((None, clause.filter))
            if clause.client_side:
                client_side = matcher

        key_expr = join_terms(key_terms)
        filter_expr = join_terms(filter_terms)

        compiled = CompiledQuery(
            operation="query",
            table_name=self._entity.table_name,
            index_name=self._index_name,
            key_condition=self._compile(key_expr, allocator),
            filter=self._compile(filter_expr, allocator),
            client_side=client_side,
        )
        self._log(compiled)
        return compiled

    def to_request(self) -> dict[str, Any]:
        return self.build().to_request()


class ScanBuilder(_ReadBuilder):
    def filter(self, *predicates: Predicate) -> ScanBuilder:
        self._filters.extend(predicates)
        return self

    def build(self) -> CompiledQuery:
        allocator = PlaceholderAllocator()
        filters = self._translator(allocator, "filter")
        terms: list[tuple[Any, str]] = [(p, filters.translate(p)) for p in self._filters]

        client_side: DiscriminatorMatcher | None = None
        matcher = self._matcher()
        if matcher is not None:
            clause = matcher.contribute("filter", allocator)
            if clause.filter is not None:
                terms.append((None, clause.filter))
            if clause.client_side:
                client_side = matcher

        compiled = CompiledQuery(
            operation="scan",
            table_name=self._entity.table_name,
            index_name=self._index_name,
            key_condition=None,
            filter=self._compile(join_terms(terms), allocator),
            client_side=client_side,
        )
        self._log(compiled)
        return compiled

    def to_request(self) -> dict[str, Any]:
        return self.build().to_request()


class ConditionBuilder:
    """Condition expression for a put or delete."""

    def __init__(self, entity: EntityMetadata, *, options: CompilerOptions | None = None) -> None:
        self._entity = entity
        self._options = options or CompilerOptions()
        self._predicates: list[Predicate] = []

    def where(self, *predicates: Predicate) -> ConditionBuilder:
        self._predicates.extend(predicates)
        return self

    def build(self) -> CompiledExpression:
        allocator = PlaceholderAllocator()
        translator = ExpressionTranslator(
            self._entity, allocator, mode="condition", redaction_placeholder=self._options.redaction_placeholder
        )
        expression = translator.translate_all(self._predicates)
        if expression is None:
            raise ValidationError("no conditions provided")
        compiled = CompiledExpression.from_allocator(
            expression, allocator, max_length=self._options.max_expression_length
        )
        if self._options.log_expressions:
            log_compiled("condition", compiled, placeholder=self._options.redaction_placeholder)
        return compiled

    def to_request(self) -> dict[str, Any]:
        return merge_request(ConditionExpression=self.build())

