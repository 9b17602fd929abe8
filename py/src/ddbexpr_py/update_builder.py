from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from .coercion import check_type, coerce_element, is_number, serialize_for_property, to_attribute_value
from .compiled import CompiledExpression, PendingEncryption, merge_request
from .config import CompilerOptions
from .encryption import EncryptionContext, FieldEncryptor, resolve_pending_encryption
from .errors import MissingEncryptionProvider, ValidationError
from .expressions import Predicate
from .model import EntityMetadata, PropertyMetadata
from .placeholders import PlaceholderAllocator
from .redaction import log_compiled
from .translator import ExpressionTranslator

log = logging.getLogger(__name__)

CLAUSE_ORDER = ("SET", "REMOVE", "ADD", "DELETE")


@dataclass(frozen=True)
class CompiledUpdate:
    update: CompiledExpression
    condition: CompiledExpression | None = None

    @property
    def pending_encryption(self) -> tuple[PendingEncryption, ...]:
        return self.update.pending_encryption

    def to_request(self) -> dict[str, Any]:
        return merge_request(UpdateExpression=self.update, ConditionExpression=self.condition)


class UpdateBuilder:
    """Collects update operations for one item and renders the UpdateExpression.

    Values for encrypted properties are left pending; `build` resolves them
    through the configured encryptor, `compile` leaves that to the caller.
    """

    def __init__(
        self,
        entity: EntityMetadata,
        *,
        encryptor: FieldEncryptor | None = None,
        options: CompilerOptions | None = None,
    ) -> None:
        self._entity = entity
        self._encryptor = encryptor
        self._options = options or CompilerOptions()
        self._updates: list[tuple[str, tuple[Any, ...]]] = []
        self._conditions: list[Predicate] = []

    def set(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("SET", (name, value)))
        return self

    def set_if_not_exists(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("SET_IF_NOT_EXISTS", (name, value)))
        return self

    def set_arithmetic(self, name: str, op: str, value: Any) -> UpdateBuilder:
        if op not in {"+", "-"}:
            raise ValidationError(f"unsupported arithmetic operator: {op}")
        self._updates.append(("SET_ARITHMETIC", (name, op, value)))
        return self

    def add(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("ADD", (name, value)))
        return self

    def increment(self, name: str, amount: int = 1) -> UpdateBuilder:
        return self.add(name, amount)

    def decrement(self, name: str, amount: int = 1) -> UpdateBuilder:
        return self.add(name, -amount)

    def remove(self, name: str) -> UpdateBuilder:
        self._updates.append(("REMOVE", (name,)))
        return self

    def delete(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("DELETE", (name, value)))
        return self

    def append_to_list(self, name: str, values: Iterable[Any]) -> UpdateBuilder:
        self._updates.append(("APPEND_LIST", (name, list(values))))
        return self

    def prepend_to_list(self, name: str, values: Iterable[Any]) -> UpdateBuilder:
        self._updates.append(("PREPEND_LIST", (name, list(values))))
        return self

    def remove_from_list_at(self, name: str, index: int) -> UpdateBuilder:
        self._updates.append(("REMOVE_LIST_AT", (name, index)))
        return self

    def set_list_element(self, name: str, index: int, value: Any) -> UpdateBuilder:
        self._updates.append(("SET_LIST_ELEMENT", (name, index, value)))
        return self

    def where(self, *predicates: Predicate) -> UpdateBuilder:
        self._conditions.extend(predicates)
        return self

    def compile(self) -> CompiledUpdate:
        if not self._updates:
            raise ValidationError("no updates provided")

        allocator = PlaceholderAllocator()
        clauses: dict[str, list[str]] = {kind: [] for kind in CLAUSE_ORDER}
        paths: set[tuple[str, int | None]] = set()

        for kind, args in self._updates:
            prop = self._target(str(args[0]))
            index = args[1] if kind in {"REMOVE_LIST_AT", "SET_LIST_ELEMENT"} else None
            _claim_path(paths, prop.name, index)
            clause, fragment = self._render(kind, args, prop, allocator)
            clauses[clause].append(fragment)

        rendered = tuple((kind, ", ".join(parts)) for kind, parts in clauses.items() if parts)
        expression = " ".join(f"{kind} {body}" for kind, body in rendered)
        update = CompiledExpression.from_allocator(
            expression, allocator, clauses=rendered, max_length=self._options.max_expression_length
        )
        if update.pending_encryption and self._encryptor is None:
            raise MissingEncryptionProvider(property_name=update.pending_encryption[0].property_name)

        condition: CompiledExpression | None = None
        if self._conditions:
            translator = ExpressionTranslator(
                self._entity, allocator, mode="condition", redaction_placeholder=self._options.redaction_placeholder
            )
            cond_expr = translator.translate_all(self._conditions)
            if cond_expr is not None:
                condition = CompiledExpression.from_allocator(
                    cond_expr, allocator, max_length=self._options.max_expression_length
                )

        if self._options.log_expressions:
            placeholder = self._options.redaction_placeholder
            log_compiled("update", update, placeholder=placeholder)
            log_compiled("update condition", condition, placeholder=placeholder)
        return CompiledUpdate(update=update, condition=condition)

    def build(self, context: EncryptionContext | None = None) -> CompiledUpdate:
        compiled = self.compile()
        if not compiled.pending_encryption:
            return compiled
        ctx = context or EncryptionContext(table_name=self._entity.table_name, entity_name=self._entity.name)
        log.debug("encrypting %d pending update value(s)", len(compiled.pending_encryption))
        return replace(compiled, update=resolve_pending_encryption(compiled.update, self._encryptor, ctx))

    def to_request(self, context: EncryptionContext | None = None) -> dict[str, Any]:
        return self.build(context).to_request()

    def _target(self, name: str) -> PropertyMetadata:
        prop = self._entity.get_property(name)
        if prop is None:
            raise ValidationError(f"unknown property: {name}")
        if prop.is_key:
            raise ValidationError(f"cannot update key property: {name}")
        return prop

    def _render(
        self,
        kind: str,
        args: tuple[Any, ...],
        prop: PropertyMetadata,
        allocator: PlaceholderAllocator,
    ) -> tuple[str, str]:
        ref = allocator.allocate_name(prop.attribute_name)

        if kind == "SET":
            return "SET", f"{ref} = {self._value_ref(allocator, prop, args[1])}"

        if kind == "SET_IF_NOT_EXISTS":
            return "SET", f"{ref} = if_not_exists({ref}, {self._value_ref(allocator, prop, args[1])})"

        if kind == "REMOVE":
            return "REMOVE", ref

        _reject_encrypted(prop, kind)

        if kind == "SET_ARITHMETIC":
            _, op, value = args
            _require_plain_number(prop, value, "arithmetic")
            return "SET", f"{ref} = {ref} {op} {_raw_ref(allocator, prop, value)}"

        if kind == "ADD":
            value = args[1]
            if prop.is_set:
                members = _non_empty_set(prop, value, "ADD")
                return "ADD", f"{ref} {self._value_ref(allocator, prop, members)}"
            _require_plain_number(prop, value, "ADD")
            return "ADD", f"{ref} {_raw_ref(allocator, prop, value)}"

        if kind == "DELETE":
            if not prop.is_set:
                raise ValidationError(f"DELETE requires a set property: {prop.name}")
            members = _non_empty_set(prop, args[1], "DELETE")
            return "DELETE", f"{ref} {self._value_ref(allocator, prop, members)}"

        _require_list(prop)

        if kind in {"APPEND_LIST", "PREPEND_LIST"}:
            values = [_element(prop, v) for v in args[1]]
            vref = _raw_ref(allocator, prop, values)
            if kind == "APPEND_LIST":
                return "SET", f"{ref} = list_append({ref}, {vref})"
            return "SET", f"{ref} = list_append({vref}, {ref})"

        if kind == "REMOVE_LIST_AT":
            index = _list_index(args[1])
            return "REMOVE", f"{ref}[{index}]"

        if kind == "SET_LIST_ELEMENT":
            _, index, value = args
            return "SET", f"{ref}[{_list_index(index)}] = {_raw_ref(allocator, prop, _element(prop, value))}"

        raise ValidationError(f"unsupported update operation: {kind}")

    def _value_ref(self, allocator: PlaceholderAllocator, prop: PropertyMetadata, value: Any) -> str:
        coerced, av = serialize_for_property(prop, value)
        return allocator.allocate_value(
            coerced,
            attribute_value=av,
            property_name=prop.name,
            attribute_name=prop.attribute_name,
            requires_encryption=prop.is_encrypted,
            sensitive=prop.redacted,
        )


def _claim_path(paths: set[tuple[str, int | None]], name: str, index: int | None) -> None:
    overlaps = (name, index) in paths or (name, None) in paths
    if index is None:
        overlaps = overlaps or any(n == name for n, _ in paths)
    if overlaps:
        raise ValidationError(f"property is updated more than once: {name}")
    paths.add((name, index))


def _reject_encrypted(prop: PropertyMetadata, kind: str) -> None:
    if prop.is_encrypted:
        op = {"SET_ARITHMETIC": "arithmetic"}.get(kind, kind if kind in {"ADD", "DELETE"} else "list")
        raise ValidationError(f"encrypted properties cannot be used in {op} operations: {prop.name}")


def _require_plain_number(prop: PropertyMetadata, value: Any, what: str) -> None:
    if prop.is_set or prop.format:
        raise ValidationError(f"{what} requires an unformatted numeric property: {prop.name}")
    if not is_number(value):
        raise ValidationError(f"{what} requires a numeric value for {prop.name}")
    check_type(prop, value)


def _require_list(prop: PropertyMetadata) -> None:
    if prop.is_set or (prop.value_type is not None and prop.value_type not in (list, tuple)):
        raise ValidationError(f"list operations require a list property: {prop.name}")


def _list_index(index: Any) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValidationError("list index must be a non-negative integer")
    return index


def _as_set(value: Any) -> set[Any]:
    if isinstance(value, (set, frozenset)):
        return set(value)
    if isinstance(value, (list, tuple)):
        return set(value)
    return {value}


def _non_empty_set(prop: PropertyMetadata, value: Any, kind: str) -> set[Any]:
    members = _as_set(value)
    if not members:
        raise ValidationError(f"{kind} requires a non-empty set: {prop.name}")
    return members


def _element(prop: PropertyMetadata, value: Any) -> Any:
    return coerce_element(prop, value)


def _raw_ref(allocator: PlaceholderAllocator, prop: PropertyMetadata, value: Any) -> str:
    return allocator.allocate_value(
        value,
        attribute_value=to_attribute_value(value, property_name=prop.name),
        property_name=prop.name,
        attribute_name=prop.attribute_name,
        sensitive=prop.redacted,
    )
