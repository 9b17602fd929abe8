from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal as TypingLiteral

from .coercion import coerce_element, is_number, serialize_for_property, to_attribute_value
from .config import DEFAULT_REDACTION_PLACEHOLDER
from .errors import (
    KeyConditionViolation,
    TranslationError,
    TypeMismatch,
    UnsupportedExpressionShape,
    ValidationError,
)
from .expressions import (
    COMPARISON_OPS,
    Capture,
    Comparison,
    FunctionCall,
    Literal,
    Logical,
    Predicate,
    PropertyRef,
    SizeOf,
)
from .model import EntityMetadata, PropertyMetadata
from .placeholders import PlaceholderAllocator

type TranslationMode = TypingLiteral["filter", "condition", "key_condition"]

MAX_IN_VALUES = 100

_ARITY: dict[str, tuple[int, int]] = {
    "begins_with": (1, 1),
    "contains": (1, 1),
    "between": (2, 2),
    "attribute_exists": (0, 0),
    "attribute_not_exists": (0, 0),
    "in": (1, MAX_IN_VALUES),
}

_SORT_KEY_OPS = frozenset({"=", "<", "<=", ">", ">="})
_SORT_KEY_FUNCTIONS = frozenset({"between", "begins_with"})
_PRESENCE_FUNCTIONS = frozenset({"attribute_exists", "attribute_not_exists"})
_COLLECTION_TYPES = (set, frozenset, list, tuple)
_SCALAR_NON_STRING = (bool, int, float, Decimal)


@dataclass(frozen=True)
class KeyScope:
    partition: PropertyMetadata | None
    sort: PropertyMetadata | None
    index_name: str | None = None


def resolve_key_scope(entity: EntityMetadata, index_name: str | None = None) -> KeyScope:
    if index_name is None:
        return KeyScope(partition=entity.partition_key, sort=entity.sort_key)

    idx = entity.index(index_name)
    if idx is None:
        raise ValidationError(f"unknown index: {index_name}")
    return KeyScope(
        partition=entity.get_property(idx.partition),
        sort=entity.get_property(idx.sort) if idx.sort else None,
        index_name=index_name,
    )


def describe(
    node: Any,
    entity: EntityMetadata | None = None,
    *,
    placeholder: str = DEFAULT_REDACTION_PLACEHOLDER,
) -> str:
    """Render a node as readable pseudo-DSL for error messages.

    Literals bound to a redacted property of `entity` render as `placeholder`.
    """

    def redacted(ref: Any) -> bool:
        if entity is None or not isinstance(ref, PropertyRef):
            return False
        prop = entity.get_property(ref.name)
        return prop is not None and prop.redacted

    def render(n: Any, hide: bool = False) -> str:
        if isinstance(n, PropertyRef):
            return n.name
        if isinstance(n, SizeOf):
            return f"size({n.property.name})"
        if isinstance(n, Literal):
            return placeholder if hide else repr(n.value)
        if isinstance(n, Capture):
            return f"<{n.name}>"
        if isinstance(n, Comparison):
            return f"{render(n.left)} {n.op} {render(n.right, redacted(n.left))}"
        if isinstance(n, FunctionCall):
            hide_args = redacted(n.property)
            args = ", ".join([render(n.property), *(render(a, hide_args) for a in n.args)])
            return f"{n.name}({args})"
        if isinstance(n, Logical):
            if n.op == "NOT":
                return f"NOT ({', '.join(render(c) for c in n.children)})"
            return f" {n.op} ".join(f"({render(c)})" for c in n.children)
        return type(n).__name__

    return render(node)


def _wrap(node: Any, fragment: str) -> str:
    if isinstance(node, Logical) and node.op != "NOT" and len(node.children) > 1:
        return f"({fragment})"
    return fragment


def join_terms(terms: Sequence[tuple[Any, str]]) -> str | None:
    """AND together translated terms, parenthesizing compound ones."""

    if not terms:
        return None
    if len(terms) == 1:
        return terms[0][1]
    return " AND ".join(_wrap(node, fragment) for node, fragment in terms)


class ExpressionTranslator:
    """Renders predicate trees into DSL fragments against one allocator.

    A translator keeps track of which key roles it has constrained, so chained
    `translate` calls on one key condition are validated as a whole.
    """

    def __init__(
        self,
        entity: EntityMetadata,
        allocator: PlaceholderAllocator,
        *,
        mode: TranslationMode = "filter",
        index_name: str | None = None,
        redaction_placeholder: str = DEFAULT_REDACTION_PLACEHOLDER,
    ) -> None:
        if mode not in {"filter", "condition", "key_condition"}:
            raise ValueError(f"unsupported translation mode: {mode}")
        self._entity = entity
        self._allocator = allocator
        self._mode = mode
        self._scope = resolve_key_scope(entity, index_name)
        self._constrained: set[str] = set()
        self._placeholder = redaction_placeholder

    @property
    def mode(self) -> TranslationMode:
        return self._mode

    @property
    def scope(self) -> KeyScope:
        return self._scope

    @property
    def partition_constrained(self) -> bool:
        return "partition" in self._constrained

    @property
    def sort_constrained(self) -> bool:
        return "sort" in self._constrained

    def translate(self, predicate: Predicate) -> str:
        return self._visit(predicate)

    def translate_all(self, predicates: Sequence[Predicate]) -> str | None:
        return join_terms([(p, self._visit(p)) for p in predicates])

    def require_partition_key(self) -> None:
        if self._mode == "key_condition" and not self.partition_constrained:
            partition = self._scope.partition.name if self._scope.partition else "<none>"
            raise KeyConditionViolation(
                "key condition must constrain the partition key with equality", property_name=partition
            )

    def _describe(self, node: Any) -> str:
        return describe(node, self._entity, placeholder=self._placeholder)

    # -- node dispatch --------------------------------------------------

    def _visit(self, node: Any) -> str:
        try:
            if isinstance(node, Logical):
                return self._visit_logical(node)
            if isinstance(node, Comparison):
                return self._visit_comparison(node)
            if isinstance(node, FunctionCall):
                return self._visit_function(node)
        except TranslationError as err:
            if err.fragment is not None:
                raise
            raise type(err)(err.reason, property_name=err.property_name, fragment=self._describe(node)) from err

        if isinstance(node, (Literal, Capture, PropertyRef, SizeOf)):
            raise UnsupportedExpressionShape(
                f"{type(node).__name__} cannot be used as a predicate", fragment=self._describe(node)
            )
        raise UnsupportedExpressionShape(f"unsupported expression node: {type(node).__name__}")

    def _visit_logical(self, node: Logical) -> str:
        if node.op == "NOT":
            if self._mode == "key_condition":
                raise KeyConditionViolation("NOT is not allowed in key conditions")
            if len(node.children) != 1:
                raise UnsupportedExpressionShape("NOT takes exactly one operand")
            return f"NOT ({self._visit(node.children[0])})"

        if node.op not in {"AND", "OR"}:
            raise UnsupportedExpressionShape(f"unsupported logical operator: {node.op}")
        if node.op == "OR" and self._mode == "key_condition":
            raise KeyConditionViolation("OR is not allowed in key conditions")
        if not node.children:
            raise UnsupportedExpressionShape(f"{node.op} requires at least one operand")
        if len(node.children) == 1:
            return self._visit(node.children[0])

        return f" {node.op} ".join(_wrap(child, self._visit(child)) for child in node.children)

    def _visit_comparison(self, node: Comparison) -> str:
        if node.op not in COMPARISON_OPS:
            raise UnsupportedExpressionShape(f"unsupported comparison operator: {node.op}")

        if isinstance(node.left, SizeOf):
            return self._visit_size(node, node.left)
        if not isinstance(node.left, PropertyRef):
            raise UnsupportedExpressionShape("left side of a comparison must be a property")

        prop = self._property(node.left)
        self._reject_encrypted(prop, node.op)
        if self._mode == "key_condition":
            self._check_key_operator(prop, node.op)

        name = self._allocator.allocate_name(prop.attribute_name)
        if isinstance(node.right, PropertyRef):
            if self._mode == "key_condition":
                raise KeyConditionViolation(
                    "key conditions compare against values, not other attributes", property_name=prop.name
                )
            other = self._property(node.right)
            self._reject_encrypted(other, node.op)
            return f"{name} {node.op} {self._allocator.allocate_name(other.attribute_name)}"

        return f"{name} {node.op} {self._value_ref(prop, node.right)}"

    def _visit_size(self, node: Comparison, size: SizeOf) -> str:
        if self._mode == "key_condition":
            raise KeyConditionViolation("size() is not allowed in key conditions", property_name=size.property.name)

        prop = self._property(size.property)
        self._reject_encrypted(prop, "size")
        if isinstance(node.right, PropertyRef):
            raise UnsupportedExpressionShape("size() must be compared against a numeric value", property_name=prop.name)

        value = self._resolve(node.right)
        if not is_number(value):
            raise TypeMismatch(f"size() requires a numeric operand, got {type(value).__name__}", property_name=prop.name)

        name = self._allocator.allocate_name(prop.attribute_name)
        ref = self._allocator.allocate_value(
            value,
            attribute_value=to_attribute_value(value, property_name=prop.name),
            property_name=prop.name,
            attribute_name=prop.attribute_name,
            sensitive=prop.redacted,
        )
        return f"size({name}) {node.op} {ref}"

    def _visit_function(self, node: FunctionCall) -> str:
        fn = node.name.lower()
        bounds = _ARITY.get(fn)
        if bounds is None:
            raise UnsupportedExpressionShape(f"unsupported function: {node.name}")
        if not isinstance(node.property, PropertyRef):
            raise UnsupportedExpressionShape(f"{fn} requires a property as its first argument")

        prop = self._property(node.property)
        lo, hi = bounds
        if not lo <= len(node.args) <= hi:
            expected = str(lo) if lo == hi else f"{lo}-{hi}"
            raise TranslationError(
                f"{fn} expects {expected} argument(s), got {len(node.args)}", property_name=prop.name
            )
        if any(isinstance(a, PropertyRef) for a in node.args):
            raise UnsupportedExpressionShape(f"{fn} arguments must be values", property_name=prop.name)

        if fn not in _PRESENCE_FUNCTIONS:
            self._reject_encrypted(prop, fn)
        if self._mode == "key_condition":
            self._check_key_function(prop, fn)

        name = self._allocator.allocate_name(prop.attribute_name)

        if fn == "attribute_exists":
            return f"attribute_exists({name})"
        if fn == "attribute_not_exists":
            return f"attribute_not_exists({name})"
        if fn == "between":
            low = self._value_ref(prop, node.args[0])
            high = self._value_ref(prop, node.args[1])
            return f"{name} BETWEEN {low} AND {high}"
        if fn == "in":
            refs = ", ".join(self._value_ref(prop, a) for a in node.args)
            return f"{name} IN ({refs})"
        if fn == "begins_with":
            return f"begins_with({name}, {self._prefix_ref(prop, node.args[0])})"
        return f"contains({name}, {self._contains_ref(prop, node.args[0])})"

    # -- key-condition rules --------------------------------------------

    def _role(self, prop: PropertyMetadata) -> str | None:
        if self._scope.partition is not None and prop.name == self._scope.partition.name:
            return "partition"
        if self._scope.sort is not None and prop.name == self._scope.sort.name:
            return "sort"
        return None

    def _claim(self, role: str, prop: PropertyMetadata) -> None:
        if role in self._constrained:
            raise KeyConditionViolation(f"{role} key is constrained more than once", property_name=prop.name)
        self._constrained.add(role)

    def _check_key_operator(self, prop: PropertyMetadata, op: str) -> None:
        role = self._role(prop)
        if role is None:
            raise KeyConditionViolation("only key attributes may appear in a key condition", property_name=prop.name)
        if role == "partition" and op != "=":
            raise KeyConditionViolation(f"partition key supports only '=', got {op!r}", property_name=prop.name)
        if role == "sort" and op not in _SORT_KEY_OPS:
            raise KeyConditionViolation(f"operator {op!r} is not allowed on the sort key", property_name=prop.name)
        self._claim(role, prop)

    def _check_key_function(self, prop: PropertyMetadata, fn: str) -> None:
        role = self._role(prop)
        if role is None:
            raise KeyConditionViolation("only key attributes may appear in a key condition", property_name=prop.name)
        if role == "partition" or fn not in _SORT_KEY_FUNCTIONS:
            raise KeyConditionViolation(f"{fn} is not allowed on the {role} key", property_name=prop.name)
        self._claim(role, prop)

    # -- operands -------------------------------------------------------

    def _property(self, ref: PropertyRef) -> PropertyMetadata:
        prop = self._entity.get_property(ref.name)
        if prop is None:
            raise TranslationError(f"unknown property on {self._entity.name}", property_name=ref.name)
        return prop

    def _reject_encrypted(self, prop: PropertyMetadata, what: str) -> None:
        if prop.is_encrypted:
            raise TranslationError(f"encrypted properties cannot be used with {what}", property_name=prop.name)

    def _resolve(self, operand: Any) -> Any:
        if isinstance(operand, Capture):
            try:
                return operand.resolve()
            except Exception as err:
                raise TranslationError(f"failed to evaluate captured value {operand.name!r}") from err
        if isinstance(operand, Literal):
            return operand.value
        raise UnsupportedExpressionShape(f"unsupported operand: {type(operand).__name__}")

    def _allocate(self, prop: PropertyMetadata, value: Any, attribute_value: Any) -> str:
        return self._allocator.allocate_value(
            value,
            attribute_value=attribute_value,
            property_name=prop.name,
            attribute_name=prop.attribute_name,
            sensitive=prop.redacted,
        )

    def _value_ref(self, prop: PropertyMetadata, operand: Any) -> str:
        coerced, av = serialize_for_property(prop, self._resolve(operand))
        return self._allocate(prop, coerced, av)

    def _prefix_ref(self, prop: PropertyMetadata, operand: Any) -> str:
        value = self._resolve(operand)
        if not isinstance(value, (str, bytes, bytearray)):
            raise TypeMismatch(
                f"begins_with requires a string or binary prefix, got {type(value).__name__}", property_name=prop.name
            )
        if prop.value_type is not None and prop.format is None and prop.converter is None:
            if issubclass(prop.value_type, _SCALAR_NON_STRING) or issubclass(prop.value_type, _COLLECTION_TYPES):
                raise TypeMismatch(
                    f"begins_with is not supported on {prop.value_type.__name__} properties", property_name=prop.name
                )
        return self._allocate(prop, value, to_attribute_value(value, property_name=prop.name))

    def _contains_ref(self, prop: PropertyMetadata, operand: Any) -> str:
        value = self._resolve(operand)
        collection = prop.is_set or (prop.value_type is not None and issubclass(prop.value_type, _COLLECTION_TYPES))
        if collection:
            value = coerce_element(prop, value)
            return self._allocate(prop, value, to_attribute_value(value, property_name=prop.name))

        if not isinstance(value, (str, bytes, bytearray)):
            raise TypeMismatch(
                f"contains on a scalar property requires a string operand, got {type(value).__name__}",
                property_name=prop.name,
            )
        return self._allocate(prop, value, to_attribute_value(value, property_name=prop.name))
