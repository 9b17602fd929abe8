from __future__ import annotations

import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

type ComparisonOp = typing.Literal["=", "<>", "<", "<=", ">", ">="]
type LogicalOp = typing.Literal["AND", "OR", "NOT"]

COMPARISON_OPS: frozenset[str] = frozenset({"=", "<>", "<", "<=", ">", ">="})


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Capture:
    """A value resolved when the tree is compiled rather than when it is built."""

    name: str
    resolve: Callable[[], Any]


@dataclass(frozen=True)
class PropertyRef:
    name: str

    def eq(self, value: Any) -> Comparison:
        return Comparison(left=self, op="=", right=_operand(value))

    def ne(self, value: Any) -> Comparison:
        return Comparison(left=self, op="<>", right=_operand(value))

    def lt(self, value: Any) -> Comparison:
        return Comparison(left=self, op="<", right=_operand(value))

    def lte(self, value: Any) -> Comparison:
        return Comparison(left=self, op="<=", right=_operand(value))

    def gt(self, value: Any) -> Comparison:
        return Comparison(left=self, op=">", right=_operand(value))

    def gte(self, value: Any) -> Comparison:
        return Comparison(left=self, op=">=", right=_operand(value))

    def between(self, low: Any, high: Any) -> FunctionCall:
        return FunctionCall(name="between", property=self, args=(_operand(low), _operand(high)))

    def begins_with(self, prefix: Any) -> FunctionCall:
        return FunctionCall(name="begins_with", property=self, args=(_operand(prefix),))

    def contains(self, value: Any) -> FunctionCall:
        return FunctionCall(name="contains", property=self, args=(_operand(value),))

    def is_in(self, *values: Any) -> FunctionCall:
        return FunctionCall(name="in", property=self, args=tuple(_operand(v) for v in values))

    def exists(self) -> FunctionCall:
        return FunctionCall(name="attribute_exists", property=self)

    def not_exists(self) -> FunctionCall:
        return FunctionCall(name="attribute_not_exists", property=self)


@dataclass(frozen=True)
class SizeOf:
    property: PropertyRef

    def eq(self, value: Any) -> Comparison:
        return Comparison(left=self, op="=", right=_operand(value))

    def ne(self, value: Any) -> Comparison:
        return Comparison(left=self, op="<>", right=_operand(value))

    def lt(self, value: Any) -> Comparison:
        return Comparison(left=self, op="<", right=_operand(value))

    def lte(self, value: Any) -> Comparison:
        return Comparison(left=self, op="<=", right=_operand(value))

    def gt(self, value: Any) -> Comparison:
        return Comparison(left=self, op=">", right=_operand(value))

    def gte(self, value: Any) -> Comparison:
        return Comparison(left=self, op=">=", right=_operand(value))


type Operand = Literal | Capture | PropertyRef


@dataclass(frozen=True)
class Comparison:
    left: PropertyRef | SizeOf
    op: str
    right: Operand


@dataclass(frozen=True)
class FunctionCall:
    name: str
    property: PropertyRef
    args: tuple[Operand, ...] = ()


@dataclass(frozen=True)
class Logical:
    op: LogicalOp
    children: tuple[Predicate, ...]


type Predicate = Comparison | FunctionCall | Logical


def _operand(value: Any) -> Operand:
    if isinstance(value, (Literal, Capture, PropertyRef)):
        return value
    return Literal(value)


def prop(name: str) -> PropertyRef:
    return PropertyRef(name=name)


def size(name: str | PropertyRef) -> SizeOf:
    return SizeOf(property=name if isinstance(name, PropertyRef) else PropertyRef(name=name))


def literal(value: Any) -> Literal:
    return Literal(value)


def capture(name: str, resolve: Callable[[], Any]) -> Capture:
    return Capture(name=name, resolve=resolve)


def and_(*predicates: Predicate) -> Logical:
    return Logical(op="AND", children=tuple(predicates))


def or_(*predicates: Predicate) -> Logical:
    return Logical(op="OR", children=tuple(predicates))


def not_(predicate: Predicate) -> Logical:
    return Logical(op="NOT", children=(predicate,))
