from __future__ import annotations

import dataclasses
import types
from collections.abc import Mapping, Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Literal, Protocol, Union, cast, get_args, get_origin, get_type_hints, overload

from .discriminator import DiscriminatorConfig
from .validation import (
    SecurityValidationError,
    validate_attribute_name,
    validate_index_name,
    validate_property_name,
    validate_table_name,
)

type TimezoneKind = Literal["utc", "local", "unspecified"]

TIMEZONE_KINDS: frozenset[str] = frozenset({"utc", "local", "unspecified"})


class ModelDefinitionError(ValueError):
    pass


class AttributeConverter(Protocol):
    def to_dynamodb(self, value: Any) -> Any: ...

    def from_dynamodb(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class PropertyMetadata:
    name: str
    attribute_name: str
    value_type: type | None = None
    nullable: bool = False
    format: str | None = None
    timezone: TimezoneKind | None = None
    is_partition_key: bool = False
    is_sort_key: bool = False
    index_names: tuple[str, ...] = ()
    is_sensitive: bool = False
    is_encrypted: bool = False
    is_set: bool = False
    converter: AttributeConverter | None = None

    @property
    def is_key(self) -> bool:
        return self.is_partition_key or self.is_sort_key

    @property
    def is_part_of_index(self) -> bool:
        return bool(self.index_names)

    @property
    def redacted(self) -> bool:
        return self.is_sensitive or self.is_encrypted


@dataclass(frozen=True)
class IndexSpec:
    name: str
    type: str
    partition: str
    sort: str | None = None
    discriminator: DiscriminatorConfig | None = None


@dataclass(frozen=True)
class IndexMetadata:
    name: str
    type: str
    partition: str
    sort: str | None = None
    discriminator: DiscriminatorConfig | None = None


def gsi(
    name: str,
    *,
    partition: str,
    sort: str | None = None,
    discriminator: DiscriminatorConfig | None = None,
) -> IndexSpec:
    return IndexSpec(name=name, type="GSI", partition=partition, sort=sort, discriminator=discriminator)


def lsi(name: str, *, sort: str, discriminator: DiscriminatorConfig | None = None) -> IndexSpec:
    return IndexSpec(name=name, type="LSI", partition="__TABLE_PK__", sort=sort, discriminator=discriminator)


@overload
def expr_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    format: str | None = None,
    timezone: TimezoneKind | None = None,
    sensitive: bool = False,
    encrypted: bool = False,
    set_: bool = False,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
) -> Any: ...


@overload
def expr_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    format: str | None = None,
    timezone: TimezoneKind | None = None,
    sensitive: bool = False,
    encrypted: bool = False,
    set_: bool = False,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any,
) -> Any: ...


@overload
def expr_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    format: str | None = None,
    timezone: TimezoneKind | None = None,
    sensitive: bool = False,
    encrypted: bool = False,
    set_: bool = False,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default_factory: Any,
) -> Any: ...


def expr_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    format: str | None = None,
    timezone: TimezoneKind | None = None,
    sensitive: bool = False,
    encrypted: bool = False,
    set_: bool = False,
    converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("expr_field: cannot set both default and default_factory")

    opts: dict[str, Any] = {
        "format": format,
        "timezone": timezone,
        "sensitive": sensitive,
        "encrypted": encrypted,
        "set": set_,
        "converter": converter,
        "ignore": ignore,
    }
    if name is not None:
        opts["name"] = name
    if roles is not None:
        opts["roles"] = list(roles)

    return field(default=default, default_factory=default_factory, metadata={"ddbexpr": opts})


def _unwrap_annotation(annotation: Any) -> tuple[type | None, bool]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = get_args(annotation)
        non_none = [a for a in args if a is not type(None)]
        nullable = len(non_none) != len(args)
        if len(non_none) != 1:
            return None, nullable
        inner, _ = _unwrap_annotation(non_none[0])
        return inner, nullable
    if origin is not None:
        return cast(type, origin) if isinstance(origin, type) else None, False
    if isinstance(annotation, type) and annotation is not Any:
        return annotation, False
    return None, False


@dataclass(frozen=True)
class EntityMetadata:
    """Static description of one entity type.

    Built once (explicitly, from a dataclass or from a document) and shared
    read-only by every compilation for that entity.
    """

    name: str
    table_name: str
    properties: tuple[PropertyMetadata, ...]
    indexes: tuple[IndexMetadata, ...] = ()
    discriminator: DiscriminatorConfig | None = None
    _by_name: Mapping[str, PropertyMetadata] = field(init=False, repr=False, compare=False)
    _by_attribute: Mapping[str, PropertyMetadata] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            validate_table_name(self.table_name)
        except SecurityValidationError as err:
            raise ModelDefinitionError(f"invalid table name: {self.table_name!r}") from err

        by_name: dict[str, PropertyMetadata] = {}
        by_attribute: dict[str, PropertyMetadata] = {}
        for prop in self.properties:
            try:
                validate_property_name(prop.name)
                validate_attribute_name(prop.attribute_name)
            except SecurityValidationError as err:
                raise ModelDefinitionError(f"invalid property {prop.name!r}: {err.detail}") from err
            if prop.name in by_name:
                raise ModelDefinitionError(f"duplicate property name: {prop.name}")
            if prop.attribute_name in by_attribute:
                raise ModelDefinitionError(f"duplicate attribute name: {prop.attribute_name}")
            if prop.timezone is not None and prop.timezone not in TIMEZONE_KINDS:
                raise ModelDefinitionError(f"unsupported timezone kind for {prop.name}: {prop.timezone!r}")
            if prop.is_encrypted and prop.is_key:
                raise ModelDefinitionError(f"encrypted property cannot be a key: {prop.name}")
            by_name[prop.name] = prop
            by_attribute[prop.attribute_name] = prop

        pk = [p.name for p in self.properties if p.is_partition_key]
        sk = [p.name for p in self.properties if p.is_sort_key]
        if len(pk) > 1:
            raise ModelDefinitionError(f"entity must define at most one partition key (found {len(pk)})")
        if len(sk) > 1:
            raise ModelDefinitionError(f"entity must define at most one sort key (found {len(sk)})")

        memberships: dict[str, list[str]] = {}
        seen_indexes: set[str] = set()
        for idx in self.indexes:
            try:
                validate_index_name(idx.name)
            except SecurityValidationError as err:
                raise ModelDefinitionError(f"invalid index name: {idx.name!r}") from err
            if idx.name in seen_indexes:
                raise ModelDefinitionError(f"duplicate index name: {idx.name}")
            seen_indexes.add(idx.name)
            for role, prop_name in (("partition", idx.partition), ("sort", idx.sort)):
                if prop_name is None:
                    continue
                prop = by_name.get(prop_name)
                if prop is None:
                    raise ModelDefinitionError(f"index {idx.name}: unknown {role} property: {prop_name}")
                if prop.is_encrypted:
                    raise ModelDefinitionError(
                        f"index {idx.name}: encrypted {role} property is not allowed: {prop_name}"
                    )
                memberships.setdefault(prop_name, []).append(idx.name)

        if memberships:
            resolved = tuple(
                dataclasses.replace(p, index_names=tuple(dict.fromkeys((*p.index_names, *memberships[p.name]))))
                if p.name in memberships
                else p
                for p in self.properties
            )
            object.__setattr__(self, "properties", resolved)
            by_name = {p.name: p for p in resolved}
            by_attribute = {p.attribute_name: p for p in resolved}

        object.__setattr__(self, "_by_name", by_name)
        object.__setattr__(self, "_by_attribute", by_attribute)

    @property
    def partition_key(self) -> PropertyMetadata | None:
        for prop in self.properties:
            if prop.is_partition_key:
                return prop
        return None

    @property
    def sort_key(self) -> PropertyMetadata | None:
        for prop in self.properties:
            if prop.is_sort_key:
                return prop
        return None

    def get_property(self, name: str) -> PropertyMetadata | None:
        return self._by_name.get(name)

    def property_for_attribute(self, attribute_name: str) -> PropertyMetadata | None:
        return self._by_attribute.get(attribute_name)

    def index(self, name: str) -> IndexMetadata | None:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        return None

    def discriminator_for(self, index_name: str | None = None) -> DiscriminatorConfig | None:
        """An index with its own discriminator uses it; otherwise the entity-level one applies."""
        if index_name is None:
            return self.discriminator
        idx = self.index(index_name)
        if idx is None:
            raise ModelDefinitionError(f"unknown index: {index_name}")
        return idx.discriminator or self.discriminator

    def sensitive_attributes(self) -> frozenset[str]:
        return frozenset(p.attribute_name for p in self.properties if p.redacted)

    @classmethod
    def from_dataclass(
        cls,
        model_type: type[Any],
        *,
        table_name: str,
        name: str | None = None,
        indexes: Sequence[IndexSpec] = (),
        discriminator: DiscriminatorConfig | None = None,
    ) -> EntityMetadata:
        if not is_dataclass(model_type):
            raise ModelDefinitionError("model_type must be a dataclass")

        try:
            hints = get_type_hints(model_type)
        except Exception as err:
            raise ModelDefinitionError(f"cannot resolve annotations for {model_type.__name__}") from err

        properties: list[PropertyMetadata] = []
        for dc_field in fields(model_type):
            opts = cast(dict[str, Any], dc_field.metadata.get("ddbexpr", {}))
            if bool(opts.get("ignore", False)):
                continue

            roles = tuple(cast(list[str], opts.get("roles", [])))
            unknown_roles = set(roles).difference({"pk", "sk"})
            if unknown_roles:
                raise ModelDefinitionError(f"unsupported roles for {dc_field.name}: {sorted(unknown_roles)}")

            value_type, nullable = _unwrap_annotation(hints.get(dc_field.name, Any))
            properties.append(
                PropertyMetadata(
                    name=dc_field.name,
                    attribute_name=cast(str, opts.get("name", dc_field.name)),
                    value_type=value_type,
                    nullable=nullable,
                    format=cast(str | None, opts.get("format")),
                    timezone=cast(TimezoneKind | None, opts.get("timezone")),
                    is_partition_key="pk" in roles,
                    is_sort_key="sk" in roles,
                    is_sensitive=bool(opts.get("sensitive", False)),
                    is_encrypted=bool(opts.get("encrypted", False)),
                    is_set=bool(opts.get("set", False)) or value_type in (set, frozenset),
                    converter=cast(AttributeConverter | None, opts.get("converter")),
                )
            )

        by_name = {p.name: p for p in properties}
        pk = next((p for p in properties if p.is_partition_key), None)

        resolved_indexes: list[IndexMetadata] = []
        for spec in indexes:
            if spec.type not in {"GSI", "LSI"}:
                raise ModelDefinitionError(f"unsupported index type: {spec.type}")

            partition = spec.partition
            if spec.type == "LSI":
                if pk is None:
                    raise ModelDefinitionError(f"index {spec.name}: LSI requires a table partition key")
                if partition == "__TABLE_PK__":
                    partition = pk.name
                if partition != pk.name:
                    raise ModelDefinitionError(
                        f"index {spec.name}: LSI partition must be the table partition key ({pk.name})"
                    )
            if partition not in by_name:
                raise ModelDefinitionError(f"index {spec.name}: unknown partition property: {partition}")

            resolved_indexes.append(
                IndexMetadata(
                    name=spec.name,
                    type=spec.type,
                    partition=partition,
                    sort=spec.sort,
                    discriminator=spec.discriminator,
                )
            )

        return cls(
            name=name or model_type.__name__,
            table_name=table_name,
            properties=tuple(properties),
            indexes=tuple(resolved_indexes),
            discriminator=discriminator,
        )
