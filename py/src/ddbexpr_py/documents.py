from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, cast

import yaml

from .discriminator import DiscriminatorConfig
from .errors import ValidationError
from .model import EntityMetadata, IndexMetadata, ModelDefinitionError, PropertyMetadata

DOCUMENT_VERSION = "0.1"

_TYPES: dict[str, type] = {
    "S": str,
    "N": Decimal,
    "B": bytes,
    "BOOL": bool,
    "SS": set,
    "NS": set,
    "BS": set,
    "L": list,
    "M": dict,
    "datetime": datetime,
    "date": date,
}
_SET_TAGS = frozenset({"SS", "NS", "BS"})


def parse_entity_document(raw: str) -> dict[str, Any]:
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError("invalid entity YAML/JSON") from err

    if not isinstance(parsed, dict):
        raise ValidationError("entity document must be a map/object")

    _assert_json_compatible(parsed, path="document")

    version = parsed.get("entity_version")
    if version != DOCUMENT_VERSION:
        raise ValidationError(f"unsupported entity_version: {version!r}")

    entities = parsed.get("entities")
    if not isinstance(entities, list) or len(entities) == 0:
        raise ValidationError("entity document must include entities[]")

    return parsed


def get_entity_document(doc: Mapping[str, Any], name: str) -> dict[str, Any]:
    entities = doc.get("entities")
    if not isinstance(entities, list):
        raise ValidationError("entity document missing entities[]")
    for entity in entities:
        if isinstance(entity, dict) and entity.get("name") == name:
            return cast(dict[str, Any], entity)
    raise ValidationError(f"entity not found: {name}")


def discriminator_from_document(raw: Any, *, where: str) -> DiscriminatorConfig | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError(f"{where}: discriminator must be a map")
    attribute = raw.get("attribute")
    if not isinstance(attribute, str) or not attribute:
        raise ValidationError(f"{where}: discriminator missing attribute")
    on_conflict = raw.get("on_conflict", "warn")
    if on_conflict not in {"warn", "error"}:
        raise ValidationError(f"{where}: discriminator on_conflict must be 'warn' or 'error'")
    return DiscriminatorConfig.from_settings(
        attribute,
        value=_optional_str(raw.get("value"), where=f"{where}: discriminator value"),
        pattern=_optional_str(raw.get("pattern"), where=f"{where}: discriminator pattern"),
        on_conflict=on_conflict,
    )


def load_entity_metadata(doc: Mapping[str, Any], name: str) -> EntityMetadata:
    entity = get_entity_document(doc, name)

    table = entity.get("table")
    if not isinstance(table, str) or not table:
        raise ValidationError(f"entity {name}: missing table")

    props_raw = entity.get("properties")
    if not isinstance(props_raw, list) or not props_raw:
        raise ValidationError(f"entity {name}: missing properties[]")
    properties = [_property_from_document(p, entity=name) for p in props_raw]

    indexes_raw = entity.get("indexes") or []
    if not isinstance(indexes_raw, list):
        raise ValidationError(f"entity {name}: indexes must be a list")
    indexes: list[IndexMetadata] = []
    for idx in indexes_raw:
        if not isinstance(idx, dict):
            raise ValidationError(f"entity {name}: index must be a map")
        idx_name = idx.get("name")
        if not isinstance(idx_name, str) or not idx_name:
            raise ValidationError(f"entity {name}: index missing name")
        idx_type = idx.get("type", "GSI")
        if idx_type not in {"GSI", "LSI"}:
            raise ValidationError(f"entity {name}: index {idx_name}: unsupported type {idx_type!r}")
        partition = idx.get("partition")
        if not isinstance(partition, str) or not partition:
            raise ValidationError(f"entity {name}: index {idx_name}: missing partition")
        indexes.append(
            IndexMetadata(
                name=idx_name,
                type=idx_type,
                partition=partition,
                sort=_optional_str(idx.get("sort"), where=f"entity {name}: index {idx_name}: sort"),
                discriminator=discriminator_from_document(
                    idx.get("discriminator"), where=f"entity {name}: index {idx_name}"
                ),
            )
        )

    try:
        return EntityMetadata(
            name=name,
            table_name=table,
            properties=tuple(properties),
            indexes=tuple(indexes),
            discriminator=discriminator_from_document(entity.get("discriminator"), where=f"entity {name}"),
        )
    except ModelDefinitionError as err:
        raise ValidationError(f"entity {name}: {err}") from err


def entity_to_document(entity: EntityMetadata) -> dict[str, Any]:
    """Normalized document form of an entity, for comparing definitions."""

    def disc(config: DiscriminatorConfig | None) -> dict[str, Any] | None:
        if config is None:
            return None
        out: dict[str, Any] = {"attribute": config.attribute}
        if config.value is not None:
            out["value"] = config.value
        if config.pattern is not None:
            out["pattern"] = config.pattern
        return out

    props: list[dict[str, Any]] = []
    for prop in entity.properties:
        roles = [r for r, on in (("pk", prop.is_partition_key), ("sk", prop.is_sort_key)) if on]
        props.append(
            {
                "name": prop.name,
                "attribute": prop.attribute_name,
                "type": _type_tag(prop),
                "nullable": prop.nullable,
                "roles": roles,
                "format": prop.format,
                "timezone": prop.timezone,
                "sensitive": prop.is_sensitive,
                "encrypted": prop.is_encrypted,
            }
        )
    props.sort(key=lambda p: cast(str, p["attribute"]))

    indexes = [
        {
            "name": idx.name,
            "type": idx.type,
            "partition": idx.partition,
            "sort": idx.sort,
            "discriminator": disc(idx.discriminator),
        }
        for idx in sorted(entity.indexes, key=lambda i: i.name)
    ]

    return {
        "name": entity.name,
        "table": entity.table_name,
        "discriminator": disc(entity.discriminator),
        "properties": props,
        "indexes": indexes,
    }


def assert_entity_equivalent_to_document(
    entity: EntityMetadata,
    doc: Mapping[str, Any],
    *,
    ignore_table_name: bool = False,
) -> None:
    want = entity_to_document(load_entity_metadata(doc, entity.name))
    got = entity_to_document(entity)
    if ignore_table_name:
        want.pop("table")
        got.pop("table")
    if got != want:
        raise ValidationError(
            "entity definition does not match document:\n"
            f"want={json.dumps(want, sort_keys=True, separators=(',', ':'))}\n"
            f"got={json.dumps(got, sort_keys=True, separators=(',', ':'))}"
        )


def _property_from_document(raw: Any, *, entity: str) -> PropertyMetadata:
    if not isinstance(raw, dict):
        raise ValidationError(f"entity {entity}: property must be a map")
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise ValidationError(f"entity {entity}: property missing name")
    where = f"entity {entity}: property {name}"

    attribute = raw.get("attribute", name)
    if not isinstance(attribute, str) or not attribute:
        raise ValidationError(f"{where}: attribute must be a non-empty string")

    tag = raw.get("type", "S")
    value_type = _TYPES.get(tag) if isinstance(tag, str) else None
    if value_type is None:
        raise ValidationError(f"{where}: unsupported type {tag!r}")

    roles = raw.get("roles") or []
    if not isinstance(roles, list) or not all(r in {"pk", "sk"} for r in roles):
        raise ValidationError(f"{where}: roles must be a subset of ['pk', 'sk']")

    timezone = raw.get("timezone")
    if timezone is not None and timezone not in {"utc", "local", "unspecified"}:
        raise ValidationError(f"{where}: unsupported timezone {timezone!r}")

    return PropertyMetadata(
        name=name,
        attribute_name=attribute,
        value_type=value_type,
        nullable=bool(raw.get("nullable", False)),
        format=_optional_str(raw.get("format"), where=f"{where}: format"),
        timezone=timezone,
        is_partition_key="pk" in roles,
        is_sort_key="sk" in roles,
        is_sensitive=bool(raw.get("sensitive", False)),
        is_encrypted=bool(raw.get("encrypted", False)),
        is_set=tag in _SET_TAGS,
    )


def _type_tag(prop: PropertyMetadata) -> str:
    if prop.is_set:
        return "SET"
    vt = prop.value_type
    if vt is bool:
        return "BOOL"
    if vt in (int, float, Decimal):
        return "N"
    if vt in (bytes, bytearray):
        return "B"
    if vt is datetime:
        return "datetime"
    if vt is date:
        return "date"
    if vt in (list, tuple):
        return "L"
    if vt is dict:
        return "M"
    return "S"


def _optional_str(value: Any, *, where: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{where} must be a string")
    return value


def _assert_json_compatible(value: Any, *, path: str) -> None:
    if value is None or isinstance(value, (str, bool, int, float)):
        if isinstance(value, float) and not (value == value and value not in (float("inf"), float("-inf"))):
            raise ValidationError(f"entity document contains non-finite float at {path}")
        return

    if isinstance(value, list):
        for idx, elem in enumerate(value):
            _assert_json_compatible(elem, path=f"{path}[{idx}]")
        return

    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValidationError(f"entity document contains non-string key at {path}: {k!r}")
            _assert_json_compatible(v, path=f"{path}.{k}")
        return

    raise ValidationError(f"entity document contains non-JSON value at {path}: {type(value).__name__}")
