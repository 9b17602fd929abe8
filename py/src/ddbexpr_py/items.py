from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, fields, is_dataclass
from typing import Any

from boto3.dynamodb.types import TypeDeserializer

from .coercion import serialize_for_property
from .compiled import PendingEncryption
from .discriminator import DiscriminatorConfig, DiscriminatorMatcher
from .encryption import EncryptionContext, FieldEncryptor, encrypt_value
from .errors import MissingEncryptionProvider, ValidationError
from .model import EntityMetadata

_deserializer = TypeDeserializer()


@dataclass(frozen=True)
class CompiledItem:
    item: dict[str, Any]
    pending_encryption: tuple[PendingEncryption, ...] = ()


def _as_values(values: Any) -> Mapping[str, Any]:
    if isinstance(values, Mapping):
        return values
    if is_dataclass(values) and not isinstance(values, type):
        return {f.name: getattr(values, f.name) for f in fields(values)}
    raise ValidationError("item values must be a mapping or a dataclass instance")


def _discriminators(entity: EntityMetadata) -> list[DiscriminatorConfig]:
    configs = [entity.discriminator] if entity.discriminator is not None else []
    configs.extend(idx.discriminator for idx in entity.indexes if idx.discriminator is not None)
    return [c for c in configs if c.strategy != "none"]


def compile_item(entity: EntityMetadata, values: Any) -> CompiledItem:
    """Serialize an item for PutItem, leaving encrypted attributes pending.

    Pending attributes hold their plaintext tagged value until
    `resolve_item_encryption` replaces it.
    """

    data = _as_values(values)
    unknown = sorted(k for k in data if entity.get_property(k) is None)
    if unknown:
        raise ValidationError(f"unknown properties for {entity.name}: {unknown}")

    item: dict[str, Any] = {}
    pending: list[PendingEncryption] = []
    for prop in entity.properties:
        if prop.name not in data or data[prop.name] is None:
            continue
        coerced, av = serialize_for_property(prop, data[prop.name])
        item[prop.attribute_name] = av
        if prop.is_encrypted:
            pending.append(
                PendingEncryption(
                    token=prop.attribute_name,
                    property_name=prop.name,
                    attribute_name=prop.attribute_name,
                    plaintext=coerced,
                    attribute_value=av,
                )
            )

    for role, key_prop in (("partition", entity.partition_key), ("sort", entity.sort_key)):
        if key_prop is not None and key_prop.attribute_name not in item:
            raise ValidationError(f"missing {role} key: {key_prop.name}")

    for config in _discriminators(entity):
        matcher = DiscriminatorMatcher(config)
        stamp = matcher.write_value()
        if config.attribute not in item:
            if stamp is not None and config is entity.discriminator:
                item[config.attribute] = {"S": stamp}
            continue
        matcher.ensure_matches(_deserializer.deserialize(item[config.attribute]))

    return CompiledItem(item=item, pending_encryption=tuple(pending))


def resolve_item_encryption(
    compiled: CompiledItem,
    encryptor: FieldEncryptor | None,
    context: EncryptionContext,
) -> dict[str, Any]:
    item = dict(compiled.item)
    if not compiled.pending_encryption:
        return item
    if encryptor is None:
        raise MissingEncryptionProvider(property_name=compiled.pending_encryption[0].property_name)
    for pending in compiled.pending_encryption:
        item[pending.attribute_name] = encrypt_value(
            encryptor,
            plaintext=pending.attribute_value,
            property_name=pending.property_name,
            context=dataclasses.replace(context, attribute_name=pending.attribute_name),
        )
    return item


def to_item(
    entity: EntityMetadata,
    values: Any,
    *,
    encryptor: FieldEncryptor | None = None,
    context: EncryptionContext | None = None,
) -> dict[str, Any]:
    compiled = compile_item(entity, values)
    ctx = context or EncryptionContext(table_name=entity.table_name, entity_name=entity.name)
    return resolve_item_encryption(compiled, encryptor, ctx)


def to_key(entity: EntityMetadata, pk: Any, sk: Any | None = None) -> dict[str, Any]:
    partition = entity.partition_key
    sort = entity.sort_key
    if partition is None:
        raise ValidationError(f"entity {entity.name} does not define a partition key")
    if pk is None:
        raise ValidationError("pk is required")
    if sort is None and sk is not None:
        raise ValidationError(f"entity {entity.name} does not define a sort key")
    if sort is not None and sk is None:
        raise ValidationError("sk is required")

    key = {partition.attribute_name: serialize_for_property(partition, pk)[1]}
    if sort is not None:
        key[sort.attribute_name] = serialize_for_property(sort, sk)[1]
    return key


def ensure_item_matches(
    entity: EntityMetadata,
    item: Mapping[str, Any],
    *,
    index_name: str | None = None,
) -> None:
    """Raise DiscriminatorMismatchError when a wire item belongs to another entity."""

    if index_name is not None and entity.index(index_name) is None:
        raise ValidationError(f"unknown index: {index_name}")
    config = entity.discriminator_for(index_name)
    if config is None or config.strategy == "none":
        return

    raw = item.get(config.attribute)
    DiscriminatorMatcher(config).ensure_matches(_deserializer.deserialize(raw) if raw is not None else None)
