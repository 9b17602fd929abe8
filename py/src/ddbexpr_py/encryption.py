from __future__ import annotations

import base64
import binascii
import dataclasses
import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol

from botocore.exceptions import ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .compiled import CompiledExpression
from .errors import EncryptionError, MissingEncryptionProvider, ValidationError

ENVELOPE_VERSION = 1


@dataclass(frozen=True)
class EncryptionContext:
    table_name: str
    entity_name: str
    attribute_name: str = ""


class FieldEncryptor(Protocol):
    def encrypt(self, plaintext: Any, property_name: str, context: EncryptionContext) -> bytes: ...


def _aad(attribute_name: str) -> bytes:
    return f"ddbexpr:encrypted:v1|attr={attribute_name}".encode()


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(value: Any, *, what: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(f"{what} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as err:
        raise ValidationError(f"{what} is not valid base64") from err


# tag -> (json key, python type of each element, is collection)
_PLAIN_KINDS: dict[str, tuple[str, type, bool]] = {
    "S": ("s", str, False),
    "N": ("n", str, False),
    "BOOL": ("bool", bool, False),
    "SS": ("ss", str, True),
    "NS": ("ns", str, True),
}


def marshal_attribute_value_json(av: Any) -> dict[str, Any]:
    """Encode a tagged attribute value as plain JSON-safe data."""

    if not isinstance(av, Mapping) or len(av) != 1:
        raise ValidationError("marshal: attribute value must be a single-key map")
    ((kind, value),) = av.items()

    plain = _PLAIN_KINDS.get(kind)
    if plain is not None:
        key, elem_type, many = plain
        ok = (
            isinstance(value, list) and all(isinstance(v, elem_type) for v in value)
            if many
            else isinstance(value, elem_type)
        )
        if not ok:
            raise ValidationError(f"marshal: invalid {kind} payload")
        return {"t": kind, key: value}

    if kind == "NULL":
        if value is not True:
            raise ValidationError("marshal: NULL must be true")
        return {"t": "NULL", "null": True}
    if kind == "B":
        if not isinstance(value, (bytes, bytearray)):
            raise ValidationError("marshal: B must be bytes")
        return {"t": "B", "b": _b64(bytes(value))}
    if kind == "BS":
        if not isinstance(value, list) or not all(isinstance(v, (bytes, bytearray)) for v in value):
            raise ValidationError("marshal: BS must be a list of bytes")
        return {"t": "BS", "bs": [_b64(bytes(v)) for v in value]}
    if kind == "L":
        if not isinstance(value, list):
            raise ValidationError("marshal: L must be a list")
        return {"t": "L", "l": [marshal_attribute_value_json(v) for v in value]}
    if kind == "M":
        if not isinstance(value, Mapping):
            raise ValidationError("marshal: M must be a map")
        return {"t": "M", "m": {k: marshal_attribute_value_json(value[k]) for k in sorted(value)}}

    raise ValidationError(f"marshal: unsupported attribute value type: {kind}")


def unmarshal_attribute_value_json(enc: Any) -> dict[str, Any]:
    if not isinstance(enc, Mapping) or "t" not in enc:
        raise ValidationError("unmarshal: encoded attribute value must be a map with t")
    kind = enc["t"]

    plain = _PLAIN_KINDS.get(kind)
    if plain is not None:
        key, elem_type, many = plain
        value = enc.get(key)
        ok = (
            isinstance(value, list) and all(isinstance(v, elem_type) for v in value)
            if many
            else isinstance(value, elem_type)
        )
        if not ok:
            raise ValidationError(f"unmarshal: invalid {kind} payload")
        return {kind: value}

    if kind == "NULL":
        if enc.get("null") is not True:
            raise ValidationError("unmarshal: NULL must be true")
        return {"NULL": True}
    if kind == "B":
        return {"B": _unb64(enc.get("b"), what="unmarshal: B")}
    if kind == "BS":
        items = enc.get("bs")
        if not isinstance(items, list):
            raise ValidationError("unmarshal: BS must be a list")
        return {"BS": [_unb64(v, what="unmarshal: BS") for v in items]}
    if kind == "L":
        items = enc.get("l")
        if not isinstance(items, list):
            raise ValidationError("unmarshal: L must be a list")
        return {"L": [unmarshal_attribute_value_json(v) for v in items]}
    if kind == "M":
        members = enc.get("m")
        if not isinstance(members, Mapping):
            raise ValidationError("unmarshal: M must be a map")
        return {"M": {k: unmarshal_attribute_value_json(members[k]) for k in sorted(members)}}

    raise ValidationError(f"unmarshal: unsupported encoded attribute value type: {kind}")


def _client_error(err: ClientError, fallback: str) -> EncryptionError:
    error = err.response.get("Error", {})
    code = str(error.get("Code", "")) or fallback
    message = str(error.get("Message", "")) or str(err)
    return EncryptionError(code=code, message=message)


class KmsFieldEncryptor:
    """Envelope encryption with a KMS data key and AES-GCM.

    The ciphertext is a compact JSON envelope `{"v", "edk", "nonce", "ct"}`.
    The attribute name is bound as associated data, so a value copied onto a
    different attribute fails to decrypt.
    """

    def __init__(
        self,
        *,
        kms_key_arn: str,
        kms_client: Any,
        rand_bytes: Callable[[int], bytes] = os.urandom,
    ) -> None:
        if not kms_key_arn:
            raise ValueError("kms_key_arn is required")
        self._kms_key_arn = kms_key_arn
        self._kms_client = kms_client
        self._rand_bytes = rand_bytes

    def encrypt(self, plaintext: Any, property_name: str, context: EncryptionContext) -> bytes:
        attribute_name = context.attribute_name or property_name
        try:
            data_key = self._kms_client.generate_data_key(KeyId=self._kms_key_arn, KeySpec="AES_256")
        except ClientError as err:
            raise _client_error(err, "KMSGenerateDataKeyError") from err

        dek = data_key.get("Plaintext")
        edk = data_key.get("CiphertextBlob")
        if not isinstance(dek, (bytes, bytearray)) or not isinstance(edk, (bytes, bytearray)):
            raise EncryptionError(code="InvalidDataKey", message="GenerateDataKey returned invalid key types")

        payload = json.dumps(
            marshal_attribute_value_json(plaintext),
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")
        nonce = self._rand_bytes(12)
        ct = AESGCM(bytes(dek)).encrypt(nonce, payload, _aad(attribute_name))

        envelope = {"v": ENVELOPE_VERSION, "edk": _b64(bytes(edk)), "nonce": _b64(nonce), "ct": _b64(ct)}
        return json.dumps(envelope, separators=(",", ":")).encode("ascii")

    def decrypt(self, ciphertext: bytes, property_name: str, context: EncryptionContext) -> dict[str, Any]:
        attribute_name = context.attribute_name or property_name
        try:
            envelope = json.loads(bytes(ciphertext).decode("ascii"))
        except (UnicodeDecodeError, ValueError) as err:
            raise ValidationError("encrypted envelope is not valid JSON") from err
        if not isinstance(envelope, dict):
            raise ValidationError("encrypted envelope must be a JSON object")
        if envelope.get("v") != ENVELOPE_VERSION:
            raise ValidationError(f"unsupported encrypted envelope version: {envelope.get('v')!r}")

        edk = _unb64(envelope.get("edk"), what="envelope edk")
        nonce = _unb64(envelope.get("nonce"), what="envelope nonce")
        ct = _unb64(envelope.get("ct"), what="envelope ct")

        try:
            resp = self._kms_client.decrypt(CiphertextBlob=edk, KeyId=self._kms_key_arn)
        except ClientError as err:
            raise _client_error(err, "KMSDecryptError") from err
        dek = resp.get("Plaintext")
        if not isinstance(dek, (bytes, bytearray)):
            raise EncryptionError(code="InvalidDataKey", message="Decrypt returned invalid key types")

        try:
            payload = AESGCM(bytes(dek)).decrypt(nonce, ct, _aad(attribute_name))
        except InvalidTag as err:
            raise ValidationError("failed to decrypt encrypted envelope") from err

        try:
            enc = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as err:
            raise ValidationError("failed to parse decrypted attribute payload") from err
        return unmarshal_attribute_value_json(enc)


def encrypt_value(
    encryptor: FieldEncryptor,
    *,
    plaintext: Any,
    property_name: str,
    context: EncryptionContext,
) -> dict[str, Any]:
    ciphertext = encryptor.encrypt(plaintext, property_name, context)
    if not isinstance(ciphertext, (bytes, bytearray)):
        raise EncryptionError(
            code="InvalidCiphertext",
            message=f"encryptor returned {type(ciphertext).__name__} for {property_name}, expected bytes",
        )
    return {"B": bytes(ciphertext)}


def resolve_pending_encryption(
    compiled: CompiledExpression,
    encryptor: FieldEncryptor | None,
    context: EncryptionContext,
) -> CompiledExpression:
    """Encrypt every pending value and return a transmittable copy.

    The input is left untouched. Without an encryptor any pending value is a
    hard failure.
    """

    if not compiled.pending_encryption:
        return compiled
    if encryptor is None:
        raise MissingEncryptionProvider(property_name=compiled.pending_encryption[0].property_name)

    values = dict(compiled.attribute_values)
    parameters = dict(compiled.parameters)
    for pending in compiled.pending_encryption:
        av = encrypt_value(
            encryptor,
            plaintext=pending.attribute_value,
            property_name=pending.property_name,
            context=dataclasses.replace(context, attribute_name=pending.attribute_name),
        )
        values[pending.token] = av
        if pending.token in parameters:
            parameters[pending.token] = dataclasses.replace(parameters[pending.token], attribute_value=av)

    return dataclasses.replace(
        compiled,
        attribute_values=MappingProxyType(values),
        parameters=MappingProxyType(parameters),
        pending_encryption=(),
    )
