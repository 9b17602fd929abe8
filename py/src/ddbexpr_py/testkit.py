from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .encryption import EncryptionContext, marshal_attribute_value_json


def fixed_rand_bytes(seed: bytes) -> Callable[[int], bytes]:
    if not seed:
        raise ValueError("seed must be non-empty")

    def rand(n: int) -> bytes:
        if n < 0:
            raise ValueError("n must be >= 0")
        if n == 0:
            return b""
        repeats = (n + len(seed) - 1) // len(seed)
        return (seed * repeats)[:n]

    return rand


class FakeKmsClient:
    """In-memory stand-in for the KMS data-key calls KmsFieldEncryptor makes."""

    def __init__(
        self,
        *,
        plaintext_key: bytes,
        ciphertext_blob: bytes,
        error: Exception | None = None,
    ) -> None:
        self.plaintext_key = plaintext_key
        self.ciphertext_blob = ciphertext_blob
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def generate_data_key(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("generate_data_key", dict(kwargs)))
        if self.error is not None:
            raise self.error
        return {"Plaintext": self.plaintext_key, "CiphertextBlob": self.ciphertext_blob}

    def decrypt(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("decrypt", dict(kwargs)))
        if self.error is not None:
            raise self.error
        return {"Plaintext": self.plaintext_key}


@dataclass(frozen=True)
class EncryptCall:
    plaintext: Any
    property_name: str
    context: EncryptionContext


class RecordingEncryptor:
    """Deterministic FieldEncryptor that records every call.

    The ciphertext is `b"enc:" + <attribute>:<marshalled plaintext>` so tests
    can assert what was encrypted without a real key.
    """

    def __init__(self) -> None:
        self.calls: list[EncryptCall] = []

    def encrypt(self, plaintext: Any, property_name: str, context: EncryptionContext) -> bytes:
        self.calls.append(EncryptCall(plaintext=plaintext, property_name=property_name, context=context))
        marshalled = marshal_attribute_value_json(plaintext)
        body = marshalled.get("s") or marshalled.get("n") or repr(marshalled)
        return f"enc:{context.attribute_name}:{body}".encode()


__all__ = [
    "EncryptCall",
    "FakeKmsClient",
    "RecordingEncryptor",
    "fixed_rand_bytes",
]
