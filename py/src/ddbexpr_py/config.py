from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

from .validation import MaxExpressionLength

ENV_REDACTION_PLACEHOLDER = "DDBEXPR_REDACTION_PLACEHOLDER"
ENV_MAX_EXPRESSION_LENGTH = "DDBEXPR_MAX_EXPRESSION_LENGTH"
ENV_LOG_EXPRESSIONS = "DDBEXPR_LOG_EXPRESSIONS"

DEFAULT_REDACTION_PLACEHOLDER = "[REDACTED]"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"", "0", "false", "no", "off"})


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class CompilerOptions:
    redaction_placeholder: str = DEFAULT_REDACTION_PLACEHOLDER
    max_expression_length: int = MaxExpressionLength
    log_expressions: bool = False

    def __post_init__(self) -> None:
        if not self.redaction_placeholder:
            raise ConfigError("redaction_placeholder cannot be empty")
        if self.max_expression_length <= 0:
            raise ConfigError("max_expression_length must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> CompilerOptions:
        placeholder = environ.get(ENV_REDACTION_PLACEHOLDER) or DEFAULT_REDACTION_PLACEHOLDER

        raw_length = (environ.get(ENV_MAX_EXPRESSION_LENGTH) or "").strip()
        if raw_length:
            try:
                max_length = int(raw_length)
            except ValueError as err:
                raise ConfigError(f"{ENV_MAX_EXPRESSION_LENGTH} must be an integer: {raw_length!r}") from err
        else:
            max_length = MaxExpressionLength

        return cls(
            redaction_placeholder=placeholder,
            max_expression_length=max_length,
            log_expressions=_parse_bool(ENV_LOG_EXPRESSIONS, environ.get(ENV_LOG_EXPRESSIONS)),
        )


def _parse_bool(key: str, raw: str | None) -> bool:
    value = (raw or "").strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(f"{key} must be a boolean: {raw!r}")


def create_kms_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


_kms_clients: dict[str | None, Any] = {}


def get_kms_client(
    *,
    region: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
) -> Any:
    """Return a cached KMS client for the encryption collaborator."""

    existing = _kms_clients.get(region)
    if existing is not None:
        return existing

    sess = session or boto3.session.Session(region_name=region)
    client = cast(Any, sess).client("kms", region_name=region, config=config or create_kms_config())
    _kms_clients[region] = client
    return client


def _reset_kms_clients_for_tests() -> None:
    _kms_clients.clear()
