from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .compiled import CompiledExpression
from .config import DEFAULT_REDACTION_PLACEHOLDER

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedactedExpression:
    """Diagnostic copy of a compiled expression; never sent to the store."""

    expression: str
    attribute_names: dict[str, str]
    attribute_values: dict[str, Any]
    redacted_tokens: tuple[str, ...] = ()
    clauses: tuple[tuple[str, str], ...] = ()

    def as_log_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "expression": self.expression,
            "names": dict(self.attribute_names),
            "values": dict(self.attribute_values),
        }
        if self.redacted_tokens:
            out["redacted"] = list(self.redacted_tokens)
        return out


def redact_compiled(
    compiled: CompiledExpression,
    placeholder: str = DEFAULT_REDACTION_PLACEHOLDER,
) -> RedactedExpression:
    values: dict[str, Any] = {}
    redacted: list[str] = []
    for token, av in compiled.attribute_values.items():
        meta = compiled.parameters.get(token)
        if meta is not None and (meta.sensitive or meta.requires_encryption):
            values[token] = placeholder
            redacted.append(token)
        else:
            values[token] = av

    return RedactedExpression(
        expression=compiled.expression,
        attribute_names=dict(compiled.attribute_names),
        attribute_values=values,
        redacted_tokens=tuple(redacted),
        clauses=compiled.clauses,
    )


def redact_item(
    item: Mapping[str, Any],
    sensitive_attributes: Iterable[str],
    placeholder: str = DEFAULT_REDACTION_PLACEHOLDER,
) -> dict[str, Any]:
    hidden = frozenset(sensitive_attributes)
    return {k: (placeholder if k in hidden else v) for k, v in item.items()}


def log_compiled(
    label: str,
    compiled: CompiledExpression | None,
    *,
    placeholder: str = DEFAULT_REDACTION_PLACEHOLDER,
) -> None:
    if compiled is None or not log.isEnabledFor(logging.DEBUG):
        return
    log.debug("compiled %s: %s", label, redact_compiled(compiled, placeholder).as_log_dict())
