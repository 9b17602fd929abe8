from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .compiled import CompiledExpression, PendingEncryption, merge_request
from .config import CompilerOptions, ConfigError
from .discriminator import DiscriminatorClause, DiscriminatorConfig, DiscriminatorMatcher, classify_pattern
from .errors import (
    DdbExprError,
    DiscriminatorMismatchError,
    EncryptionError,
    InvalidDiscriminatorPattern,
    KeyConditionViolation,
    MissingEncryptionProvider,
    TranslationError,
    TypeMismatch,
    UnsupportedExpressionShape,
    ValidationError,
)
from .expressions import (
    Capture,
    Comparison,
    FunctionCall,
    Literal,
    Logical,
    PropertyRef,
    SizeOf,
    and_,
    capture,
    literal,
    not_,
    or_,
    prop,
    size,
)
from .model import (
    AttributeConverter,
    EntityMetadata,
    IndexMetadata,
    IndexSpec,
    ModelDefinitionError,
    PropertyMetadata,
    expr_field,
    gsi,
    lsi,
)
from .placeholders import ParameterMetadata, PlaceholderAllocator
from .query import CompiledQuery, ConditionBuilder, QueryBuilder, ScanBuilder
from .redaction import RedactedExpression, redact_compiled, redact_item
from .translator import ExpressionTranslator
from .update_builder import CompiledUpdate, UpdateBuilder

if TYPE_CHECKING:
    from .documents import (
        assert_entity_equivalent_to_document,
        entity_to_document,
        get_entity_document,
        load_entity_metadata,
        parse_entity_document,
    )
    from .encryption import (
        EncryptionContext,
        FieldEncryptor,
        KmsFieldEncryptor,
        resolve_pending_encryption,
    )
    from .items import CompiledItem, compile_item, ensure_item_matches, resolve_item_encryption, to_item, to_key
    from .validation import (
        MaxAttributeNameLength,
        MaxExpressionLength,
        MaxPatternLength,
        MaxPropertyNameLength,
        SecurityValidationError,
        validate_attribute_name,
        validate_expression,
        validate_index_name,
        validate_pattern_text,
        validate_property_name,
        validate_table_name,
    )


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except Exception:
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {
        "assert_entity_equivalent_to_document",
        "entity_to_document",
        "get_entity_document",
        "load_entity_metadata",
        "parse_entity_document",
    }:
        from . import documents

        return getattr(documents, name)
    if name in {"EncryptionContext", "FieldEncryptor", "KmsFieldEncryptor", "resolve_pending_encryption"}:
        from . import encryption

        return getattr(encryption, name)
    if name in {
        "CompiledItem",
        "compile_item",
        "ensure_item_matches",
        "resolve_item_encryption",
        "to_item",
        "to_key",
    }:
        from . import items

        return getattr(items, name)
    if name in {
        "MaxAttributeNameLength",
        "MaxExpressionLength",
        "MaxPatternLength",
        "MaxPropertyNameLength",
        "SecurityValidationError",
        "validate_attribute_name",
        "validate_expression",
        "validate_index_name",
        "validate_pattern_text",
        "validate_property_name",
        "validate_table_name",
    }:
        from . import validation

        return getattr(validation, name)
    raise AttributeError(name)


__all__ = [
    "AttributeConverter",
    "Capture",
    "Comparison",
    "CompiledExpression",
    "CompiledItem",
    "CompiledQuery",
    "CompiledUpdate",
    "CompilerOptions",
    "ConditionBuilder",
    "ConfigError",
    "DdbExprError",
    "DiscriminatorClause",
    "DiscriminatorConfig",
    "DiscriminatorMatcher",
    "DiscriminatorMismatchError",
    "EncryptionContext",
    "EncryptionError",
    "EntityMetadata",
    "ExpressionTranslator",
    "FieldEncryptor",
    "FunctionCall",
    "IndexMetadata",
    "IndexSpec",
    "InvalidDiscriminatorPattern",
    "KeyConditionViolation",
    "KmsFieldEncryptor",
    "Literal",
    "Logical",
    "MaxAttributeNameLength",
    "MaxExpressionLength",
    "MaxPatternLength",
    "MaxPropertyNameLength",
    "MissingEncryptionProvider",
    "ModelDefinitionError",
    "ParameterMetadata",
    "PendingEncryption",
    "PlaceholderAllocator",
    "PropertyMetadata",
    "PropertyRef",
    "QueryBuilder",
    "RedactedExpression",
    "ScanBuilder",
    "SecurityValidationError",
    "SizeOf",
    "TranslationError",
    "TypeMismatch",
    "UnsupportedExpressionShape",
    "UpdateBuilder",
    "ValidationError",
    "__repo_version__",
    "__version__",
    "and_",
    "assert_entity_equivalent_to_document",
    "capture",
    "classify_pattern",
    "compile_item",
    "ensure_item_matches",
    "entity_to_document",
    "expr_field",
    "get_entity_document",
    "gsi",
    "literal",
    "load_entity_metadata",
    "lsi",
    "merge_request",
    "not_",
    "or_",
    "parse_entity_document",
    "prop",
    "redact_compiled",
    "redact_item",
    "resolve_item_encryption",
    "resolve_pending_encryption",
    "size",
    "to_item",
    "to_key",
    "validate_attribute_name",
    "validate_expression",
    "validate_index_name",
    "validate_pattern_text",
    "validate_property_name",
    "validate_table_name",
]
