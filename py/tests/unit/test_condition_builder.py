from __future__ import annotations

from dataclasses import dataclass

import pytest

from ddbexpr_py import (
    ConditionBuilder,
    DiscriminatorConfig,
    EntityMetadata,
    TranslationError,
    ValidationError,
    expr_field,
    or_,
    prop,
)


@dataclass(frozen=True)
class User:
    pk: str = expr_field(name="PK", roles=["pk"])
    is_active: bool = expr_field(default=False)
    version: int = expr_field(default=0)
    ssn: str = expr_field(encrypted=True, default="")


USERS = EntityMetadata.from_dataclass(
    User,
    table_name="users",
    discriminator=DiscriminatorConfig.from_settings("TYPE", value="user"),
)


def test_simple_condition() -> None:
    compiled = ConditionBuilder(USERS).where(prop("is_active").eq(True)).build()
    assert compiled.expression == "#n0 = :p0"
    assert dict(compiled.attribute_names) == {"#n0": "is_active"}
    assert dict(compiled.attribute_values) == {":p0": {"BOOL": True}}


def test_condition_request_omits_empty_value_map() -> None:
    assert ConditionBuilder(USERS).where(prop("pk").not_exists()).to_request() == {
        "ConditionExpression": "attribute_not_exists(#n0)",
        "ExpressionAttributeNames": {"#n0": "PK"},
    }


def test_multiple_predicates_are_anded() -> None:
    compiled = ConditionBuilder(USERS).where(
        prop("pk").exists(), or_(prop("version").eq(3), prop("version").not_exists())
    ).build()
    assert compiled.expression == "attribute_exists(#n0) AND (#n1 = :p0 OR attribute_not_exists(#n1))"


def test_condition_does_not_add_discriminator() -> None:
    compiled = ConditionBuilder(USERS).where(prop("version").lt(5)).build()
    assert "TYPE" not in compiled.attribute_names.values()


def test_no_conditions() -> None:
    with pytest.raises(ValidationError, match="no conditions provided"):
        ConditionBuilder(USERS).build()


def test_encrypted_property_rejected_except_presence() -> None:
    assert ConditionBuilder(USERS).where(prop("ssn").not_exists()).build().expression == "attribute_not_exists(#n0)"
    with pytest.raises(TranslationError, match="encrypted"):
        ConditionBuilder(USERS).where(prop("ssn").eq("123")).build()
