from __future__ import annotations

from dataclasses import dataclass

import pytest

from ddbexpr_py import (
    CompilerOptions,
    DiscriminatorConfig,
    EntityMetadata,
    KeyConditionViolation,
    QueryBuilder,
    ScanBuilder,
    ValidationError,
    expr_field,
    gsi,
    or_,
    prop,
)


@dataclass(frozen=True)
class Order:
    pk: str = expr_field(name="PK", roles=["pk"])
    sk: str = expr_field(name="SK", roles=["sk"])
    status: str = expr_field(default="")
    created: str = expr_field(default="")
    customer: str = expr_field(default="")
    total: float = expr_field(format="F2", default=0.0)


ORDERS = EntityMetadata.from_dataclass(
    Order,
    table_name="orders",
    discriminator=DiscriminatorConfig.from_settings("SK", pattern="ORDER#*"),
    indexes=[
        gsi("by-status", partition="status", sort="created"),
        gsi(
            "by-customer",
            partition="customer",
            discriminator=DiscriminatorConfig.from_settings("entity_type", pattern="*#order"),
        ),
    ],
)


def test_starts_with_discriminator_joins_the_key_condition() -> None:
    compiled = QueryBuilder(ORDERS).where(prop("pk").eq("CUST#1")).filter(prop("status").eq("open")).build()

    assert compiled.key_condition is not None
    assert compiled.key_condition.expression == "#n0 = :p0 AND begins_with(#n2, :p2)"
    assert dict(compiled.key_condition.attribute_names) == {"#n0": "PK", "#n2": "SK"}
    assert dict(compiled.key_condition.attribute_values) == {":p0": {"S": "CUST#1"}, ":p2": {"S": "ORDER#"}}

    assert compiled.filter is not None
    assert compiled.filter.expression == "#n1 = :p1"
    assert dict(compiled.filter.attribute_values) == {":p1": {"S": "open"}}
    assert compiled.client_side is None

    assert compiled.to_request() == {
        "TableName": "orders",
        "KeyConditionExpression": "#n0 = :p0 AND begins_with(#n2, :p2)",
        "FilterExpression": "#n1 = :p1",
        "ExpressionAttributeNames": {"#n0": "PK", "#n1": "status", "#n2": "SK"},
        "ExpressionAttributeValues": {
            ":p0": {"S": "CUST#1"},
            ":p1": {"S": "open"},
            ":p2": {"S": "ORDER#"},
        },
    }


def test_exact_discriminator_on_sort_key() -> None:
    profiles = EntityMetadata.from_dataclass(
        Order,
        table_name="orders",
        name="Profile",
        discriminator=DiscriminatorConfig.from_settings("SK", value="PROFILE"),
    )
    request = QueryBuilder(profiles).where(prop("pk").eq("CUST#1")).to_request()
    assert request["KeyConditionExpression"] == "#n0 = :p0 AND #n1 = :p1"
    assert request["ExpressionAttributeValues"][":p1"] == {"S": "PROFILE"}


def test_constrained_sort_key_falls_back_to_client_side_check() -> None:
    compiled = QueryBuilder(ORDERS).where(prop("pk").eq("CUST#1"), prop("sk").gte("ORDER#2024")).build()

    assert compiled.key_condition is not None
    assert compiled.key_condition.expression == "#n0 = :p0 AND #n1 >= :p1"
    assert compiled.filter is None
    assert compiled.client_side is not None

    items = [{"SK": {"S": "ORDER#2024-01"}}, {"SK": {"S": "RETURN#2024"}}, {"PK": {"S": "CUST#1"}}]
    assert compiled.filter_items(items) == [{"SK": {"S": "ORDER#2024-01"}}]


def test_entity_discriminator_moves_to_filter_on_index_without_that_key() -> None:
    compiled = QueryBuilder(ORDERS, index_name="by-status").where(prop("status").eq("open")).build()

    assert compiled.key_condition is not None
    assert compiled.key_condition.expression == "#n0 = :p0"
    assert compiled.filter is not None
    assert compiled.filter.expression == "begins_with(#n1, :p1)"
    assert dict(compiled.filter.attribute_names) == {"#n1": "SK"}
    assert compiled.to_request()["IndexName"] == "by-status"


def test_index_discriminator_overrides_entity_and_checks_suffix_client_side() -> None:
    compiled = QueryBuilder(ORDERS, index_name="by-customer").where(prop("customer").eq("c1")).build()

    assert compiled.filter is not None
    assert compiled.filter.expression == "contains(#n1, :p1)"
    assert dict(compiled.filter.attribute_values) == {":p1": {"S": "#order"}}
    assert compiled.client_side is not None

    items = [
        {"entity_type": {"S": "retail#order"}},
        {"entity_type": {"S": "retail#order#archived"}},
        {"entity_type": {"N": "1"}},
    ]
    assert compiled.filter_items(items) == [{"entity_type": {"S": "retail#order"}}]


def test_discriminator_can_be_disabled() -> None:
    compiled = QueryBuilder(ORDERS, apply_discriminator=False).where(prop("pk").eq("CUST#1")).build()
    assert compiled.key_condition is not None
    assert compiled.key_condition.expression == "#n0 = :p0"
    assert compiled.filter is None
    assert compiled.filter_items([{"SK": {"S": "OTHER"}}]) == [{"SK": {"S": "OTHER"}}]


def test_query_requires_partition_key() -> None:
    with pytest.raises(KeyConditionViolation, match="partition key"):
        QueryBuilder(ORDERS).filter(prop("status").eq("open")).build()


def test_unknown_index() -> None:
    with pytest.raises(ValidationError, match="unknown index: nope"):
        QueryBuilder(ORDERS, index_name="nope")


def test_filters_share_the_key_condition_allocator() -> None:
    compiled = QueryBuilder(ORDERS, apply_discriminator=False).where(prop("pk").eq("open")).filter(
        prop("status").eq("open")
    ).build()
    assert compiled.filter is not None
    assert compiled.filter.expression == "#n1 = :p0"
    assert compiled.to_request()["ExpressionAttributeValues"] == {":p0": {"S": "open"}}


def test_scan_adds_discriminator_to_filter() -> None:
    compiled = ScanBuilder(ORDERS).filter(or_(prop("status").eq("a"), prop("status").eq("b"))).build()
    assert compiled.operation == "scan"
    assert compiled.key_condition is None
    assert compiled.filter is not None
    assert compiled.filter.expression == "(#n0 = :p0 OR #n0 = :p1) AND begins_with(#n1, :p2)"


def test_scan_formats_values() -> None:
    request = ScanBuilder(ORDERS, apply_discriminator=False).filter(prop("total").gt(10)).to_request()
    assert request == {
        "TableName": "orders",
        "FilterExpression": "#n0 > :p0",
        "ExpressionAttributeNames": {"#n0": "total"},
        "ExpressionAttributeValues": {":p0": {"S": "10.00"}},
    }


def test_scan_without_filters() -> None:
    assert ScanBuilder(ORDERS, apply_discriminator=False).to_request() == {"TableName": "orders"}
    assert ScanBuilder(ORDERS).build().filter.expression == "begins_with(#n0, :p0)"  # type: ignore[union-attr]


def test_expression_length_limit() -> None:
    options = CompilerOptions(max_expression_length=8)
    with pytest.raises(ValidationError, match="invalid compiled expression"):
        QueryBuilder(ORDERS, options=options).where(prop("pk").eq("CUST#1")).build()
