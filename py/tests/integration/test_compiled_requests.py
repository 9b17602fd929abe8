from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

import boto3
import pytest
from botocore.exceptions import ClientError

from ddbexpr_py import (
    ConditionBuilder,
    DiscriminatorConfig,
    EntityMetadata,
    QueryBuilder,
    ScanBuilder,
    UpdateBuilder,
    expr_field,
    gsi,
    prop,
    size,
    to_item,
    to_key,
)


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


@dataclass(frozen=True)
class Order:
    pk: str = expr_field(roles=["pk"])
    sk: str = expr_field(roles=["sk"])
    status: str = expr_field(default="open")
    total: float = expr_field(format="F2", default=0.0)
    tags: set[str] = expr_field(default_factory=set)


ORDER_DISCRIMINATOR = DiscriminatorConfig.from_settings("sk", pattern="ORDER#*")


def test_compiled_requests_round_trip_through_dynamodb_local() -> None:
    table_name = f"ddbexpr_it_{uuid.uuid4().hex[:12]}"
    client = _client()
    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
            {"AttributeName": "status", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "by-status",
                "KeySchema": [{"AttributeName": "status", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        orders = EntityMetadata.from_dataclass(
            Order,
            table_name=table_name,
            discriminator=ORDER_DISCRIMINATOR,
            indexes=[gsi("by-status", partition="status")],
        )

        put = ConditionBuilder(orders).where(prop("pk").not_exists()).to_request()
        client.put_item(TableName=table_name, Item=to_item(orders, Order(pk="C#1", sk="ORDER#001", total=5)), **put)
        client.put_item(
            TableName=table_name,
            Item=to_item(orders, Order(pk="C#1", sk="ORDER#002", total=1234.567, tags={"vip"})),
            **put,
        )
        client.put_item(TableName=table_name, Item={"pk": {"S": "C#1"}, "sk": {"S": "PROFILE"}, "status": {"S": "open"}})

        with pytest.raises(ClientError) as exc:
            client.put_item(TableName=table_name, Item=to_item(orders, Order(pk="C#1", sk="ORDER#001")), **put)
        assert exc.value.response["Error"]["Code"] == "ConditionalCheckFailedException"

        resp = client.query(**QueryBuilder(orders).where(prop("pk").eq("C#1")).to_request())
        assert [i["sk"]["S"] for i in resp["Items"]] == ["ORDER#001", "ORDER#002"]

        resp = client.query(
            **QueryBuilder(orders).where(prop("pk").eq("C#1")).filter(prop("total").eq(1234.567)).to_request()
        )
        assert [i["total"]["S"] for i in resp["Items"]] == ["1234.57"]

        update = (
            UpdateBuilder(orders)
            .set("status", "shipped")
            .add("tags", "gift")
            .where(prop("status").eq("open"), size("tags").gte(1))
            .to_request()
        )
        client.update_item(TableName=table_name, Key=to_key(orders, "C#1", "ORDER#002"), **update)

        stored = client.get_item(TableName=table_name, Key=to_key(orders, "C#1", "ORDER#002"))["Item"]
        assert stored["status"] == {"S": "shipped"}
        assert sorted(stored["tags"]["SS"]) == ["gift", "vip"]

        resp = client.query(**QueryBuilder(orders, index_name="by-status").where(prop("status").eq("open")).to_request())
        assert [i["sk"]["S"] for i in resp["Items"]] == ["ORDER#001"]

        scan = ScanBuilder(orders).build()
        resp = client.scan(**scan.to_request())
        assert sorted(i["sk"]["S"] for i in scan.filter_items(resp["Items"])) == ["ORDER#001", "ORDER#002"]
    finally:
        client.delete_table(TableName=table_name)
