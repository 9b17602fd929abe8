from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass

import boto3

from ddbexpr_py import (
    CompilerOptions,
    DiscriminatorConfig,
    EntityMetadata,
    QueryBuilder,
    UpdateBuilder,
    expr_field,
    prop,
    to_item,
    to_key,
)


@dataclass(frozen=True)
class Order:
    pk: str = expr_field(roles=["pk"])
    sk: str = expr_field(roles=["sk"])
    status: str = expr_field(default="open")
    total: float = expr_field(format="F2", default=0.0)


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def main() -> None:
    logging.basicConfig(level=logging.DEBUG)
    client = _client()
    table_name = f"ddbexpr_example_{uuid.uuid4().hex[:12]}"

    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        orders = EntityMetadata.from_dataclass(
            Order,
            table_name=table_name,
            discriminator=DiscriminatorConfig.from_settings("sk", pattern="ORDER#*"),
        )
        options = CompilerOptions.from_env()

        client.put_item(TableName=table_name, Item=to_item(orders, Order(pk="C#1", sk="ORDER#001", total=12.5)))
        client.put_item(TableName=table_name, Item=to_item(orders, Order(pk="C#1", sk="ORDER#002", total=99.999)))
        client.put_item(TableName=table_name, Item={"pk": {"S": "C#1"}, "sk": {"S": "PROFILE"}})

        update = UpdateBuilder(orders, options=options).set("status", "shipped").where(prop("status").eq("open"))
        client.update_item(TableName=table_name, Key=to_key(orders, "C#1", "ORDER#001"), **update.to_request())

        query = QueryBuilder(orders, options=options).where(prop("pk").eq("C#1")).filter(prop("status").eq("shipped"))
        resp = client.query(**query.to_request())
        print("shipped orders:", resp["Items"])
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
