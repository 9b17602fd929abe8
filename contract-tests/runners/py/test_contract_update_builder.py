from __future__ import annotations

from dataclasses import dataclass

from ddbexpr_py import EntityMetadata, UpdateBuilder, expr_field, prop


@dataclass(frozen=True)
class Versioned:
    pk: str = expr_field(roles=["pk"])
    sk: str = expr_field(roles=["sk"])
    name: str = expr_field(default="")
    version: int = expr_field(default=0)
    amount: float = expr_field(format="F2", default=0.0)


ENTITY = EntityMetadata.from_dataclass(Versioned, table_name="tbl")


def test_update_request_shape() -> None:
    request = (
        UpdateBuilder(ENTITY)
        .set("name", "v1")
        .set("amount", 1234.567)
        .add("version", 1)
        .where(prop("name").eq("v0"))
        .to_request()
    )
    assert request == {
        "UpdateExpression": "SET #n0 = :p0, #n1 = :p1 ADD #n2 :p2",
        "ConditionExpression": "#n0 = :p3",
        "ExpressionAttributeNames": {"#n0": "name", "#n1": "amount", "#n2": "version"},
        "ExpressionAttributeValues": {
            ":p0": {"S": "v1"},
            ":p1": {"S": "1234.57"},
            ":p2": {"N": "1"},
            ":p3": {"S": "v0"},
        },
    }
