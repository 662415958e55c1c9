from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .codec import TaggedValue, encode
from .errors import ValidationError
from .model import KeySchema, check_key_value


@dataclass(frozen=True)
class SortKeyCondition:
    op: str
    values: tuple[Any, ...]

    @staticmethod
    def eq(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="=", values=(value,))

    @staticmethod
    def lt(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="<", values=(value,))

    @staticmethod
    def lte(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="<=", values=(value,))

    @staticmethod
    def gt(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op=">", values=(value,))

    @staticmethod
    def gte(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op=">=", values=(value,))

    @staticmethod
    def between(low: Any, high: Any) -> SortKeyCondition:
        return SortKeyCondition(op="between", values=(low, high))

    @staticmethod
    def begins_with(prefix: Any) -> SortKeyCondition:
        return SortKeyCondition(op="begins_with", values=(prefix,))


@dataclass(frozen=True)
class KeyCondition:
    expression: str
    names: dict[str, str]
    values: dict[str, TaggedValue]


def build_key_condition(
    schema: KeySchema,
    partition_value: Any,
    sort: SortKeyCondition | None = None,
    *,
    operation: str = "query",
    table_name: str | None = None,
) -> KeyCondition:
    if partition_value is None:
        raise ValidationError("partition value is required", operation=operation, table_name=table_name)
    check_key_value(schema.partition, partition_value, operation=operation, table_name=table_name)

    names = {"#pk": schema.partition.name}
    values = {":pk": encode(partition_value)}
    expression = "#pk = :pk"
    if sort is None:
        return KeyCondition(expression=expression, names=names, values=values)

    if schema.sort is None:
        raise ValidationError("table does not define a sort key", operation=operation, table_name=table_name)
    for value in sort.values:
        check_key_value(schema.sort, value, operation=operation, table_name=table_name)
    names["#sk"] = schema.sort.name

    op = sort.op
    if op in {"=", "<", "<=", ">", ">="}:
        if len(sort.values) != 1:
            raise ValidationError("invalid sort key condition", operation=operation, table_name=table_name)
        values[":sk"] = encode(sort.values[0])
        expression = f"{expression} AND #sk {op} :sk"
    elif op == "between":
        if len(sort.values) != 2:
            raise ValidationError("invalid sort key condition", operation=operation, table_name=table_name)
        values[":sk1"] = encode(sort.values[0])
        values[":sk2"] = encode(sort.values[1])
        expression = f"{expression} AND #sk BETWEEN :sk1 AND :sk2"
    elif op == "begins_with":
        if len(sort.values) != 1:
            raise ValidationError("invalid sort key condition", operation=operation, table_name=table_name)
        values[":sk"] = encode(sort.values[0])
        expression = f"{expression} AND begins_with(#sk, :sk)"
    else:
        raise ValidationError(
            f"unsupported sort key operator: {op}", operation=operation, table_name=table_name
        )

    return KeyCondition(expression=expression, names=names, values=values)
