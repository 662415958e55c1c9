"""Scripted stand-in for the boto3 ``dynamodb`` client.

``FakeDynamoDBClient`` answers calls from a queue of expectations and checks
that every request has the shape DynamoDB would accept (table name present,
tagged attribute maps, batches of at most 25 put/delete requests) before the
caller-supplied partial match runs.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .batching import MAX_BATCH_WRITE_ITEMS


class _Wildcard:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _Wildcard()

type RequestCheck = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]

_TABLE_SCOPED = frozenset(
    {"put_item", "get_item", "query", "scan", "create_table", "delete_table", "describe_table"}
)


def request_mismatches(expected: Any, actual: Any, path: str) -> list[str]:
    """Differences between a partial ``expected`` request and ``actual``; extra keys are allowed."""
    if expected is ANY:
        return []
    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            return [f"{path}: expected a map, got {type(actual).__name__}"]
        problems: list[str] = []
        for key, want in expected.items():
            if key in actual:
                problems.extend(request_mismatches(want, actual[key], f"{path}.{key}"))
            else:
                problems.append(f"{path}: missing key {key!r}")
        return problems
    if isinstance(expected, list):
        if not isinstance(actual, list) or len(actual) != len(expected):
            return [f"{path}: expected {expected!r}, got {actual!r}"]
        return [
            problem
            for i, (want, got) in enumerate(zip(expected, actual, strict=True))
            for problem in request_mismatches(want, got, f"{path}[{i}]")
        ]
    return [] if expected == actual else [f"{path}: expected {expected!r}, got {actual!r}"]


def _attribute_map_problems(value: Any, path: str) -> list[str]:
    if not isinstance(value, Mapping):
        return [f"{path}: must be a map of tagged values"]
    return [
        f"{path}.{name}: not a single-tag attribute value"
        for name, tagged in value.items()
        if not isinstance(tagged, Mapping) or len(tagged) != 1
    ]


def request_shape_problems(method: str, req: Mapping[str, Any]) -> list[str]:
    """What DynamoDB would reject about ``req`` before looking at any table."""
    problems: list[str] = []
    if method in _TABLE_SCOPED and not req.get("TableName"):
        problems.append(f"{method}: TableName is required")

    if method == "put_item":
        problems.extend(_attribute_map_problems(req.get("Item"), f"{method}.Item"))
    elif method == "get_item":
        problems.extend(_attribute_map_problems(req.get("Key"), f"{method}.Key"))
    elif method in {"query", "scan"}:
        if "ExpressionAttributeValues" in req:
            values = req["ExpressionAttributeValues"]
            problems.extend(_attribute_map_problems(values, f"{method}.ExpressionAttributeValues"))
        if method == "query" and not req.get("KeyConditionExpression"):
            problems.append("query: KeyConditionExpression is required")
    elif method == "batch_write_item":
        request_items = req.get("RequestItems")
        if not isinstance(request_items, Mapping) or not request_items:
            problems.append("batch_write_item: RequestItems must be a non-empty map")
        else:
            total = sum(len(writes) for writes in request_items.values())
            if total > MAX_BATCH_WRITE_ITEMS:
                problems.append(f"batch_write_item: {total} requests exceeds {MAX_BATCH_WRITE_ITEMS}")
            for table, writes in request_items.items():
                for i, write in enumerate(writes):
                    path = f"batch_write_item.RequestItems.{table}[{i}]"
                    if isinstance(write, Mapping) and set(write) == {"PutRequest"}:
                        problems.extend(_attribute_map_problems(write["PutRequest"].get("Item"), path))
                    elif not (isinstance(write, Mapping) and set(write) == {"DeleteRequest"}):
                        problems.append(f"{path}: expected a PutRequest or DeleteRequest")
    elif method == "list_tables" and "Limit" in req and not 1 <= req["Limit"] <= 100:
        problems.append("list_tables: Limit must be between 1 and 100")
    return problems


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    check: RequestCheck | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


def _operation(method: str) -> Callable[..., Mapping[str, Any]]:
    def call(self: FakeDynamoDBClient, **req: Any) -> Mapping[str, Any]:
        return self._dispatch(method, req)

    call.__name__ = method
    return call


class FakeDynamoDBClient:
    """Answers client calls in registration order and records every request."""

    def __init__(self) -> None:
        self._queue: deque[ExpectedCall] = deque()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        check: RequestCheck | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._queue.append(ExpectedCall(method=method, check=check, response=response, error=error))

    def assert_no_pending(self) -> None:
        if self._queue:
            pending = ", ".join(call.method for call in self._queue)
            raise AssertionError(f"pending expected calls: {pending}")

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def _dispatch(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._queue:
            raise AssertionError(f"unexpected call: {method}")
        call = self._queue.popleft()
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        problems = request_shape_problems(method, req)
        if callable(call.check):
            call.check(req)
        elif call.check is not None:
            problems.extend(request_mismatches(call.check, req, method))
        if problems:
            raise AssertionError("; ".join(problems))

        if call.error is not None:
            raise call.error
        return dict(call.response or {})

    put_item = _operation("put_item")
    get_item = _operation("get_item")
    query = _operation("query")
    scan = _operation("scan")
    batch_write_item = _operation("batch_write_item")
    create_table = _operation("create_table")
    delete_table = _operation("delete_table")
    describe_table = _operation("describe_table")
    list_tables = _operation("list_tables")
