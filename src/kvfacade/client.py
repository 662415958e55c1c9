from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .aws_errors import map_transport_error
from .batching import MAX_BATCH_WRITE_ITEMS, BatchWriteResult, chunk, ensure_batch_size
from .cancel import CancellationToken
from .codec import Item, ItemCodec, decode_item_values, encode, encode_item
from .config import ClientConfig
from .errors import (
    BatchCancelledError,
    BatchWriteError,
    CancelledError,
    CodecError,
    KvFacadeError,
    NotFoundError,
    ValidationError,
    WaitTimeoutError,
)
from .model import KeySchema
from .query import SortKeyCondition, build_key_condition
from .runtime import create_dynamodb_client

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT_SECONDS = 300.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.25


class TableStatus(enum.Enum):
    NON_EXISTENT = "NON_EXISTENT"
    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    INACCESSIBLE_ENCRYPTION_CREDENTIALS = "INACCESSIBLE_ENCRYPTION_CREDENTIALS"
    ARCHIVING = "ARCHIVING"
    ARCHIVED = "ARCHIVED"


@dataclass(frozen=True)
class Throughput:
    read_capacity_units: int
    write_capacity_units: int

    def __post_init__(self) -> None:
        if self.read_capacity_units <= 0 or self.write_capacity_units <= 0:
            raise ValidationError("capacity units must be > 0")

    def to_request(self) -> dict[str, int]:
        return {
            "ReadCapacityUnits": self.read_capacity_units,
            "WriteCapacityUnits": self.write_capacity_units,
        }


@dataclass(frozen=True)
class TableDescription:
    name: str
    status: TableStatus
    key_schema: KeySchema | None
    item_count: int | None = None
    arn: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_response(cls, table: Mapping[str, Any]) -> TableDescription:
        status = str(table.get("TableStatus", ""))
        key_schema = KeySchema.from_description(table) if table.get("KeySchema") else None
        item_count = table.get("ItemCount")
        return cls(
            name=str(table.get("TableName", "")),
            status=TableStatus(status) if status in TableStatus.__members__ else TableStatus.CREATING,
            key_schema=key_schema,
            item_count=int(item_count) if item_count is not None else None,
            arn=table.get("TableArn"),
            raw=dict(table),
        )


@dataclass(frozen=True)
class TableNamesPage:
    names: list[str]
    last_evaluated_table_name: str | None


def build_create_table_request(
    name: str, schema: KeySchema, throughput: Throughput | None = None
) -> dict[str, Any]:
    if not name:
        raise ValidationError("table name is required", operation="create_table")

    req: dict[str, Any] = {
        "TableName": name,
        "KeySchema": schema.key_schema_elements(),
        "AttributeDefinitions": schema.attribute_definitions(),
    }
    if throughput is not None:
        req["BillingMode"] = "PROVISIONED"
        req["ProvisionedThroughput"] = throughput.to_request()
    else:
        req["BillingMode"] = "PAY_PER_REQUEST"
    return req


class KeyValueClient:
    """Typed facade over a DynamoDB-style key-value store.

    The instance owns only its transport client; it keeps no table state
    between calls and performs no retries of its own. Every operation accepts
    an optional ``CancellationToken``, checked before each transport call,
    between pages and batches, and while polling table status. botocore offers
    no way to abort a request already sent, so an in-flight call is bounded
    only by the connect/read timeouts of ``ClientConfig``.

    ``sleep`` and ``clock`` drive status polling. When ``sleep`` is left unset,
    polls wait on the token (so ``cancel()`` wakes them) or on ``time.sleep``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        client: Any | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if client is None:
            config = config or ClientConfig.from_env()
            client = create_dynamodb_client(config)
        self._config = config
        self._client: Any = client
        self._sleep = sleep
        self._clock = clock

    @property
    def config(self) -> ClientConfig | None:
        return self._config

    # Table lifecycle

    def create_table(
        self,
        name: str,
        schema: KeySchema,
        throughput: Throughput | None = None,
        *,
        timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancel: CancellationToken | None = None,
    ) -> TableDescription:
        op = "create_table"
        req = build_create_table_request(name, schema, throughput)
        self._call(op, name, cancel, self._client.create_table, **req)
        logger.info(f"Creating table {name} ({req['BillingMode']}), waiting up to {timeout:g}s for ACTIVE")

        desc = self._wait_for_status(
            op, name, TableStatus.ACTIVE, timeout=timeout, poll_interval=poll_interval, cancel=cancel
        )
        logger.info(f"Created table {name}")
        return desc

    def delete_table(
        self,
        name: str,
        *,
        wait: bool = False,
        timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancel: CancellationToken | None = None,
    ) -> TableDescription | None:
        op = "delete_table"
        resp = self._call(op, name, cancel, self._client.delete_table, TableName=name)
        logger.info(f"Deleting table {name}")

        if wait:
            self._wait_for_status(
                op,
                name,
                TableStatus.NON_EXISTENT,
                timeout=timeout,
                poll_interval=poll_interval,
                cancel=cancel,
            )
            logger.info(f"Deleted table {name}")

        table = resp.get("TableDescription")
        return TableDescription.from_response(table) if table else None

    def describe_table(self, name: str, *, cancel: CancellationToken | None = None) -> TableDescription:
        resp = self._call("describe_table", name, cancel, self._client.describe_table, TableName=name)
        return TableDescription.from_response(resp.get("Table", {}))

    def table_status(self, name: str, *, cancel: CancellationToken | None = None) -> TableStatus:
        try:
            return self.describe_table(name, cancel=cancel).status
        except NotFoundError:
            return TableStatus.NON_EXISTENT

    def key_schema(self, name: str, *, cancel: CancellationToken | None = None) -> KeySchema:
        desc = self.describe_table(name, cancel=cancel)
        if desc.key_schema is None:
            raise ValidationError(
                "table description has no key schema", operation="describe_table", table_name=name
            )
        return desc.key_schema

    def list_tables_page(
        self,
        *,
        limit: int | None = None,
        start_after: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> TableNamesPage:
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be > 0", operation="list_tables")

        req: dict[str, Any] = {}
        if limit is not None:
            req["Limit"] = limit
        if start_after is not None:
            req["ExclusiveStartTableName"] = start_after

        resp = self._call("list_tables", None, cancel, self._client.list_tables, **req)
        return TableNamesPage(
            names=[str(n) for n in resp.get("TableNames", [])],
            last_evaluated_table_name=resp.get("LastEvaluatedTableName"),
        )

    def list_tables(self, *, cancel: CancellationToken | None = None) -> list[str]:
        names: list[str] = []
        start_after: str | None = None
        while True:
            page = self.list_tables_page(start_after=start_after, cancel=cancel)
            names.extend(page.names)
            if page.last_evaluated_table_name is None:
                return names
            start_after = page.last_evaluated_table_name

    def clear_tables(self, *, wait: bool = False, cancel: CancellationToken | None = None) -> list[str]:
        deleted: list[str] = []
        for name in self.list_tables(cancel=cancel):
            self.delete_table(name, wait=wait, cancel=cancel)
            deleted.append(name)
        return deleted

    # Writes

    def put_item(
        self,
        table: str,
        item: Any,
        *,
        schema: KeySchema | None = None,
        codec: ItemCodec[Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        op = "put_item"
        wire = self._to_wire(op, table, item, schema=schema, codec=codec)
        self._call(op, table, cancel, self._client.put_item, TableName=table, Item=wire)
        logger.debug(f"Put item into {table}")

    def put_items(
        self,
        table: str,
        items: Sequence[Any],
        *,
        schema: KeySchema | None = None,
        codec: ItemCodec[Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchWriteResult:
        """Write ``items`` in sequential batches of at most 25.

        Every item is encoded before the first call, so an encoding problem
        writes nothing. A failing batch stops the run with ``BatchWriteError``,
        which reports how much was written before it.
        """
        op = "put_items"
        requests = [
            {"PutRequest": {"Item": self._to_wire(op, table, item, schema=schema, codec=codec)}}
            for item in items
        ]

        chunks_written = 0
        items_written = 0
        for index, part in enumerate(chunk(requests, MAX_BATCH_WRITE_ITEMS)):
            ensure_batch_size(part, operation=op, table_name=table)
            items_written += self._write_chunk(
                op,
                table,
                part,
                index=index,
                written_chunks=chunks_written,
                written_items=items_written,
                cancel=cancel,
            )
            chunks_written += 1

        logger.info(f"Wrote {items_written} item(s) to {table} in {chunks_written} batch(es)")
        return BatchWriteResult(chunks_written=chunks_written, items_written=items_written)

    def write_batch(
        self,
        table: str,
        items: Sequence[Any],
        *,
        schema: KeySchema | None = None,
        codec: ItemCodec[Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchWriteResult:
        """Write ``items`` with exactly one batch call; more than 25 is rejected up front."""
        op = "write_batch"
        ensure_batch_size(items, operation=op, table_name=table)
        if not items:
            return BatchWriteResult(chunks_written=0, items_written=0)

        requests = [
            {"PutRequest": {"Item": self._to_wire(op, table, item, schema=schema, codec=codec)}}
            for item in items
        ]
        written = self._write_chunk(
            op, table, requests, index=0, written_chunks=0, written_items=0, cancel=cancel
        )
        logger.info(f"Wrote {written} item(s) to {table} in one batch")
        return BatchWriteResult(chunks_written=1, items_written=written)

    def _write_chunk(
        self,
        op: str,
        table: str,
        requests: list[dict[str, Any]],
        *,
        index: int,
        written_chunks: int,
        written_items: int,
        cancel: CancellationToken | None,
    ) -> int:
        try:
            resp = self._call(
                op, table, cancel, self._client.batch_write_item, RequestItems={table: requests}
            )
        except CancelledError as err:
            logger.info(f"{op} on {table} cancelled before chunk {index} ({written_items} item(s) written)")
            raise BatchCancelledError(
                chunk_index=index,
                written_chunks=written_chunks,
                written_items=written_items,
                unprocessed=requests,
                reason=str(err),
                operation=op,
                table_name=table,
            ) from err
        except KvFacadeError as err:
            raise BatchWriteError(
                chunk_index=index,
                written_chunks=written_chunks,
                written_items=written_items,
                unprocessed=requests,
                reason=str(err),
                operation=op,
                table_name=table,
            ) from err

        pending = resp.get("UnprocessedItems", {}).get(table) or []
        if pending:
            logger.warning(f"{op} on {table}: chunk {index} left {len(pending)} unprocessed item(s)")
            raise BatchWriteError(
                chunk_index=index,
                written_chunks=written_chunks,
                written_items=written_items + len(requests) - len(pending),
                unprocessed=pending,
                reason=f"{len(pending)} unprocessed item(s)",
                operation=op,
                table_name=table,
            )
        return len(requests)

    # Reads

    def get_item(
        self,
        table: str,
        key: Mapping[str, Any],
        *,
        schema: KeySchema | None = None,
        consistent_read: bool = False,
        codec: ItemCodec[Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> Any:
        op = "get_item"
        if schema is None:
            schema = self.key_schema(table, cancel=cancel)
        schema.validate_key(key, operation=op, table_name=table)

        wire_key = self._encode(op, table, key)
        resp = self._call(
            op,
            table,
            cancel,
            self._client.get_item,
            TableName=table,
            Key=wire_key,
            ConsistentRead=consistent_read,
        )

        item = resp.get("Item")
        if not item:
            raise NotFoundError("item not found", operation=op, table_name=table)
        return self._from_wire(op, table, item, codec)

    def query(
        self,
        table: str,
        partition_value: Any,
        sort: SortKeyCondition | None = None,
        *,
        schema: KeySchema | None = None,
        scan_forward: bool = True,
        consistent_read: bool = False,
        page_size: int | None = None,
        codec: ItemCodec[Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> Iterator[Any]:
        """Lazily yield the items of one partition in sort-key order."""
        op = "query"
        if page_size is not None and page_size <= 0:
            raise ValidationError("page_size must be > 0", operation=op, table_name=table)
        if schema is None:
            schema = self.key_schema(table, cancel=cancel)

        cond = build_key_condition(schema, partition_value, sort, operation=op, table_name=table)
        req: dict[str, Any] = {
            "TableName": table,
            "KeyConditionExpression": cond.expression,
            "ExpressionAttributeNames": cond.names,
            "ExpressionAttributeValues": cond.values,
            "ScanIndexForward": scan_forward,
            "ConsistentRead": consistent_read,
        }
        if page_size is not None:
            req["Limit"] = page_size

        return self._paginate(op, table, self._client.query, req, codec, cancel)

    def scan(
        self,
        table: str,
        filter_expression: str | None = None,
        values: Mapping[str, Any] | None = None,
        names: Mapping[str, str] | None = None,
        *,
        consistent_read: bool = False,
        page_size: int | None = None,
        codec: ItemCodec[Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> Iterator[Any]:
        """Lazily yield every item of ``table`` that matches ``filter_expression``.

        A scan reads the whole table, O(table size), and filters afterwards;
        prefer ``query`` whenever the partition is known. The expression and
        its ``:value`` / ``#name`` placeholders are passed through unchanged.
        """
        op = "scan"
        if page_size is not None and page_size <= 0:
            raise ValidationError("page_size must be > 0", operation=op, table_name=table)
        if filter_expression is None and (values or names):
            raise ValidationError(
                "placeholders given without a filter expression", operation=op, table_name=table
            )

        req: dict[str, Any] = {"TableName": table, "ConsistentRead": consistent_read}
        if filter_expression is not None:
            req["FilterExpression"] = filter_expression
        if values:
            req["ExpressionAttributeValues"] = {
                k: self._encode_value(op, table, v) for k, v in values.items()
            }
        if names:
            req["ExpressionAttributeNames"] = dict(names)
        if page_size is not None:
            req["Limit"] = page_size

        logger.debug(f"Scanning {table} with filter {filter_expression!r}")
        return self._paginate(op, table, self._client.scan, req, codec, cancel)

    def _paginate(
        self,
        op: str,
        table: str,
        fn: Callable[..., Any],
        req: dict[str, Any],
        codec: ItemCodec[Any] | None,
        cancel: CancellationToken | None,
    ) -> Iterator[Any]:
        start_key: Mapping[str, Any] | None = None
        while True:
            page_req = dict(req)
            if start_key:
                page_req["ExclusiveStartKey"] = start_key
            resp = self._call(op, table, cancel, fn, **page_req)
            for item in resp.get("Items", []):
                yield self._from_wire(op, table, item, codec)
            start_key = resp.get("LastEvaluatedKey")
            if not start_key:
                return

    # Plumbing

    def _call(
        self,
        op: str,
        table: str | None,
        cancel: CancellationToken | None,
        fn: Callable[..., Any],
        /,
        **req: Any,
    ) -> Any:
        if cancel is not None:
            cancel.raise_if_cancelled(operation=op, table_name=table)
        try:
            return fn(**req)
        except (ClientError, BotoCoreError) as err:
            raise map_transport_error(err, operation=op, table_name=table) from err

    def _wait_for_status(
        self,
        op: str,
        name: str,
        target: TableStatus,
        *,
        timeout: float,
        poll_interval: float,
        cancel: CancellationToken | None,
    ) -> TableDescription:
        deadline = self._clock() + timeout
        while True:
            try:
                desc = self.describe_table(name, cancel=cancel)
            except NotFoundError:
                desc = TableDescription(name=name, status=TableStatus.NON_EXISTENT, key_schema=None)

            if desc.status is target:
                return desc
            if self._clock() >= deadline:
                raise WaitTimeoutError(
                    waiting_for=f"status {target.value} (last {desc.status.value})",
                    timeout_seconds=timeout,
                    operation=op,
                    table_name=name,
                )

            logger.debug(f"Table {name} is {desc.status.value}, waiting for {target.value}")
            self._pause(poll_interval, cancel)
            if cancel is not None:
                cancel.raise_if_cancelled(operation=op, table_name=name)

    def _pause(self, seconds: float, cancel: CancellationToken | None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def _to_wire(
        self,
        op: str,
        table: str,
        item: Any,
        *,
        schema: KeySchema | None,
        codec: ItemCodec[Any] | None,
    ) -> Item:
        if codec is not None:
            try:
                wire = codec.encode_struct(item)
            except CodecError as err:
                raise CodecError(str(err), operation=op, table_name=table) from err
        elif isinstance(item, Mapping):
            wire = self._encode(op, table, item)
        else:
            raise CodecError(
                f"expected a mapping of attribute values, got {type(item).__name__} (pass codec=...)",
                operation=op,
                table_name=table,
            )

        if schema is not None:
            schema.validate_item(wire, operation=op, table_name=table)
        return wire

    def _encode(self, op: str, table: str, values: Mapping[str, Any]) -> Item:
        try:
            return encode_item(values)
        except CodecError as err:
            raise CodecError(str(err), operation=op, table_name=table) from err

    def _encode_value(self, op: str, table: str, value: Any) -> Any:
        try:
            return encode(value)
        except CodecError as err:
            raise CodecError(str(err), operation=op, table_name=table) from err

    def _from_wire(self, op: str, table: str, item: Mapping[str, Any], codec: ItemCodec[Any] | None) -> Any:
        try:
            if codec is not None:
                return codec.decode_item(item)
            return decode_item_values(item)
        except CodecError as err:
            raise CodecError(str(err), operation=op, table_name=table) from err
