from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import EndpointConnectionError

from kvfacade import (
    BatchCancelledError,
    BatchTooLargeError,
    BatchWriteError,
    CancellationToken,
    CancelledError,
    CodecError,
    InvalidKeyError,
    KeyAttribute,
    KeySchema,
    KeyValueClient,
    NotFoundError,
    SortKeyCondition,
    TransportError,
    ValidationError,
)
from kvfacade.demo import MOVIE_CODEC, MOVIES, MOVIES_SCHEMA, Movie
from kvfacade.testkit import ANY, FakeDynamoDBClient, client_error, no_sleep

ENDGAME = Movie(year=2019, phase="III", has_favreau=False, title="Avengers: Endgame")
ENDGAME_ITEM = {
    "year": {"N": "2019"},
    "title": {"S": "Avengers: Endgame"},
    "phase": {"S": "III"},
    "hasFavreau": {"BOOL": False},
}


def _kv(client: FakeDynamoDBClient) -> KeyValueClient:
    return KeyValueClient(client=client, sleep=no_sleep)


def _rows(n: int) -> list[dict[str, Any]]:
    return [{"year": 2000 + i, "title": f"movie {i}"} for i in range(n)]


def _batch_of(size: int) -> Any:
    def check(req: Any) -> None:
        assert len(req["RequestItems"]["Movies"]) == size

    return check


def test_put_item_encodes_dataclass() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"TableName": "Movies", "Item": ENDGAME_ITEM}, response={})

    _kv(client).put_item("Movies", ENDGAME, schema=MOVIES_SCHEMA, codec=MOVIE_CODEC)
    client.assert_no_pending()


def test_put_item_accepts_plain_mappings() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "put_item",
        {"Item": {"year": {"N": "2019"}, "title": {"S": "x"}, "rating": {"N": "4.5"}}},
        response={},
    )

    _kv(client).put_item("Movies", {"year": 2019, "title": "x", "rating": 4.5}, schema=MOVIES_SCHEMA)


def test_put_item_rejects_items_without_key_before_calling() -> None:
    client = FakeDynamoDBClient()

    with pytest.raises(InvalidKeyError):
        _kv(client).put_item("Movies", {"title": "x"}, schema=MOVIES_SCHEMA)
    with pytest.raises(InvalidKeyError):
        _kv(client).put_item("Movies", {"year": "2019", "title": "x"}, schema=MOVIES_SCHEMA)
    with pytest.raises(CodecError, match="pass codec"):
        _kv(client).put_item("Movies", ENDGAME)

    assert client.calls == []


def test_put_item_maps_transport_failures() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", error=client_error("InternalServerError", "boom"))
    client.expect("put_item", error=EndpointConnectionError(endpoint_url="http://localhost:8000"))
    client.expect("put_item", error=client_error("ValidationException", "bad item"))

    kv = _kv(client)
    with pytest.raises(TransportError) as excinfo:
        kv.put_item("Movies", {"year": 1, "title": "x"})
    assert excinfo.value.code == "InternalServerError"
    assert excinfo.value.operation == "put_item"

    with pytest.raises(TransportError) as excinfo:
        kv.put_item("Movies", {"year": 1, "title": "x"})
    assert excinfo.value.code == "EndpointConnectionError"

    with pytest.raises(ValidationError, match="bad item"):
        kv.put_item("Movies", {"year": 1, "title": "x"})


def test_get_item_returns_decoded_item() -> None:
    client = FakeDynamoDBClient()
    key = {"year": {"N": "2019"}, "title": {"S": "Avengers: Endgame"}}
    client.expect(
        "get_item",
        {"TableName": "Movies", "Key": key, "ConsistentRead": False},
        response={"Item": ENDGAME_ITEM},
    )
    client.expect("get_item", {"ConsistentRead": True}, response={"Item": ENDGAME_ITEM})

    kv = _kv(client)
    lookup = {"year": 2019, "title": "Avengers: Endgame"}
    assert kv.get_item("Movies", lookup, schema=MOVIES_SCHEMA, codec=MOVIE_CODEC) == ENDGAME
    assert kv.get_item("Movies", lookup, schema=MOVIES_SCHEMA, consistent_read=True) == {
        "year": 2019,
        "title": "Avengers: Endgame",
        "phase": "III",
        "hasFavreau": False,
    }


def test_get_item_fetches_schema_when_not_given() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "describe_table",
        {"TableName": "Movies"},
        response={
            "Table": {
                "TableName": "Movies",
                "TableStatus": "ACTIVE",
                "KeySchema": MOVIES_SCHEMA.key_schema_elements(),
                "AttributeDefinitions": MOVIES_SCHEMA.attribute_definitions(),
            }
        },
    )

    with pytest.raises(InvalidKeyError):
        _kv(client).get_item("Movies", {"year": 2019})

    assert [name for name, _ in client.calls] == ["describe_table"]


@pytest.mark.parametrize(
    "key",
    [
        {"year": 2019},
        {"year": 2019, "title": "x", "phase": "III"},
        {"year": "2019", "title": "x"},
        {"year": 2019, "title": 7},
    ],
)
def test_get_item_rejects_malformed_keys_without_calling(key: dict[str, Any]) -> None:
    client = FakeDynamoDBClient()

    with pytest.raises(InvalidKeyError):
        _kv(client).get_item("Movies", key, schema=MOVIES_SCHEMA)

    assert client.calls == []


def test_get_item_missing_is_not_found() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response={})

    with pytest.raises(NotFoundError) as excinfo:
        _kv(client).get_item("Movies", {"year": 1999, "title": "nope"}, schema=MOVIES_SCHEMA)

    assert str(excinfo.value) == "get_item: Movies: item not found"


def test_put_items_chunks_sequentially() -> None:
    client = FakeDynamoDBClient()
    for size in (25, 25, 10):
        client.expect("batch_write_item", _batch_of(size), response={"UnprocessedItems": {}})

    result = _kv(client).put_items("Movies", _rows(60), schema=MOVIES_SCHEMA)

    assert (result.chunks_written, result.items_written) == (3, 60)
    written = [
        r["PutRequest"]["Item"]["title"]["S"]
        for req in client.calls_to("batch_write_item")
        for r in req["RequestItems"]["Movies"]
    ]
    assert written == [f"movie {i}" for i in range(60)]
    client.assert_no_pending()


def test_put_items_with_26_items_uses_two_batches() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_write_item", _batch_of(25), response={})
    client.expect("batch_write_item", _batch_of(1), response={})

    result = _kv(client).put_items("Movies", _rows(26))
    assert result.chunks_written == 2


def test_put_items_empty_makes_no_calls() -> None:
    client = FakeDynamoDBClient()
    result = _kv(client).put_items("Movies", [])
    assert (result.chunks_written, result.items_written) == (0, 0)
    assert client.calls == []


def test_put_items_stops_at_first_failing_chunk() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_write_item", _batch_of(25), response={})
    throttled = client_error("ProvisionedThroughputExceededException", "slow down")
    client.expect("batch_write_item", _batch_of(25), error=throttled)

    with pytest.raises(BatchWriteError) as excinfo:
        _kv(client).put_items("Movies", _rows(60))

    err = excinfo.value
    assert err.chunk_index == 1
    assert err.written_chunks == 1
    assert err.written_items == 25
    assert len(err.unprocessed) == 25
    assert isinstance(err.__cause__, TransportError)
    assert len(client.calls_to("batch_write_item")) == 2
    client.assert_no_pending()


def test_put_items_reports_unprocessed_items() -> None:
    client = FakeDynamoDBClient()
    pending = [{"PutRequest": {"Item": ENDGAME_ITEM}}] * 2
    client.expect("batch_write_item", response={"UnprocessedItems": {"Movies": pending}})

    with pytest.raises(BatchWriteError, match="2 unprocessed") as excinfo:
        _kv(client).put_items("Movies", _rows(30))

    err = excinfo.value
    assert err.chunk_index == 0
    assert err.written_chunks == 0
    assert err.written_items == 23
    assert list(err.unprocessed) == pending
    assert len(client.calls) == 1


def test_put_items_encodes_everything_before_writing() -> None:
    client = FakeDynamoDBClient()
    rows: list[Any] = _rows(30)
    rows[27] = {"year": 1, "title": "bad", "when": object()}

    with pytest.raises(CodecError) as excinfo:
        _kv(client).put_items("Movies", rows)

    assert excinfo.value.operation == "put_items"
    assert client.calls == []


def test_put_items_cancelled_between_chunks() -> None:
    client = FakeDynamoDBClient()
    token = CancellationToken()
    client.expect("batch_write_item", lambda req: token.cancel(), response={})

    with pytest.raises(CancelledError) as excinfo:
        _kv(client).put_items("Movies", _rows(30), cancel=token)

    err = excinfo.value
    assert isinstance(err, BatchCancelledError)
    assert isinstance(err, BatchWriteError)
    assert err.chunk_index == 1
    assert err.written_chunks == 1
    assert err.written_items == 25
    assert len(err.unprocessed) == 5
    assert err.unprocessed[0]["PutRequest"]["Item"]["title"] == {"S": "movie 25"}
    assert len(client.calls) == 1


def test_write_batch_cancelled_before_its_call() -> None:
    client = FakeDynamoDBClient()
    token = CancellationToken()
    token.cancel()

    with pytest.raises(BatchCancelledError) as excinfo:
        _kv(client).write_batch("Movies", _rows(3), cancel=token)

    assert (excinfo.value.chunk_index, excinfo.value.written_items) == (0, 0)
    assert client.calls == []


def test_write_batch_rejects_more_than_25_before_calling() -> None:
    client = FakeDynamoDBClient()

    with pytest.raises(BatchTooLargeError) as excinfo:
        _kv(client).write_batch("Movies", _rows(26))

    assert excinfo.value.size == 26
    assert client.calls == []


def test_write_batch_uses_one_call() -> None:
    client = FakeDynamoDBClient()
    client.expect("batch_write_item", _batch_of(22), response={})

    result = _kv(client).write_batch("Movies", list(MOVIES[1:]), codec=MOVIE_CODEC)

    assert (result.chunks_written, result.items_written) == (1, 22)
    assert _kv(client).write_batch("Movies", []).items_written == 0


def test_query_builds_key_condition_and_follows_pages() -> None:
    client = FakeDynamoDBClient()
    first = {
        "TableName": "Movies",
        "KeyConditionExpression": "#pk = :pk",
        "ExpressionAttributeNames": {"#pk": "year"},
        "ExpressionAttributeValues": {":pk": {"N": "2019"}},
        "ScanIndexForward": True,
        "ConsistentRead": False,
    }
    last_key = {"year": {"N": "2019"}, "title": {"S": "Avengers: Endgame"}}
    client.expect("query", first, response={"Items": [ENDGAME_ITEM], "LastEvaluatedKey": last_key})
    client.expect("query", {**first, "ExclusiveStartKey": last_key}, response={"Items": []})

    results = _kv(client).query("Movies", 2019, schema=MOVIES_SCHEMA, codec=MOVIE_CODEC)
    assert client.calls == []

    assert list(results) == [ENDGAME]
    assert "ExclusiveStartKey" not in client.calls[0][1]
    client.assert_no_pending()


def test_query_sort_conditions() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {
            "KeyConditionExpression": "#pk = :pk AND begins_with(#sk, :sk)",
            "ExpressionAttributeNames": {"#pk": "year", "#sk": "title"},
            "ExpressionAttributeValues": {":pk": {"N": "2019"}, ":sk": {"S": "Avengers"}},
            "ScanIndexForward": False,
            "Limit": 5,
        },
        response={"Items": []},
    )
    client.expect(
        "query",
        {
            "KeyConditionExpression": "#pk = :pk AND #sk BETWEEN :sk1 AND :sk2",
            "ExpressionAttributeValues": {":pk": ANY, ":sk1": {"S": "A"}, ":sk2": {"S": "M"}},
        },
        response={"Items": []},
    )

    kv = _kv(client)
    begins = SortKeyCondition.begins_with("Avengers")
    pages = kv.query("Movies", 2019, begins, schema=MOVIES_SCHEMA, scan_forward=False, page_size=5)
    assert list(pages) == []
    between = SortKeyCondition.between("A", "M")
    assert list(kv.query("Movies", 2019, between, schema=MOVIES_SCHEMA)) == []
    client.assert_no_pending()


def test_query_validates_before_calling() -> None:
    client = FakeDynamoDBClient()
    kv = _kv(client)

    with pytest.raises(InvalidKeyError):
        kv.query("Movies", "2019", schema=MOVIES_SCHEMA)
    with pytest.raises(InvalidKeyError):
        kv.query("Movies", 2019, SortKeyCondition.eq(5), schema=MOVIES_SCHEMA)
    with pytest.raises(ValidationError):
        kv.query("Movies", None, schema=MOVIES_SCHEMA)
    with pytest.raises(ValidationError):
        kv.query("Movies", 2019, schema=MOVIES_SCHEMA, page_size=0)
    with pytest.raises(ValidationError, match="sort key"):
        kv.query("Plain", "a", SortKeyCondition.eq("b"), schema=KeySchema(KeyAttribute.string("id")))

    assert client.calls == []


def test_scan_passes_filter_through() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "scan",
        {
            "TableName": "Movies",
            "FilterExpression": "hasFavreau = :hasFav",
            "ExpressionAttributeValues": {":hasFav": {"BOOL": False}},
        },
        response={"Items": [ENDGAME_ITEM], "LastEvaluatedKey": {"year": {"N": "2019"}}},
    )
    client.expect(
        "scan", {"ExclusiveStartKey": {"year": {"N": "2019"}}}, response={"Items": [ENDGAME_ITEM]}
    )

    got = list(_kv(client).scan("Movies", "hasFavreau = :hasFav", {":hasFav": False}, codec=MOVIE_CODEC))

    assert got == [ENDGAME, ENDGAME]
    assert "ExpressionAttributeNames" not in client.calls[0][1]


def test_scan_without_filter_reads_everything() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", {"TableName": "Movies", "Limit": 10}, response={"Items": [ENDGAME_ITEM]})

    got = list(_kv(client).scan("Movies", page_size=10))
    assert got[0]["title"] == "Avengers: Endgame"
    assert "FilterExpression" not in client.calls[0][1]


def test_scan_rejects_placeholders_without_expression() -> None:
    client = FakeDynamoDBClient()
    with pytest.raises(ValidationError):
        _kv(client).scan("Movies", values={":x": 1})
    assert client.calls == []


def test_decode_failure_carries_operation_context() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", response={"Items": [{"year": {"N": "2019"}}]})

    with pytest.raises(CodecError) as excinfo:
        list(_kv(client).scan("Movies", codec=MOVIE_CODEC))

    assert excinfo.value.operation == "scan"
    assert excinfo.value.table_name == "Movies"
