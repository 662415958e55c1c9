from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .batching import MAX_BATCH_WRITE_ITEMS, BatchWriteResult, chunk, ensure_batch_size
from .cancel import CancellationToken
from .client import (
    KeyValueClient,
    TableDescription,
    TableNamesPage,
    TableStatus,
    Throughput,
    build_create_table_request,
)
from .codec import DataclassCodec, ItemCodec, decode, decode_item_values, encode, encode_item
from .config import ClientConfig, Credentials
from .errors import (
    BatchCancelledError,
    BatchTooLargeError,
    BatchWriteError,
    CancelledError,
    CodecError,
    InvalidKeyError,
    KvFacadeError,
    NotFoundError,
    TransportError,
    ValidationError,
    WaitTimeoutError,
)
from .model import KeyAttribute, KeySchema, ModelDefinitionError, kv_field
from .query import SortKeyCondition
from .runtime import CallMetric, create_dynamodb_client, instrument_client, log_call_metric

if TYPE_CHECKING:
    from .demo import MOVIES, MOVIES_SCHEMA, Movie, run_demo


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
    if name in {"MOVIES", "MOVIES_SCHEMA", "Movie", "run_demo"}:
        from . import demo

        return getattr(demo, name)
    raise AttributeError(name)


__all__ = [
    "BatchCancelledError",
    "BatchTooLargeError",
    "BatchWriteError",
    "BatchWriteResult",
    "build_create_table_request",
    "CallMetric",
    "CancellationToken",
    "CancelledError",
    "chunk",
    "ClientConfig",
    "CodecError",
    "create_dynamodb_client",
    "Credentials",
    "DataclassCodec",
    "decode",
    "decode_item_values",
    "encode",
    "encode_item",
    "ensure_batch_size",
    "instrument_client",
    "InvalidKeyError",
    "ItemCodec",
    "KeyAttribute",
    "KeySchema",
    "KeyValueClient",
    "KvFacadeError",
    "kv_field",
    "log_call_metric",
    "MAX_BATCH_WRITE_ITEMS",
    "ModelDefinitionError",
    "Movie",
    "MOVIES",
    "MOVIES_SCHEMA",
    "NotFoundError",
    "run_demo",
    "SortKeyCondition",
    "TableDescription",
    "TableNamesPage",
    "TableStatus",
    "Throughput",
    "TransportError",
    "ValidationError",
    "WaitTimeoutError",
    "__repo_version__",
    "__version__",
]
