from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class KvFacadeError(Exception):
    def __init__(self, message: str, *, operation: str | None = None, table_name: str | None = None) -> None:
        prefix = ": ".join(p for p in (operation, table_name) if p)
        super().__init__(f"{prefix}: {message}" if prefix else message)
        self.operation = operation
        self.table_name = table_name


class CodecError(KvFacadeError):
    pass


class InvalidKeyError(KvFacadeError):
    pass


class NotFoundError(KvFacadeError):
    pass


class ValidationError(KvFacadeError):
    pass


class BatchTooLargeError(KvFacadeError):
    def __init__(
        self, *, size: int, limit: int, operation: str | None = None, table_name: str | None = None
    ) -> None:
        super().__init__(
            f"max batch size is {limit}, attempted {size}", operation=operation, table_name=table_name
        )
        self.size = size
        self.limit = limit


class BatchWriteError(KvFacadeError):
    def __init__(
        self,
        *,
        chunk_index: int,
        written_chunks: int,
        written_items: int,
        unprocessed: Sequence[Any] = (),
        reason: str,
        operation: str | None = None,
        table_name: str | None = None,
    ) -> None:
        super().__init__(
            f"chunk {chunk_index} failed after {written_chunks} chunk(s) written: {reason}",
            operation=operation,
            table_name=table_name,
        )
        self.chunk_index = chunk_index
        self.written_chunks = written_chunks
        self.written_items = written_items
        self.unprocessed = tuple(unprocessed)


class WaitTimeoutError(KvFacadeError, TimeoutError):
    def __init__(
        self,
        *,
        waiting_for: str,
        timeout_seconds: float,
        operation: str | None = None,
        table_name: str | None = None,
    ) -> None:
        super().__init__(
            f"timed out after {timeout_seconds:g}s waiting for {waiting_for}",
            operation=operation,
            table_name=table_name,
        )
        self.waiting_for = waiting_for
        self.timeout_seconds = timeout_seconds


class CancelledError(KvFacadeError):
    pass


class TransportError(KvFacadeError):
    def __init__(
        self, *, code: str, message: str, operation: str | None = None, table_name: str | None = None
    ) -> None:
        super().__init__(f"{code}: {message}", operation=operation, table_name=table_name)
        self.code = code
        self.message = message


class BatchCancelledError(BatchWriteError, CancelledError):
    """Batch run stopped by its token; carries the progress made before the stop."""
