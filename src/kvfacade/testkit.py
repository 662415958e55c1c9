from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from .mocks import ANY, FakeDynamoDBClient


def no_sleep(_: float) -> None:
    return None


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    error: Any = {"Error": {"Code": code, "Message": message}}
    return ClientError(error, operation)


__all__ = [
    "ANY",
    "FakeClock",
    "FakeDynamoDBClient",
    "client_error",
    "no_sleep",
]
