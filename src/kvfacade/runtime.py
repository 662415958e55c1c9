from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .aws_errors import client_error_code
from .config import ClientConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool
    error_code: str | None = None


def create_boto3_config(config: ClientConfig) -> Config:
    kwargs: dict[str, Any] = {
        "connect_timeout": config.connect_timeout,
        "read_timeout": config.read_timeout,
    }
    if config.max_attempts is not None:
        kwargs["retries"] = {"max_attempts": config.max_attempts, "mode": "standard"}
    return Config(**kwargs)


def create_dynamodb_client(
    config: ClientConfig,
    *,
    session: Any | None = None,
    on_call: Callable[[CallMetric], None] | None = None,
) -> Any:
    """Build the boto3 client for ``config``; with ``on_call``, every call also reports a ``CallMetric``."""
    sess = session or boto3.session.Session()
    kwargs: dict[str, Any] = {
        "region_name": config.region,
        "config": create_boto3_config(config),
    }
    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    if config.credentials is not None:
        kwargs["aws_access_key_id"] = config.credentials.access_key_id
        kwargs["aws_secret_access_key"] = config.credentials.secret_access_key
        if config.credentials.session_token:
            kwargs["aws_session_token"] = config.credentials.session_token

    logger.debug(f"creating dynamodb client for region={config.region} endpoint={config.endpoint_url}")
    client = cast(Any, sess).client("dynamodb", **kwargs)
    return instrument_client(client, on_call=on_call) if on_call is not None else client


class _InstrumentedClient:
    """Proxy timing each public client method and reporting one ``CallMetric`` per call."""

    def __init__(
        self,
        client: Any,
        service: str,
        on_call: Callable[[CallMetric], None],
        clock: Callable[[], float],
    ) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call
        self._clock = clock

    def __getattr__(self, name: str) -> Any:
        target = getattr(self._client, name)
        if name.startswith("_") or not callable(target):
            return target
        return functools.partial(self._invoke, name, target)

    def _invoke(self, operation: str, target: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
        started = self._clock()
        error_code: str | None = None
        try:
            return target(*args, **kwargs)
        except ClientError as err:
            error_code = client_error_code(err) or type(err).__name__
            raise
        except BaseException as err:
            error_code = type(err).__name__
            raise
        finally:
            self._on_call(
                CallMetric(
                    service=self._service,
                    operation=operation,
                    seconds=self._clock() - started,
                    ok=error_code is None,
                    error_code=error_code,
                )
            )


def instrument_client(
    client: Any,
    *,
    service: str = "dynamodb",
    on_call: Callable[[CallMetric], None] | None = None,
    clock: Callable[[], float] = time.perf_counter,
) -> Any:
    return _InstrumentedClient(client, service, on_call or log_call_metric, clock)


def log_call_metric(metric: CallMetric) -> None:
    if metric.ok:
        logger.debug(f"{metric.service}.{metric.operation} ok in {metric.seconds * 1000:.1f}ms")
        return
    reason = f" ({metric.error_code})" if metric.error_code else ""
    logger.warning(f"{metric.service}.{metric.operation} failed{reason} in {metric.seconds * 1000:.1f}ms")
