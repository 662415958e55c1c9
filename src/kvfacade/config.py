from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

DEFAULT_ENDPOINT = "http://localhost:8000"
DEFAULT_REGION = "us-east-1"


@dataclass(frozen=True)
class Credentials:
    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for the store: endpoint, region and credential material."""

    endpoint_url: str | None
    region: str
    credentials: Credentials | None = None
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    max_attempts: int | None = None

    @classmethod
    def local(cls, endpoint_url: str = DEFAULT_ENDPOINT) -> ClientConfig:
        return cls(
            endpoint_url=endpoint_url,
            region=DEFAULT_REGION,
            credentials=Credentials(access_key_id="dummy", secret_access_key="dummy"),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> ClientConfig:
        access_key_id = environ.get("AWS_ACCESS_KEY_ID", "dummy")
        secret_access_key = environ.get("AWS_SECRET_ACCESS_KEY", "dummy")
        session_token = environ.get("AWS_SESSION_TOKEN") or None
        return cls(
            endpoint_url=environ.get("DYNAMODB_ENDPOINT", DEFAULT_ENDPOINT) or None,
            region=environ.get("AWS_REGION", DEFAULT_REGION),
            credentials=Credentials(
                access_key_id=access_key_id,
                secret_access_key=secret_access_key,
                session_token=session_token,
            ),
        )
