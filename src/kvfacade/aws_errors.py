from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

from .errors import NotFoundError, TransportError, ValidationError


def client_error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def map_client_error(err: ClientError, *, operation: str, table_name: str | None = None) -> Exception:
    code = client_error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ResourceNotFoundException":
        return NotFoundError(message or "resource not found", operation=operation, table_name=table_name)
    if code == "ValidationException":
        return ValidationError(message or "validation failed", operation=operation, table_name=table_name)

    return TransportError(
        code=code or "UnknownError",
        message=message or str(err),
        operation=operation,
        table_name=table_name,
    )


def map_transport_error(err: Exception, *, operation: str, table_name: str | None = None) -> Exception:
    if isinstance(err, ClientError):
        return map_client_error(err, operation=operation, table_name=table_name)
    if isinstance(err, BotoCoreError):
        return TransportError(
            code=type(err).__name__, message=str(err), operation=operation, table_name=table_name
        )
    return err
