from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from botocore.exceptions import ClientError


class DynapageError(Exception):
    """Base exception for all dynapage errors."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(DynapageError):
    """Raised when a filter, key or page size is rejected before contacting DynamoDB."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, original_error)
        self.field = field
        self.value = value


class ConfigurationError(ValidationError):
    """Raised when the table configuration cannot serve the requested operation."""


class CursorError(DynapageError):
    """Raised when a cursor cannot be authenticated or decoded."""

    def __init__(
        self, message: str = "Invalid cursor", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)


class StoreError(DynapageError):
    """Base class for failures reported by DynamoDB itself."""


class TableNotFoundError(StoreError):
    """Raised when the DynamoDB table or index does not exist."""

    def __init__(self, table_name: str, original_error: Exception | None = None) -> None:
        super().__init__(f"Table '{table_name}' not found", original_error)
        self.table_name = table_name


class ProvisionedThroughputExceededError(StoreError):
    """Raised when DynamoDB throttles requests."""

    def __init__(
        self, message: str = "Request rate exceeded", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)


class RequestTimeoutError(StoreError):
    """Raised when a request to DynamoDB times out."""

    def __init__(
        self, message: str = "Request timed out", original_error: Exception | None = None
    ) -> None:
        super().__init__(message, original_error)


class StoreValidationError(StoreError):
    """Raised when DynamoDB rejects a request as malformed."""


class UnprocessedKeysError(StoreError):
    """Raised when a batch get still has unprocessed keys after the retry budget."""

    def __init__(self, table_name: str, keys: list[dict[str, Any]], attempts: int) -> None:
        super().__init__(
            f"{len(keys)} key(s) of table '{table_name}' still unprocessed "
            f"after {attempts} attempts"
        )
        self.table_name = table_name
        self.keys = keys
        self.attempts = attempts


@contextmanager
def handle_dynamo_errors(table_name: str | None = None) -> Generator[None, None, None]:
    """
    Context manager that catches botocore.exceptions.ClientError
    and raises the matching StoreError subclass.

    Anything that is not a ClientError propagates unchanged.

    Usage:
        with handle_dynamo_errors(table_name="orders"):
            response = await client.query(**request)
    """
    try:
        yield
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))

        if error_code == "ResourceNotFoundException":
            raise TableNotFoundError(table_name=table_name or "unknown", original_error=e) from e

        if error_code in (
            "ProvisionedThroughputExceededException",
            "ThrottlingException",
            "RequestLimitExceeded",
        ):
            raise ProvisionedThroughputExceededError(message=error_message, original_error=e) from e

        if error_code in ("ValidationException", "SerializationException"):
            raise StoreValidationError(message=error_message, original_error=e) from e

        if error_code in ("RequestTimeout", "RequestTimeoutException"):
            raise RequestTimeoutError(message=error_message, original_error=e) from e

        raise StoreError(
            message=f"DynamoDB error ({error_code}): {error_message}", original_error=e
        ) from e
