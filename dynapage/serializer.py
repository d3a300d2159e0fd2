from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, cast
from uuid import UUID

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .exceptions import ValidationError


class DynamoSerializer:
    """
    Converts between plain Python values and the DynamoDB low-level format.

    Architectural Note:
    -------------------
    The async low-level client speaks typed JSON ({"S": "..."}, {"N": "..."}).
    Boto3's TypeSerializer refuses floats, so values are normalized first
    (float -> Decimal, datetime -> ISO 8601, ...). On the way back, Decimals
    are restored to int or float so keys survive a JSON round-trip in cursors.
    """

    def __init__(self) -> None:
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def to_dynamo(self, data: dict[str, Any]) -> dict[str, dict[str, Any]]:
        """Converts a Python dict (an item or a key) to DynamoDB typed JSON."""
        return {name: self.to_dynamo_value(value, name=name) for name, value in data.items()}

    def to_dynamo_value(self, value: Any, name: str | None = None) -> dict[str, Any]:
        """
        Serializes a single value to DynamoDB format.
        E.g.: 10.5 -> {'N': '10.5'}
        """
        try:
            return cast(dict[str, Any], self._serializer.serialize(self._prepare(value)))
        except TypeError as e:
            raise ValidationError(
                f"Cannot serialize value {value!r}: {e!s}",
                field=name,
                value=value,
                original_error=e,
            ) from e

    def from_dynamo(self, item: dict[str, Any]) -> dict[str, Any]:
        """Converts DynamoDB typed JSON back to a plain Python dict."""
        return {k: self._restore(self._deserializer.deserialize(v)) for k, v in item.items()}

    def key_from_dynamo(self, key: dict[str, Any]) -> dict[str, Any]:
        """
        Converts a DynamoDB key (e.g. a LastEvaluatedKey) to plain values without loss.

        Integral numbers become int; other numbers stay Decimal so that
        to_dynamo() gives back exactly the number DynamoDB returned.
        """
        restored = {}
        for name, value in key.items():
            plain = self._deserializer.deserialize(value)
            if isinstance(plain, Decimal) and plain == plain.to_integral_value():
                plain = int(plain)
            restored[name] = plain
        return restored

    def _prepare(self, value: Any) -> Any:
        if isinstance(value, float):
            # str() first to avoid binary float artifacts in the Decimal
            return Decimal(str(value))
        if isinstance(value, datetime):
            utc_offset = value.utcoffset()
            if utc_offset is not None and utc_offset.total_seconds() == 0:
                return value.replace(tzinfo=None).isoformat() + "Z"
            return value.isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, Enum):
            return self._prepare(value.value)
        if isinstance(value, (set, frozenset)):
            return {self._prepare(v) for v in value}
        if isinstance(value, list):
            return [self._prepare(v) for v in value]
        if isinstance(value, dict):
            return {k: self._prepare(v) for k, v in value.items()}
        return value

    def _restore(self, value: Any) -> Any:
        if isinstance(value, Decimal):
            if value % 1 == 0:
                return int(value)
            return float(value)
        if isinstance(value, list):
            return [self._restore(v) for v in value]
        if isinstance(value, dict):
            return {k: self._restore(v) for k, v in value.items()}
        if isinstance(value, set):
            return {self._restore(v) for v in value}
        return value
