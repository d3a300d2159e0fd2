"""
Query Builder: translates a Filter into DynamoDB Query request parameters.

The builder is a pure transformation. It validates the where clause against
the key schema of the target index and produces the KeyConditionExpression
together with its name/value placeholders, plus page size, direction,
optional FilterExpression and ProjectionExpression.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from boto3.dynamodb.conditions import ConditionBase as Boto3ConditionBase
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .conditions import FilterCondition, compile_filter, eq, is_key_value, parse_key_condition
from .exceptions import ValidationError
from .serializer import DynamoSerializer

PARTITION_NAME = "#PK"
PARTITION_VALUE = ":pk"
SORT_NAME = "#SK"
SORT_VALUE = ":sk"


class Direction(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class Filter(BaseModel):
    """
    What to query.

    Attributes:
        where: Partition key -> exact value, optionally sort key -> value or KeyCondition
        limit: Target page size (defaults to the table's default page size)
        order_by: Sort key direction
        prev_cursor: Cursor returned by the previous page, passed back verbatim
        condition: Optional filter on non-key attributes (see Attr)
        projection: Optional list of attributes to return (alias "fields")
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    where: dict[str, Any]
    limit: int | None = Field(default=None, ge=1)
    order_by: Direction = Field(default=Direction.ASC, alias="orderBy")
    prev_cursor: str | None = Field(default=None, alias="prevCursor")
    condition: Any = None
    projection: list[str] | None = Field(default=None, alias="fields")

    @field_validator("order_by", mode="before")
    @classmethod
    def _normalize_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("condition")
    @classmethod
    def _check_condition(cls, value: Any) -> Any:
        if value is not None and not isinstance(value, (FilterCondition, Boto3ConditionBase)):
            raise ValueError("condition must be built with Attr()")
        return value


def as_filter(value: "Filter | Mapping[str, Any]") -> Filter:
    """Accepts a Filter or a plain mapping; pydantic errors become ValidationError."""
    if isinstance(value, Filter):
        return value
    try:
        return Filter.model_validate(value)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"Invalid filter: {location}: {first.get('msg')}",
            field=location or None,
            original_error=e,
        ) from e


@dataclass
class QueryParams:
    """Store-native description of one Query request (without table, index and start key)."""

    key_condition_expression: str
    expression_attribute_names: dict[str, str]
    expression_attribute_values: dict[str, dict[str, Any]]
    limit: int | None = None
    scan_index_forward: bool = True
    filter_expression: str | None = None
    projection_expression: str | None = None

    def to_request(self) -> dict[str, Any]:
        """Returns the kwargs for the low-level client's query() call."""
        request: dict[str, Any] = {
            "KeyConditionExpression": self.key_condition_expression,
            "ExpressionAttributeNames": dict(self.expression_attribute_names),
            "ExpressionAttributeValues": dict(self.expression_attribute_values),
        }
        if self.limit:
            request["Limit"] = self.limit
        if not self.scan_index_forward:
            request["ScanIndexForward"] = False
        if self.filter_expression:
            request["FilterExpression"] = self.filter_expression
        if self.projection_expression:
            request["ProjectionExpression"] = self.projection_expression
        return request


def build_query_params(
    query_filter: "Filter | Mapping[str, Any]",
    partition_key: str,
    sort_key: str | None = None,
    serializer: DynamoSerializer | None = None,
) -> QueryParams:
    """
    Builds the key condition for a Filter against an index key schema.

    Raises:
        ValidationError: If the partition key is missing or not a scalar, if a
            sort key condition targets an index without sort key, if the where
            clause names a non-key attribute, or if an operator is invalid
    """
    query_filter = as_filter(query_filter)
    serializer = serializer or DynamoSerializer()
    where = query_filter.where

    if partition_key not in where:
        raise ValidationError(
            f"Missing condition on partition key '{partition_key}'", field=partition_key
        )

    pk_value = where[partition_key]
    if not is_key_value(pk_value):
        raise ValidationError(
            "Partition key condition can only be a string or a number",
            field=partition_key,
            value=pk_value,
        )

    names = {PARTITION_NAME: partition_key}
    values = {PARTITION_VALUE: serializer.to_dynamo_value(pk_value, name=partition_key)}
    expression = f"{PARTITION_NAME} = {PARTITION_VALUE}"

    for attribute in where:
        if attribute == partition_key or attribute == sort_key:
            continue
        if sort_key is None:
            raise ValidationError(
                f"Index has no sort key, cannot apply a condition on '{attribute}'",
                field=attribute,
            )
        raise ValidationError(
            f"'{attribute}' is not a key of this index (keys: {partition_key}, {sort_key})",
            field=attribute,
        )

    if sort_key is not None and sort_key in where:
        sk_value = where[sort_key]
        condition = parse_key_condition(sk_value, field=sort_key) or eq(sk_value)
        fragment, placeholders = condition.render(SORT_NAME, SORT_VALUE)
        expression += f" AND {fragment}"
        names[SORT_NAME] = sort_key
        for placeholder, value in placeholders.items():
            values[placeholder] = serializer.to_dynamo_value(value, name=sort_key)

    params = QueryParams(
        key_condition_expression=expression,
        expression_attribute_names=names,
        expression_attribute_values=values,
        limit=query_filter.limit,
        scan_index_forward=query_filter.order_by != Direction.DESC,
    )

    if query_filter.condition is not None:
        compiled = compile_filter(query_filter.condition, serializer)
        params.filter_expression = compiled["FilterExpression"]
        params.expression_attribute_names.update(compiled.get("ExpressionAttributeNames", {}))
        params.expression_attribute_values.update(compiled.get("ExpressionAttributeValues", {}))

    if query_filter.projection:
        projection = []
        for i, attribute in enumerate(dict.fromkeys(query_filter.projection)):
            placeholder = f"#f{i}"
            params.expression_attribute_names[placeholder] = attribute
            projection.append(placeholder)
        params.projection_expression = ", ".join(projection)

    return params
