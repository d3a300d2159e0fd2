"""
Condition building blocks for queries.

Two kinds of conditions live here:

- KeyCondition: a condition on the sort key of an index, rendered into the
  KeyConditionExpression. Only the operators DynamoDB allows on keys exist:
  equality, begins_with, between and the four ordering comparisons.
- FilterCondition: a condition on non-key attributes, built with Attr and
  rendered into a FilterExpression by boto3's ConditionExpressionBuilder.

Usage:
    from dynapage import Attr, begins_with, between

    where = {"customer_id": "c-1", "created_at": between("2024-01-01", "2024-12-31")}
    condition = (Attr("status") == "shipped") & Attr("gift").not_exists()
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from boto3.dynamodb.conditions import And as Boto3And
from boto3.dynamodb.conditions import Attr as Boto3Attr
from boto3.dynamodb.conditions import ConditionBase as Boto3ConditionBase
from boto3.dynamodb.conditions import ConditionExpressionBuilder
from boto3.dynamodb.conditions import Not as Boto3Not
from boto3.dynamodb.conditions import Or as Boto3Or

from .exceptions import ValidationError

if TYPE_CHECKING:
    from .serializer import DynamoSerializer

COMPARISON_OPERATORS = ("=", "<", "<=", ">", ">=")

# Accepted spellings when a key condition is given as a one-entry mapping.
_OPERATOR_ALIASES = {
    "=": "=",
    "eq": "=",
    "<": "<",
    "lt": "<",
    "<=": "<=",
    "le": "<=",
    "lte": "<=",
    ">": ">",
    "gt": ">",
    ">=": ">=",
    "ge": ">=",
    "gte": ">=",
    "begins_with": "begins_with",
    "beginsWith": "begins_with",
    "between": "between",
}


def is_key_value(value: Any) -> bool:
    """True for values DynamoDB accepts as a partition or sort key value."""
    if isinstance(value, bool):
        return False
    return isinstance(value, (str, int, float, Decimal, date, UUID, Enum))


@dataclass(frozen=True)
class KeyCondition:
    """
    A condition on a sort key.

    Users typically don't instantiate this directly - use begins_with(),
    between(), lt(), le(), gt(), ge() or eq() instead.
    """

    operator: str
    values: tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.operator == "begins_with":
            if len(self.values) != 1 or not isinstance(self.values[0], str):
                raise ValidationError(
                    "begins_with requires a string prefix", value=self.values
                )
        elif self.operator == "between":
            if len(self.values) != 2:
                raise ValidationError(
                    "between requires exactly two values (low, high)", value=self.values
                )
            low, high = self.values
            if not (is_key_value(low) and is_key_value(high)):
                raise ValidationError(
                    "between bounds must be strings or numbers", value=self.values
                )
            try:
                inverted = low > high
            except TypeError as e:
                raise ValidationError(
                    "between bounds must have the same type", value=self.values, original_error=e
                ) from e
            if inverted:
                raise ValidationError("between requires low <= high", value=self.values)
        elif self.operator in COMPARISON_OPERATORS:
            if len(self.values) != 1 or not is_key_value(self.values[0]):
                raise ValidationError(
                    f"'{self.operator}' requires a single string or number", value=self.values
                )
        else:
            raise ValidationError(f"Unsupported key condition operator '{self.operator}'")

    def render(self, name: str, value: str) -> tuple[str, dict[str, Any]]:
        """
        Renders the condition against the given placeholders.

        Returns:
            The expression fragment and the value placeholders it uses
            (values are still plain Python values)
        """
        if self.operator == "begins_with":
            return f"begins_with({name}, {value})", {value: self.values[0]}
        if self.operator == "between":
            low, high = f"{value}_low", f"{value}_high"
            return f"{name} BETWEEN {low} AND {high}", {low: self.values[0], high: self.values[1]}
        return f"{name} {self.operator} {value}", {value: self.values[0]}


def begins_with(prefix: str) -> KeyCondition:
    return KeyCondition("begins_with", (prefix,))


def between(low: Any, high: Any) -> KeyCondition:
    """Inclusive range: low <= sort key <= high."""
    return KeyCondition("between", (low, high))


def eq(value: Any) -> KeyCondition:
    return KeyCondition("=", (value,))


def lt(value: Any) -> KeyCondition:
    return KeyCondition("<", (value,))


def le(value: Any) -> KeyCondition:
    return KeyCondition("<=", (value,))


def gt(value: Any) -> KeyCondition:
    return KeyCondition(">", (value,))


def ge(value: Any) -> KeyCondition:
    return KeyCondition(">=", (value,))


def parse_key_condition(value: Any, field: str | None = None) -> KeyCondition | None:
    """
    Normalizes a where-clause value for a sort key.

    Returns None for plain scalars (equality is rendered by the caller),
    the KeyCondition itself, or a KeyCondition parsed from a one-entry
    mapping such as {"beginsWith": "2024-"} or {"between": [1, 10]}.

    Raises:
        ValidationError: If the value is neither a scalar nor a known operator
    """
    if isinstance(value, KeyCondition):
        return value
    if is_key_value(value):
        return None
    if isinstance(value, Mapping):
        if len(value) != 1:
            raise ValidationError(
                "A key condition mapping must contain exactly one operator",
                field=field,
                value=value,
            )
        ((op, operand),) = value.items()
        operator = _OPERATOR_ALIASES.get(op)
        if operator is None:
            raise ValidationError(f"Unsupported key condition operator '{op}'", field=field)
        if operator == "between":
            if isinstance(operand, (str, bytes)) or not isinstance(operand, Sequence):
                raise ValidationError(
                    "between requires a [low, high] pair", field=field, value=operand
                )
            return KeyCondition(operator, tuple(operand))
        return KeyCondition(operator, (operand,))
    raise ValidationError(
        f"Unsupported key condition of type {type(value).__name__}", field=field, value=value
    )


class FilterCondition:
    """
    Wrapper around a boto3 condition on non-key attributes.

    Supports &, | and ~ for composition. Build instances with Attr.
    """

    __slots__ = ("raw",)

    def __init__(self, raw: Boto3ConditionBase) -> None:
        self.raw = raw

    def __and__(self, other: FilterCondition | Boto3ConditionBase) -> FilterCondition:
        return FilterCondition(Boto3And(self.raw, _extract_raw(other)))

    def __or__(self, other: FilterCondition | Boto3ConditionBase) -> FilterCondition:
        return FilterCondition(Boto3Or(self.raw, _extract_raw(other)))

    def __invert__(self) -> FilterCondition:
        return FilterCondition(Boto3Not(self.raw))

    def __repr__(self) -> str:
        return f"FilterCondition({self.raw!r})"


class Attr:
    """
    A non-key attribute, used to build filter conditions.

    Usage:
        Attr("status") == "active"
        Attr("score") >= 10
        Attr("tags").contains("premium")
        Attr("deleted_at").not_exists()
    """

    __slots__ = ("name", "_boto3_attr")

    def __init__(self, name: str) -> None:
        self.name = name
        self._boto3_attr = Boto3Attr(name)

    def __eq__(self, value: Any) -> FilterCondition:  # type: ignore[override]
        return FilterCondition(self._boto3_attr.eq(value))

    def __ne__(self, value: Any) -> FilterCondition:  # type: ignore[override]
        return FilterCondition(self._boto3_attr.ne(value))

    def __lt__(self, value: Any) -> FilterCondition:
        return FilterCondition(self._boto3_attr.lt(value))

    def __le__(self, value: Any) -> FilterCondition:
        return FilterCondition(self._boto3_attr.lte(value))

    def __gt__(self, value: Any) -> FilterCondition:
        return FilterCondition(self._boto3_attr.gt(value))

    def __ge__(self, value: Any) -> FilterCondition:
        return FilterCondition(self._boto3_attr.gte(value))

    def exists(self) -> FilterCondition:
        return FilterCondition(self._boto3_attr.exists())

    def not_exists(self) -> FilterCondition:
        return FilterCondition(self._boto3_attr.not_exists())

    def begins_with(self, prefix: str) -> FilterCondition:
        return FilterCondition(self._boto3_attr.begins_with(prefix))

    def contains(self, value: Any) -> FilterCondition:
        """Substring match for strings, membership for lists and sets."""
        return FilterCondition(self._boto3_attr.contains(value))

    def between(self, low: Any, high: Any) -> FilterCondition:
        return FilterCondition(self._boto3_attr.between(low, high))

    def is_in(self, values: list[Any]) -> FilterCondition:
        return FilterCondition(self._boto3_attr.is_in(values))

    def __repr__(self) -> str:
        return f"Attr({self.name!r})"


def _extract_raw(condition: Any) -> Boto3ConditionBase:
    if isinstance(condition, FilterCondition):
        return condition.raw
    if isinstance(condition, Boto3ConditionBase):
        return condition
    raise TypeError(
        f"Expected FilterCondition or boto3 ConditionBase, got {type(condition).__name__}"
    )


def compile_filter(condition: Any, serializer: DynamoSerializer) -> dict[str, Any]:
    """
    Compiles a filter condition into FilterExpression request parameters.

    boto3's builder generates #n0/:v0 style placeholders, which never clash
    with the key placeholders used by the query builder.

    Returns:
        Dict with FilterExpression, and ExpressionAttributeNames /
        ExpressionAttributeValues when non-empty (values in DynamoDB format)
    """
    builder = ConditionExpressionBuilder()
    expression = builder.build_expression(_extract_raw(condition), is_key_condition=False)

    result: dict[str, Any] = {"FilterExpression": expression.condition_expression}
    if expression.attribute_name_placeholders:
        result["ExpressionAttributeNames"] = dict(expression.attribute_name_placeholders)
    if expression.attribute_value_placeholders:
        result["ExpressionAttributeValues"] = {
            placeholder: serializer.to_dynamo_value(value)
            for placeholder, value in expression.attribute_value_placeholders.items()
        }
    return result
