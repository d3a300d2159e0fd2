"""
Cursor based pagination over DynamoDB queries.

DynamoDB applies Limit to the rows it examines, before any FilterExpression,
so one Query call can return fewer matching items than requested even though
more exist. query_with_cursor hides this: it keeps issuing Query calls until
the page is full or the index is exhausted, and hands back a single opaque
cursor instead of the raw LastEvaluatedKey.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ._logging import logger, redact_key
from .config import DEFAULT_INDEX_NAME, TableConfig
from .cursor import decode_cursor, encode_cursor
from .exceptions import ConfigurationError, ValidationError, handle_dynamo_errors
from .query import Filter, as_filter, build_query_params
from .serializer import DynamoSerializer

T = TypeVar("T")


@dataclass
class QueryResult(Generic[T]):
    """
    A single logical page of results.

    Attributes:
        items: Items of this page
        cursor: Opaque cursor for the next page (None once the query is exhausted)
        scanned_count: Rows DynamoDB examined across every request made for this page
    """

    items: list[T]
    cursor: str | None
    scanned_count: int

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def has_more(self) -> bool:
        """Returns True if there are more pages available."""
        return self.cursor is not None


async def query_with_cursor(
    client: Any,
    table: TableConfig,
    query_filter: Filter | Mapping[str, Any],
    index_name: str = DEFAULT_INDEX_NAME,
    *,
    serializer: DynamoSerializer | None = None,
    item_factory: Callable[[dict[str, Any]], T] | None = None,
) -> QueryResult[Any]:
    """
    Runs a cursor query and returns one page of matching items.

    Args:
        client: Async low-level DynamoDB client (aiobotocore compatible)
        table: Table configuration, must carry a cursor secret
        query_filter: Filter or equivalent mapping
        index_name: Index to query; DEFAULT_INDEX_NAME targets the table itself
        serializer: Optional serializer override
        item_factory: Optional callable applied to every deserialized item

    Returns:
        QueryResult whose cursor is None exactly when the query is exhausted

    Raises:
        ConfigurationError: Unknown index, index without sort key, or no cursor secret
        ValidationError: Invalid filter or limit above the table's maximum page size
        CursorError: prev_cursor cannot be authenticated
        StoreError: DynamoDB rejected a request
    """
    query_filter = as_filter(query_filter)
    serializer = serializer or DynamoSerializer()

    index = table.get_index(index_name)
    if not index.sort_key:
        raise ConfigurationError(
            f"Expected a sort key to query index '{index_name}'", field="index_name"
        )
    if not table.cursor_secret:
        raise ConfigurationError(
            "Expected `cursor_secret` which is used to encrypt the LastEvaluatedKey",
            field="cursor_secret",
        )

    params = build_query_params(query_filter, index.partition_key, index.sort_key, serializer)

    limit = params.limit or table.default_page_size
    if limit > table.max_page_size:
        raise ValidationError(
            f"Maximum limit of {table.max_page_size} can be applied", field="limit", value=limit
        )
    params.limit = limit

    start_key = decode_cursor(query_filter.prev_cursor, table.cursor_secret)

    request = params.to_request()
    request["TableName"] = table.name
    if index_name != DEFAULT_INDEX_NAME:
        request["IndexName"] = index_name
    last_key = serializer.to_dynamo(start_key) if start_key else None

    logger.info(
        "Executing cursor query",
        extra={
            "table": table.name,
            "index": index_name,
            "pk_hash": redact_key(query_filter.where.get(index.partition_key)),
            "limit": limit,
            "has_cursor": start_key is not None,
        },
    )

    raw_items: list[dict[str, Any]] = []
    scanned_count = 0
    pages = 0

    # Page N+1 starts where page N stopped, so requests are strictly sequential.
    while True:
        if last_key:
            request["ExclusiveStartKey"] = last_key

        with handle_dynamo_errors(table_name=table.name):
            response = await client.query(**request)

        page_items = response.get("Items", [])
        raw_items.extend(page_items)
        scanned_count += response.get("ScannedCount", len(page_items))
        last_key = response.get("LastEvaluatedKey")
        pages += 1

        logger.debug(
            "Fetched query page",
            extra={
                "table": table.name,
                "index": index_name,
                "page": pages,
                "returned": len(page_items),
                "scanned_count": scanned_count,
            },
        )

        if not last_key or len(raw_items) >= limit:
            break

    items: list[Any] = [serializer.from_dynamo(item) for item in raw_items]
    if item_factory is not None:
        items = [item_factory(item) for item in items]

    continuation = serializer.key_from_dynamo(last_key) if last_key else None

    logger.info(
        "Cursor query complete",
        extra={
            "table": table.name,
            "index": index_name,
            "pages": pages,
            "count": len(items),
            "scanned_count": scanned_count,
            "has_more": continuation is not None,
        },
    )

    return QueryResult(
        items=items,
        cursor=encode_cursor(continuation, table.cursor_secret),
        scanned_count=scanned_count,
    )
