"""
Batch point lookups.

BatchGetItem accepts at most 100 keys per request, may leave part of the
keys unprocessed under load and returns items in no particular order.
batch_get_items splits the keys into chunks fetched concurrently, re-requests
unprocessed keys with bounded exponential backoff and rebuilds the output in
the order of the input keys, with None for keys that have no item.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from decimal import Decimal
from typing import Any, TypeVar

from ._logging import logger
from .config import IndexDefinition, TableConfig
from .exceptions import UnprocessedKeysError, ValidationError, handle_dynamo_errors
from .serializer import DynamoSerializer

T = TypeVar("T")

KeyIdentity = tuple[Any, ...]


def _identity_part(attribute: dict[str, Any]) -> tuple[str, Any]:
    type_tag, text = next(iter(attribute.items()))
    # DynamoDB normalizes numbers, so "1.0" sent and "1" returned are the same key.
    if type_tag == "N":
        return type_tag, Decimal(text)
    return type_tag, text


def _key_identity(typed: Mapping[str, Any], index: IndexDefinition) -> KeyIdentity:
    """Identity of a key or item in DynamoDB typed JSON, exact for every number."""
    return tuple(_identity_part(typed[name]) for name in index.key_names)


def _normalize_key(
    key: Any, index: IndexDefinition, serializer: DynamoSerializer
) -> tuple[KeyIdentity, dict[str, dict[str, Any]]]:
    """
    Returns the identity of a caller supplied key and its DynamoDB form.

    The identity is computed on the typed form so that 5, 5.0 and
    Decimal("5") all match the item DynamoDB returns for that key.
    """
    if not isinstance(key, Mapping):
        raise ValidationError(f"Expected a key mapping, got {type(key).__name__}", value=key)
    for name in index.key_names:
        if name not in key:
            raise ValidationError(f"Key is missing attribute '{name}'", field=name, value=key)

    typed = serializer.to_dynamo({name: key[name] for name in index.key_names})
    return _key_identity(typed, index), typed


def build_projection(fields: Sequence[str] | None, index: IndexDefinition) -> dict[str, Any]:
    """
    Projection parameters for a batch get.

    The primary key attributes are always added, otherwise returned items
    could not be matched back to the requested keys.
    """
    if fields is None:
        return {}
    names = list(dict.fromkeys([*fields, *index.key_names]))
    placeholders = {f"#p{i}": name for i, name in enumerate(names)}
    return {
        "ProjectionExpression": ", ".join(placeholders),
        "ExpressionAttributeNames": placeholders,
    }


async def _fetch_chunk(
    client: Any,
    table: TableConfig,
    keys: list[dict[str, dict[str, Any]]],
    projection: dict[str, Any],
    serializer: DynamoSerializer,
    sleep: Callable[[float], Awaitable[Any]],
) -> list[dict[str, Any]]:
    policy = table.batch_retry
    items: list[dict[str, Any]] = []
    pending = keys
    attempt = 0

    # Each retry depends on the previous response, so retries are sequential.
    while pending:
        attempt += 1
        if attempt > 1:
            await sleep(policy.delay_for(attempt - 1))

        with handle_dynamo_errors(table_name=table.name):
            response = await client.batch_get_item(
                RequestItems={table.name: {"Keys": pending, **projection}}
            )

        items.extend(response.get("Responses", {}).get(table.name, []))
        pending = response.get("UnprocessedKeys", {}).get(table.name, {}).get("Keys", [])

        if pending:
            if attempt >= policy.max_attempts:
                raise UnprocessedKeysError(
                    table.name, [serializer.key_from_dynamo(key) for key in pending], attempt
                )
            logger.warning(
                "Retrying unprocessed keys",
                extra={"table": table.name, "unprocessed": len(pending), "attempt": attempt},
            )

    return items


async def batch_get_items(
    client: Any,
    table: TableConfig,
    keys: Sequence[Mapping[str, Any]],
    fields: Sequence[str] | None = None,
    *,
    serializer: DynamoSerializer | None = None,
    item_factory: Callable[[dict[str, Any]], T] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[Any | None]:
    """
    Fetches many items by primary key.

    Args:
        client: Async low-level DynamoDB client (aiobotocore compatible)
        table: Table configuration; keys use the key schema of its default index
        keys: Keys to fetch, e.g. [{"pk": "1", "sk": "2"}]
        fields: Optional projection; primary key attributes are added to it
        serializer: Optional serializer override
        item_factory: Optional callable applied to every found item
        sleep: Awaitable used for backoff between retries

    Returns:
        One entry per input key, in input order: the item, or None if absent

    Raises:
        ValidationError: A key lacks a primary key attribute
        UnprocessedKeysError: Keys were still unprocessed after the retry budget
        StoreError: DynamoDB rejected a request
    """
    if not keys:
        return []

    serializer = serializer or DynamoSerializer()
    index = table.primary_index

    identities: list[KeyIdentity] = []
    unique: dict[KeyIdentity, dict[str, dict[str, Any]]] = {}
    for key in keys:
        identity, typed = _normalize_key(key, index, serializer)
        identities.append(identity)
        # DynamoDB rejects duplicate keys inside one request.
        unique.setdefault(identity, typed)

    unique_keys = list(unique.values())
    size = table.batch_chunk_size
    chunks = [unique_keys[i : i + size] for i in range(0, len(unique_keys), size)]
    projection = build_projection(fields, index)

    logger.info(
        "Executing batch get",
        extra={
            "table": table.name,
            "keys": len(keys),
            "unique_keys": len(unique_keys),
            "chunks": len(chunks),
            "has_projection": bool(projection),
        },
    )

    tasks = [
        asyncio.create_task(_fetch_chunk(client, table, chunk, projection, serializer, sleep))
        for chunk in chunks
    ]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException:
        # One failed chunk fails the whole call; stop the others and collect their outcome.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    found: dict[KeyIdentity, Any] = {}
    for chunk_items in results:
        for raw in chunk_items:
            item = serializer.from_dynamo(raw)
            identity = _key_identity(raw, index)
            found[identity] = item_factory(item) if item_factory is not None else item

    logger.debug(
        "Batch get complete",
        extra={"table": table.name, "found": len(found), "missing": len(unique) - len(found)},
    )

    return [found.get(identity) for identity in identities]
