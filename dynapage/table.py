from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

import aiobotocore.session
from pydantic import BaseModel

from ._logging import logger
from .batch import batch_get_items
from .config import DEFAULT_INDEX_NAME, TableConfig
from .pagination import QueryResult, query_with_cursor
from .query import Filter
from .serializer import DynamoSerializer

M = TypeVar("M", bound=BaseModel)


class DynamoTable(Generic[M]):
    """
    Binds a client, a table configuration and an optional item model.

    When a pydantic model is given, every returned item is validated into
    an instance of it; otherwise items are plain dicts.

    Usage:
        async with DynamoTable.open(config, model=Order, region_name="eu-west-1") as orders:
            page = await orders.query({"where": {"customer_id": "c-1"}, "limit": 20})
            more = await orders.query(
                {"where": {"customer_id": "c-1"}, "limit": 20, "prev_cursor": page.cursor}
            )
    """

    def __init__(self, config: TableConfig, client: Any, model: type[M] | None = None) -> None:
        self.config = config
        self.client = client
        self.model = model
        self.serializer = DynamoSerializer()

    def _item_factory(self) -> Any:
        return self.model.model_validate if self.model is not None else None

    async def query(
        self, query_filter: Filter | Mapping[str, Any], index_name: str = DEFAULT_INDEX_NAME
    ) -> QueryResult[Any]:
        """Returns one page of items matching the filter, see query_with_cursor."""
        return await query_with_cursor(
            self.client,
            self.config,
            query_filter,
            index_name,
            serializer=self.serializer,
            item_factory=self._item_factory(),
        )

    async def batch_get(
        self, keys: Sequence[Mapping[str, Any]], fields: Sequence[str] | None = None
    ) -> list[Any | None]:
        """Returns the items for the keys in input order, None where absent."""
        return await batch_get_items(
            self.client,
            self.config,
            keys,
            fields,
            serializer=self.serializer,
            item_factory=self._item_factory(),
        )

    @classmethod
    @asynccontextmanager
    async def open(
        cls, config: TableConfig, model: type[M] | None = None, **client_kwargs: Any
    ) -> AsyncIterator["DynamoTable[M]"]:
        """
        Creates an aiobotocore DynamoDB client scoped to the block.

        client_kwargs are passed to create_client (region_name, endpoint_url,
        aws_access_key_id, ...).
        """
        session = aiobotocore.session.get_session()
        logger.debug(
            "Opening DynamoDB client",
            extra={"table": config.name, "endpoint": client_kwargs.get("endpoint_url")},
        )
        async with session.create_client("dynamodb", **client_kwargs) as client:
            yield cls(config, client, model)
