"""
Unit tests for batch_get_items.

Covers chunking and concurrency, unprocessed key retries with a bounded
budget, projection augmentation and restoring the input key order.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError

from dynapage import IndexDefinition, RetryPolicy, TableConfig, batch_get_items
from dynapage.batch import build_projection
from dynapage.exceptions import (
    StoreError,
    TableNotFoundError,
    UnprocessedKeysError,
    ValidationError,
)
from tests.helpers.fake_dynamo import TABLE_NAME, FakeDynamoClient


def _items(count):
    return [{"pk": f"p{i}", "sk": f"s{i}", "value": i} for i in range(count)]


def _keys(count):
    return [{"pk": f"p{i}", "sk": f"s{i}"} for i in range(count)]


@pytest.mark.unit
class TestProjection:
    def test_no_fields_means_no_projection(self):
        assert build_projection(None, IndexDefinition("pk", "sk")) == {}

    def test_key_attributes_are_added(self):
        projection = build_projection(["value"], IndexDefinition("pk", "sk"))

        assert projection == {
            "ProjectionExpression": "#p0, #p1, #p2",
            "ExpressionAttributeNames": {"#p0": "value", "#p1": "pk", "#p2": "sk"},
        }

    def test_key_attributes_are_not_duplicated(self):
        projection = build_projection(["sk", "value"], IndexDefinition("pk", "sk"))
        assert list(projection["ExpressionAttributeNames"].values()) == ["sk", "value", "pk"]

    def test_hash_only_table(self):
        projection = build_projection(["value"], IndexDefinition("pk"))
        assert list(projection["ExpressionAttributeNames"].values()) == ["value", "pk"]


@pytest.mark.unit
class TestBatchGet:
    @pytest.mark.asyncio
    async def test_empty_input_makes_no_request(self, table_config):
        client = AsyncMock()
        assert await batch_get_items(client, table_config, []) == []
        client.batch_get_item.assert_not_called()

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, table_config):
        client = FakeDynamoClient(items=_items(10))
        keys = list(reversed(_keys(10)))

        result = await batch_get_items(client, table_config, keys)

        assert [item["pk"] for item in result] == [key["pk"] for key in keys]
        assert len(client.batch_calls) == 1

    @pytest.mark.asyncio
    async def test_missing_items_are_none(self, table_config):
        client = FakeDynamoClient(items=_items(3))
        keys = [{"pk": "p0", "sk": "s0"}, {"pk": "nope", "sk": "s9"}, {"pk": "p2", "sk": "s2"}]

        result = await batch_get_items(client, table_config, keys)

        assert result[0]["value"] == 0
        assert result[1] is None
        assert result[2]["value"] == 2

    @pytest.mark.asyncio
    async def test_150_keys_are_split_into_two_concurrent_chunks(self, table_config):
        client = FakeDynamoClient(items=_items(140))
        keys = _keys(150)

        result = await batch_get_items(client, table_config, keys)

        assert [len(call[TABLE_NAME]["Keys"]) for call in client.batch_calls] == [100, 50]
        assert client.max_in_flight == 2
        assert len(result) == 150
        assert [item["pk"] for item in result[:140]] == [f"p{i}" for i in range(140)]
        assert result[140:] == [None] * 10

    @pytest.mark.asyncio
    async def test_duplicate_keys_are_requested_once(self, table_config):
        client = FakeDynamoClient(items=_items(2))
        keys = [{"pk": "p0", "sk": "s0"}, {"pk": "p1", "sk": "s1"}, {"pk": "p0", "sk": "s0"}]

        result = await batch_get_items(client, table_config, keys)

        assert len(client.batch_calls[0][TABLE_NAME]["Keys"]) == 2
        assert [item["pk"] for item in result] == ["p0", "p1", "p0"]

    @pytest.mark.asyncio
    async def test_numeric_keys_match_regardless_of_representation(self):
        table = TableConfig(
            name=TABLE_NAME, indexes={"default": IndexDefinition("pk", "sk")}
        )
        client = FakeDynamoClient(items=[{"pk": 1, "sk": 2, "value": "x"}])

        result = await batch_get_items(client, table, [{"pk": 1.0, "sk": 2}])

        assert result == [{"pk": 1, "sk": 2, "value": "x"}]

    @pytest.mark.asyncio
    async def test_numeric_keys_beyond_float_precision_stay_distinct(self):
        table = TableConfig(name=TABLE_NAME, indexes={"default": IndexDefinition("pk", "sk")})
        first_sk = Decimal("0.12345678901234567891")
        second_sk = Decimal("0.12345678901234567892")
        client = FakeDynamoClient(
            items=[
                {"pk": "a", "sk": first_sk, "value": "first"},
                {"pk": "a", "sk": second_sk, "value": "second"},
            ]
        )

        result = await batch_get_items(
            client, table, [{"pk": "a", "sk": second_sk}, {"pk": "a", "sk": first_sk}]
        )

        assert client.batch_calls[0][TABLE_NAME]["Keys"] == [
            {"pk": {"S": "a"}, "sk": {"N": "0.12345678901234567892"}},
            {"pk": {"S": "a"}, "sk": {"N": "0.12345678901234567891"}},
        ]
        assert [item["value"] for item in result] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_extra_key_attributes_are_stripped(self, table_config):
        client = FakeDynamoClient(items=_items(1))

        await batch_get_items(client, table_config, [{"pk": "p0", "sk": "s0", "value": 0}])

        assert client.batch_calls[0][TABLE_NAME]["Keys"] == [
            {"pk": {"S": "p0"}, "sk": {"S": "s0"}}
        ]

    @pytest.mark.asyncio
    async def test_key_missing_sort_key_is_rejected(self, table_config):
        client = AsyncMock()

        with pytest.raises(ValidationError, match="missing attribute 'sk'"):
            await batch_get_items(client, table_config, [{"pk": "p0"}])

        client.batch_get_item.assert_not_called()

    @pytest.mark.asyncio
    async def test_projection_is_expanded_with_primary_key(self, table_config):
        client = FakeDynamoClient(items=_items(2))

        result = await batch_get_items(client, table_config, _keys(2), fields=["value"])

        request = client.batch_calls[0][TABLE_NAME]
        assert set(request["ExpressionAttributeNames"].values()) == {"value", "pk", "sk"}
        assert result == [
            {"pk": "p0", "sk": "s0", "value": 0},
            {"pk": "p1", "sk": "s1", "value": 1},
        ]

    @pytest.mark.asyncio
    async def test_item_factory_is_applied(self, table_config):
        client = FakeDynamoClient(items=_items(2))

        result = await batch_get_items(
            client, table_config, _keys(3), item_factory=lambda item: item["value"]
        )

        assert result == [0, 1, None]


@pytest.mark.unit
class TestUnprocessedKeys:
    @pytest.mark.asyncio
    async def test_unprocessed_keys_are_requested_again(self, table_config):
        client = FakeDynamoClient(items=_items(8), unprocessed_rounds=2)
        sleep = AsyncMock()

        result = await batch_get_items(client, table_config, _keys(8), sleep=sleep)

        sizes = [len(call[TABLE_NAME]["Keys"]) for call in client.batch_calls]
        assert sizes == [8, 4, 2]
        assert [item["value"] for item in result] == list(range(8))
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_requests_exactly_the_unprocessed_keys(self, table_config):
        client = FakeDynamoClient(items=_items(4), unprocessed_rounds=1)

        await batch_get_items(client, table_config, _keys(4), sleep=AsyncMock())

        retried = client.batch_calls[1][TABLE_NAME]["Keys"]
        assert retried == [
            {"pk": {"S": "p2"}, "sk": {"S": "s2"}},
            {"pk": {"S": "p3"}, "sk": {"S": "s3"}},
        ]

    @pytest.mark.asyncio
    async def test_backoff_grows_exponentially(self, table_config):
        table_config.batch_retry = RetryPolicy(max_attempts=5, base_delay=0.1, max_delay=0.25)
        client = FakeDynamoClient(items=_items(16), unprocessed_rounds=3)
        sleep = AsyncMock()

        await batch_get_items(client, table_config, _keys(16), sleep=sleep)

        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2, 0.25]

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self, table_config):
        table_config.batch_retry = RetryPolicy(max_attempts=3, base_delay=0.0)
        client = AsyncMock()
        client.batch_get_item.return_value = {
            "Responses": {TABLE_NAME: []},
            "UnprocessedKeys": {TABLE_NAME: {"Keys": [{"pk": {"S": "p0"}, "sk": {"S": "s0"}}]}},
        }

        with pytest.raises(UnprocessedKeysError) as exc_info:
            await batch_get_items(client, table_config, _keys(1), sleep=AsyncMock())

        assert client.batch_get_item.await_count == 3
        assert exc_info.value.keys == [{"pk": "p0", "sk": "s0"}]
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value, StoreError)

    @pytest.mark.asyncio
    async def test_store_errors_are_translated(self, table_config):
        client = AsyncMock()
        client.batch_get_item.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "no table"}},
            "BatchGetItem",
        )

        with pytest.raises(TableNotFoundError) as exc_info:
            await batch_get_items(client, table_config, _keys(1))

        assert exc_info.value.table_name == TABLE_NAME

    @pytest.mark.asyncio
    async def test_failed_chunk_cancels_the_other_chunks(self, table_config):
        table_config.batch_chunk_size = 1
        cancelled = asyncio.Event()

        async def batch_get_item(RequestItems):
            key = RequestItems[TABLE_NAME]["Keys"][0]
            if key["pk"] == {"S": "p0"}:
                raise ClientError(
                    {"Error": {"Code": "InternalServerError", "Message": "boom"}}, "BatchGetItem"
                )
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        client = AsyncMock()
        client.batch_get_item.side_effect = batch_get_item

        with pytest.raises(StoreError, match="InternalServerError"):
            await batch_get_items(client, table_config, _keys(2))

        assert cancelled.is_set()
