"""
Shared pytest fixtures for dynapage tests.

Provides table configurations, sample items and an in-memory client
(see tests/helpers/fake_dynamo.py).
"""

from typing import Any

import pytest

from dynapage import IndexDefinition, RetryPolicy, TableConfig
from tests.helpers.fake_dynamo import SECRET, TABLE_NAME, FakeDynamoClient


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests with mocked dependencies")


@pytest.fixture
def table_config() -> TableConfig:
    """Table with a composite primary key, a reverse index and a hash-only index."""
    return TableConfig(
        name=TABLE_NAME,
        indexes={
            "default": IndexDefinition(partition_key="pk", sort_key="sk"),
            "reverse": IndexDefinition(partition_key="sk", sort_key="pk"),
            "by_status": IndexDefinition(partition_key="status"),
        },
        cursor_secret=SECRET,
        batch_retry=RetryPolicy(max_attempts=5, base_delay=0.0, max_delay=0.0),
    )


@pytest.fixture
def sample_items() -> list[dict[str, Any]]:
    """Fifty items in one partition, inserted out of sort order."""
    items = [
        {"pk": "customer#1", "sk": f"order#{i:03d}", "total": i * 10, "status": "open"}
        for i in range(50)
    ]
    return items[::2] + items[1::2]


@pytest.fixture
def fake_client(sample_items) -> FakeDynamoClient:
    return FakeDynamoClient(items=sample_items)
