from dataclasses import dataclass, field

from .exceptions import ConfigurationError

# Name under which the table's own primary key is registered in TableConfig.indexes.
DEFAULT_INDEX_NAME = "default"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 50

# Hard limit of the BatchGetItem API.
BATCH_GET_MAX_KEYS = 100


@dataclass(frozen=True)
class IndexDefinition:
    """
    Key schema of the table or of one of its secondary indexes.

    The partition key is always required; the sort key is optional, but
    range queries and cursor pagination need it.
    """

    partition_key: str
    sort_key: str | None = None

    @property
    def key_names(self) -> tuple[str, ...]:
        if self.sort_key:
            return (self.partition_key, self.sort_key)
        return (self.partition_key,)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounds the re-requests issued for keys DynamoDB left unprocessed.

    Attributes:
        max_attempts: Total number of batch_get_item calls per chunk, first call included
        base_delay: Delay in seconds before the first retry, doubled on each retry
        max_delay: Upper bound for a single delay
    """

    max_attempts: int = 10
    base_delay: float = 0.05
    max_delay: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", field="max_attempts")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Retry delays cannot be negative")

    def delay_for(self, retry: int) -> float:
        """Returns the backoff before the given retry (1 for the first retry)."""
        return float(min(self.base_delay * (2 ** (retry - 1)), self.max_delay))


@dataclass
class TableConfig:
    """
    Everything the query and batch-get operations need to know about a table.

    Attributes:
        name: DynamoDB table name
        indexes: Index name -> key schema. DEFAULT_INDEX_NAME is the table itself.
        cursor_secret: Secret protecting pagination cursors (required for cursor queries)
        default_page_size: Page size used when a filter has no limit
        max_page_size: Largest limit a caller may request
        batch_chunk_size: Keys per BatchGetItem request
        batch_retry: Retry budget for unprocessed batch-get keys
    """

    name: str
    indexes: dict[str, IndexDefinition]
    cursor_secret: str | None = None
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE
    batch_chunk_size: int = BATCH_GET_MAX_KEYS
    batch_retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Table name is required", field="name")
        if DEFAULT_INDEX_NAME not in self.indexes:
            raise ConfigurationError(
                f"Table '{self.name}' must define the '{DEFAULT_INDEX_NAME}' index",
                field="indexes",
            )
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ConfigurationError(
                f"default_page_size must be between 1 and max_page_size ({self.max_page_size})",
                field="default_page_size",
                value=self.default_page_size,
            )
        if not 1 <= self.batch_chunk_size <= BATCH_GET_MAX_KEYS:
            raise ConfigurationError(
                f"batch_chunk_size must be between 1 and {BATCH_GET_MAX_KEYS}",
                field="batch_chunk_size",
                value=self.batch_chunk_size,
            )

    @property
    def primary_index(self) -> IndexDefinition:
        return self.indexes[DEFAULT_INDEX_NAME]

    def get_index(self, index_name: str) -> IndexDefinition:
        """
        Get an index definition by name.

        Raises:
            ConfigurationError: If the index is not defined on this table
        """
        index = self.indexes.get(index_name)
        if index is None:
            raise ConfigurationError(
                f"Index '{index_name}' is not defined on table '{self.name}'",
                field="index_name",
                value=index_name,
            )
        return index

    def has_index(self, index_name: str) -> bool:
        return index_name in self.indexes
