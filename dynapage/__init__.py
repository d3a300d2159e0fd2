from .batch import batch_get_items
from .conditions import (
    Attr,
    FilterCondition,
    KeyCondition,
    begins_with,
    between,
    eq,
    ge,
    gt,
    le,
    lt,
)
from .config import (
    BATCH_GET_MAX_KEYS,
    DEFAULT_INDEX_NAME,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    IndexDefinition,
    RetryPolicy,
    TableConfig,
)
from .cursor import decode_cursor, encode_cursor
from .exceptions import (
    ConfigurationError,
    CursorError,
    DynapageError,
    ProvisionedThroughputExceededError,
    RequestTimeoutError,
    StoreError,
    StoreValidationError,
    TableNotFoundError,
    UnprocessedKeysError,
    ValidationError,
)
from .pagination import QueryResult, query_with_cursor
from .query import Direction, Filter, QueryParams, build_query_params
from .table import DynamoTable

__all__ = [
    "DynamoTable",
    "TableConfig",
    "IndexDefinition",
    "RetryPolicy",
    "DEFAULT_INDEX_NAME",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "BATCH_GET_MAX_KEYS",
    # Queries
    "Filter",
    "Direction",
    "QueryParams",
    "QueryResult",
    "build_query_params",
    "query_with_cursor",
    "batch_get_items",
    # Cursors
    "encode_cursor",
    "decode_cursor",
    # Conditions
    "KeyCondition",
    "begins_with",
    "between",
    "eq",
    "lt",
    "le",
    "gt",
    "ge",
    "Attr",
    "FilterCondition",
    # Exceptions
    "DynapageError",
    "ValidationError",
    "ConfigurationError",
    "CursorError",
    "StoreError",
    "TableNotFoundError",
    "ProvisionedThroughputExceededError",
    "RequestTimeoutError",
    "StoreValidationError",
    "UnprocessedKeysError",
]
