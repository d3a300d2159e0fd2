import hashlib
import logging
from typing import Any

logger = logging.getLogger("dynapage")

# Applications that never configure logging should not see "no handler" warnings.
logger.addHandler(logging.NullHandler())


def _digest(value: Any) -> str:
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()[:8]


def redact_key(key: dict[str, Any] | Any | None) -> str | None:
    """
    Redacts key values for logging.

    Attribute names stay readable, values are replaced by a short sha256 prefix
    so log lines can be correlated without exposing partition or sort values.
    """
    if key is None:
        return None
    if isinstance(key, dict):
        return str({name: _digest(value) for name, value in sorted(key.items())})
    return _digest(key)
