"""
Opaque pagination cursors.

A cursor is the LastEvaluatedKey of a query, serialized as canonical JSON
(every value tagged with its type, numbers kept as exact text) and sealed
with AES-256-GCM under a key derived from the table's cursor secret.
Callers can neither read nor forge it; a cursor sealed with another secret,
or altered in any way, fails authentication and raises CursorError.

Token layout: "v1." + urlsafe base64 (unpadded) of nonce || ciphertext || tag.
"""

import base64
import binascii
import hashlib
import json
import math
import os
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigurationError, CursorError, ValidationError

CURSOR_VERSION = "v1"

_NONCE_SIZE = 12
_TAG_SIZE = 16

Key = dict[str, Any]


def _aead(secret: str | bytes) -> AESGCM:
    if not secret:
        raise ConfigurationError("A non-empty cursor secret is required", field="cursor_secret")
    raw = secret.encode("utf-8") if isinstance(secret, str) else secret
    return AESGCM(hashlib.sha256(raw).digest())


def _is_scalar(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, Decimal):
        return value.is_finite()
    return True


# Each value is stored as [tag, text] so that decoding restores its exact type:
# JSON alone would turn Decimal("0.1") into the float 0.1.
def _pack(value: Any) -> list[Any]:
    if isinstance(value, str):
        return ["S", value]
    if isinstance(value, Decimal):
        return ["D", str(value)]
    if isinstance(value, float):
        return ["F", repr(value)]
    return ["I", str(int(value))]


_UNPACKERS: dict[str, Callable[[str], Any]] = {"S": str, "D": Decimal, "F": float, "I": int}


def _unpack(packed: Any) -> Any:
    well_formed = isinstance(packed, list) and len(packed) == 2
    if not well_formed or not all(isinstance(part, str) for part in packed):
        raise CursorError("Cursor payload contains a malformed key value")
    unpack = _UNPACKERS.get(packed[0])
    if unpack is None:
        raise CursorError(f"Cursor payload contains an unknown value type {packed[0]!r}")
    try:
        value = unpack(packed[1])
    except (ValueError, ArithmeticError) as e:
        raise CursorError("Cursor payload contains an invalid number", original_error=e) from e
    if not _is_scalar(value):
        raise CursorError("Cursor payload contains a non-finite number")
    return value


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def encode_cursor(key: Key | None, secret: str | bytes) -> str | None:
    """
    Seals a continuation key into an opaque cursor.

    Returns None when there is no key, i.e. when there are no more pages.
    """
    if key is None:
        return None

    for name, value in key.items():
        if not _is_scalar(value):
            raise ValidationError(
                f"Key attribute '{name}' must be a string or a number", field=name, value=value
            )

    packed = {name: _pack(value) for name, value in key.items()}
    payload = json.dumps(packed, sort_keys=True, separators=(",", ":"))
    nonce = os.urandom(_NONCE_SIZE)
    sealed = _aead(secret).encrypt(nonce, payload.encode("utf-8"), CURSOR_VERSION.encode("ascii"))
    return f"{CURSOR_VERSION}.{_b64encode(nonce + sealed)}"


def decode_cursor(cursor: str | None, secret: str | bytes) -> Key | None:
    """
    Opens a cursor produced by encode_cursor with the same secret.

    Raises:
        CursorError: If the cursor is malformed, was tampered with or was
            sealed with a different secret
    """
    if not cursor:
        return None

    aead = _aead(secret)

    version, sep, body = cursor.partition(".")
    if version != CURSOR_VERSION or not sep or not body:
        raise CursorError("Unrecognized cursor format")

    try:
        blob = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
    except (binascii.Error, ValueError) as e:
        raise CursorError("Cursor is not valid base64", original_error=e) from e

    # Base64 tolerates stray characters and unused trailing bits; only the
    # canonical spelling of the blob is accepted.
    if _b64encode(blob) != body or len(blob) < _NONCE_SIZE + _TAG_SIZE:
        raise CursorError("Cursor is corrupted")

    nonce, sealed = blob[:_NONCE_SIZE], blob[_NONCE_SIZE:]
    try:
        payload = aead.decrypt(nonce, sealed, CURSOR_VERSION.encode("ascii"))
    except InvalidTag as e:
        raise CursorError("Cursor failed authentication", original_error=e) from e

    try:
        packed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CursorError("Cursor payload is not valid JSON", original_error=e) from e

    if not isinstance(packed, dict) or not packed:
        raise CursorError("Cursor payload is not a key")
    return {name: _unpack(value) for name, value in packed.items()}
