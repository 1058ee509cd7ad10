from __future__ import annotations

import base64
import hashlib
from typing import Any

import orjson


def _orjson_dumps(obj: Any) -> bytes:
    # sorted keys: the same record always serializes to the same bytes
    return orjson.dumps(
        obj,
        option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS,
        default=str,
    )


def content_digest(data: bytes, length: int = 20) -> str:
    """URL-safe base64 sha256, unpadded and cut to `length` chars."""
    h = hashlib.sha256(data).digest()
    return base64.urlsafe_b64encode(h).decode("ascii").rstrip("=")[:length]


def fallback_identifier(prefix: str, record: Any) -> str:
    """
    Identifier for a feed record that carries none of its own.

    Derived from the record content, so an unchanged record re-polled in a
    later cycle maps onto the same stored document.
    """
    return f"{prefix}-{content_digest(_orjson_dumps(record))}"
