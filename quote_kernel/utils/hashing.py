"""
Deterministic hashing and canonical JSON.

Request fingerprints for the idempotency cache and the response bodies it
replays are both produced here, so that the same logical value always
serializes to the same bytes.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Serializer for hashing: Decimals are normalized so that ``150``,
    ``150.0`` and ``150.00`` fingerprint identically.
    """
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _response_serializer(obj: Any) -> Any:
    """Serializer for response bodies: Decimals keep their scale."""
    if isinstance(obj, Decimal):
        return format(obj, "f")
    return _json_serializer(obj)


def canonicalize_json(data: Any) -> str:
    """
    Canonical JSON for hashing: sorted keys, no whitespace, normalized
    special types.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def render_json(data: Any) -> str:
    """Canonical JSON for response bodies; stored and replayed verbatim."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_response_serializer,
    )


def hash_payload(payload: Any) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_request(
    method: str,
    route: str,
    body: Any = None,
    query: Any = None,
    params: Any = None,
) -> str:
    """
    Fingerprint of an unsafe request.

    Method is upper-cased; a missing body hashes the same as ``{}``.
    """
    return hash_payload({
        "method": method.upper(),
        "route": route,
        "body": body if body is not None else {},
        "query": query if query is not None else {},
        "params": params if params is not None else {},
    })
