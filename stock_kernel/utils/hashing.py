"""
Canonical JSON and SHA-256 helpers.

Two consumers: the audit hash chain, and the Idempotency-Key fingerprint.
Both need the same input to hash the same way on every run, so JSON is
written with sorted keys and no whitespace, and non-JSON types are reduced
to strings before hashing.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _reduce(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} cannot be hashed as JSON")


def canonicalize_json(data: Any) -> str:
    """Sorted-key, whitespace-free JSON for ``data``."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_reduce)


def to_json_safe(data: Any) -> Any:
    """``data`` with UUIDs, datetimes and Decimals turned into JSON primitives."""
    return None if data is None else json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain link: the event header, its payload hash and the predecessor's hash."""
    return _sha256("|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS)))


def request_fingerprint(method: str, path: str, body: Any, user_id, tenant_id) -> str:
    """Identity of an HTTP write, compared when an Idempotency-Key is replayed."""
    return hash_payload(
        {
            "method": method.upper(),
            "path": path,
            "body": body,
            "user_id": str(user_id),
            "tenant_id": str(tenant_id),
        }
    )
