"""
Module: stock_kernel.domain.pagination
Responsibility: Opaque keyset cursors and the Page result shape shared by
    every list selector.
Architecture position: Kernel > Domain.  Zero I/O.

A cursor is base64url(JSON) of the last row's sort key, e.g.
``{"k": ["2025-01-01T12:00:00+00:00", "8c1e..."]}``.  Clients must treat it
as opaque.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stock_kernel.exceptions import ValidationError

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


@dataclass(frozen=True)
class Page:
    """
    One page of a keyset-paginated listing.

    ``applied`` echoes the effective filters and sort, after defaults and
    clamping, so clients can see what was actually run.
    """

    items: tuple
    has_next_page: bool
    next_cursor: str | None
    applied: dict[str, Any] = field(default_factory=dict)
    total: int | None = None


def clamp_limit(limit: int | None, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


def encode_cursor(key: list) -> str:
    raw = json.dumps({"k": key}, separators=(",", ":"), default=str).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> list:
    """
    Decode a cursor produced by encode_cursor().

    Raises:
        ValidationError: If the cursor is malformed.
    """
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        key = data["k"]
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as exc:
        raise ValidationError("Invalid cursor", developer_message=str(exc)) from exc
    if not isinstance(key, list):
        raise ValidationError("Invalid cursor")
    return key


class ArchiveFilter(str, Enum):
    """Which rows a list includes with respect to archival."""

    ACTIVE_ONLY = "active-only"
    ARCHIVED_ONLY = "archived-only"
    ALL = "all"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"
