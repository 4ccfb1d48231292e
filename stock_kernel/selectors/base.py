"""
Module: stock_kernel.selectors.base
Responsibility: Base class for read-only selectors and the shared keyset
    pagination helper.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  From services/ only the read-only AccessService is
    used, for branch-membership checks.

Invariants enforced:
    - Read-only access: selectors never add, flush or commit.
    - Keyset pagination always ends its sort with the primary key, so pages
      never overlap or skip rows that share a sort value.
"""

from abc import ABC
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import Select, and_, or_
from sqlalchemy.orm import Session

from stock_kernel.domain.pagination import clamp_limit, decode_cursor, encode_cursor
from stock_kernel.exceptions import ValidationError


def _identity(value):
    return value


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class SortKey:
    """
    One column of a keyset sort.

    ``value`` extracts the key from a result row; ``parse`` turns the JSON
    cursor value back into a bindable Python value.
    """

    column: Any
    value: Callable[[Any], Any]
    descending: bool = False
    parse: Callable[[Any], Any] = _identity


def _cursor_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _keyset_condition(keys: list[SortKey], values: list[Any]):
    clauses = []
    for i, key in enumerate(keys):
        equal_prefix = [k.column == v for k, v in zip(keys[:i], values[:i])]
        beyond = key.column < values[i] if key.descending else key.column > values[i]
        clauses.append(and_(*equal_prefix, beyond))
    return or_(*clauses)


def paginate(
    session: Session,
    stmt: Select,
    keys: list[SortKey],
    limit: int | None,
    cursor: str | None = None,
) -> tuple[list, bool, str | None]:
    """
    Run ``stmt`` as one keyset page.

    Returns:
        (rows, has_next_page, next_cursor)

    Raises:
        ValidationError: If the cursor does not fit this sort.
    """
    limit = clamp_limit(limit)
    if cursor:
        raw = decode_cursor(cursor)
        if len(raw) != len(keys):
            raise ValidationError("Invalid cursor")
        try:
            values = [key.parse(v) for key, v in zip(keys, raw)]
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid cursor", developer_message=str(exc)) from exc
        stmt = stmt.where(_keyset_condition(keys, values))

    stmt = stmt.order_by(
        *[key.column.desc() if key.descending else key.column.asc() for key in keys]
    ).limit(limit + 1)

    rows = list(session.execute(stmt).scalars().all())
    has_next = len(rows) > limit
    rows = rows[:limit]
    next_cursor = None
    if has_next and rows:
        last = rows[-1]
        next_cursor = encode_cursor([_cursor_value(key.value(last)) for key in keys])
    return rows, has_next, next_cursor


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
