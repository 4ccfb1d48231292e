"""
Module: stock_kernel.models.sequence_counter
Responsibility: Named monotonic counters backing SequenceService.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "audit_event", "transfer:<tenant>:2025")
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(nullable=False, default=0)
