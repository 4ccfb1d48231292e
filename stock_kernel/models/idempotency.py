"""
Module: stock_kernel.models.idempotency
Responsibility: ORM persistence for stored responses of idempotent HTTP writes.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - idempotency_key is unique per tenant (uq_idempotency_tenant_key).
    - A stored response is only replayed for an identical request
      fingerprint and before expires_at (IdempotencyService).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TimestampMixin


class IdempotencyRecord(TimestampMixin, Base):
    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_idempotency_tenant_key"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)

    method: Mapped[str] = mapped_column(String(10), nullable=False)

    path: Mapped[str] = mapped_column(String(500), nullable=False)

    # sha256 over canonical JSON of method, path, body, user and tenant
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    status_code: Mapped[int] = mapped_column(nullable=False)

    response_body: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)
