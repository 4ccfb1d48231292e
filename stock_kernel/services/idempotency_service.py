"""
IdempotencyService -- replay protection for HTTP writes.

Responsibility:
    Remembers the response of a write made with an ``Idempotency-Key`` so a
    retried request gets the same answer instead of repeating the effect.

Architecture position:
    Kernel > Services.  Used by stock_api's route helper; not audited.

Invariants enforced:
    - A key is unique per tenant.
    - The same key with a different request fingerprint is refused
      (IdempotencyKeyReusedError, 409).
    - Expired records are treated as absent and overwritten on store.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import IdempotencyKeyReusedError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.idempotency import IdempotencyRecord
from stock_kernel.utils.hashing import to_json_safe

logger = get_logger("services.idempotency")

DEFAULT_TTL_MINUTES = 60


class IdempotencyService:
    def __init__(self, session: Session, clock: Clock | None = None, ttl_minutes: int = DEFAULT_TTL_MINUTES):
        self.session = session
        self._clock = clock or SystemClock()
        self._ttl = timedelta(minutes=ttl_minutes)

    def _find(self, tenant_id: UUID, key: str) -> IdempotencyRecord | None:
        return self.session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.tenant_id == tenant_id,
                IdempotencyRecord.idempotency_key == key,
            )
        ).scalar_one_or_none()

    def lookup(self, tenant_id: UUID, key: str, fingerprint: str) -> IdempotencyRecord | None:
        """
        Return the stored response for a replay, or None for a fresh request.

        Raises:
            IdempotencyKeyReusedError: key already used for another request.
        """
        record = self._find(tenant_id, key)
        if record is None or record.expires_at <= self._clock.now():
            return None
        if record.request_fingerprint != fingerprint:
            logger.warning(
                "idempotency_key_reused",
                extra={"idempotency_key": key, "path": record.path},
            )
            raise IdempotencyKeyReusedError(key)
        logger.info("idempotency_replay", extra={"idempotency_key": key, "path": record.path})
        return record

    def store(
        self,
        tenant_id: UUID,
        user_id: UUID,
        key: str,
        method: str,
        path: str,
        fingerprint: str,
        status_code: int,
        response_body: Any,
    ) -> IdempotencyRecord:
        expires_at = self._clock.now() + self._ttl
        record = self._find(tenant_id, key)
        if record is None:
            record = IdempotencyRecord(tenant_id=tenant_id, idempotency_key=key)
            self.session.add(record)
        record.user_id = user_id
        record.method = method.upper()
        record.path = path
        record.request_fingerprint = fingerprint
        record.status_code = status_code
        record.response_body = to_json_safe(response_body)
        record.expires_at = expires_at
        self.session.flush()
        return record
