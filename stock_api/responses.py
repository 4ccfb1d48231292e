"""
Success envelopes and Idempotency-Key handling for write routes.

A write made with an ``Idempotency-Key`` header is looked up first; a
replay answers with the stored status and body plus
``Idempotent-Replayed: true`` and does not run the action again.  Fresh
responses are stored in the same transaction as the write itself.
"""

from typing import Any, Callable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stock_api.deps import Kernel
from stock_kernel.domain.pagination import Page
from stock_kernel.domain.principal import Principal
from stock_kernel.utils.hashing import request_fingerprint

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replayed"


def ok(data: Any) -> dict:
    return {"success": True, "data": jsonable_encoder(data)}


def dump(schema: type[BaseModel], obj: Any) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


def page_payload(page: Page, schema: type[BaseModel] | None = None) -> dict:
    if schema is None:
        items = jsonable_encoder(list(page.items))
    else:
        items = [dump(schema, item) for item in page.items]
    return {
        "items": items,
        "has_next_page": page.has_next_page,
        "next_cursor": page.next_cursor,
        "total": page.total,
        "applied": jsonable_encoder(page.applied),
    }


def write(
    kernel: Kernel,
    principal: Principal | None,
    request: Request,
    action: Callable[[], Any],
    body: BaseModel | None = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Run a write action and wrap its result in the success envelope.

    Without an Idempotency-Key header (or without a principal, as on tenant
    bootstrap) the action simply runs.
    """
    key = request.headers.get(IDEMPOTENCY_HEADER)
    if not key or principal is None:
        return JSONResponse(status_code=status_code, content=ok(action()))

    path = request.url.path
    fingerprint = request_fingerprint(
        request.method,
        path,
        body.model_dump(mode="json") if body is not None else None,
        principal.user_id,
        principal.tenant_id,
    )
    replay = kernel.idempotency.lookup(principal.tenant_id, key, fingerprint)
    if replay is not None:
        return JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={REPLAY_HEADER: "true"},
        )

    content = ok(action())
    kernel.idempotency.store(
        principal.tenant_id,
        principal.user_id,
        key,
        request.method,
        path,
        fingerprint,
        status_code,
        content,
    )
    return JSONResponse(status_code=status_code, content=content)
