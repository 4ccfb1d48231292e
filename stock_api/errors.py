"""
Central error handling for the HTTP API.

Every error leaves the API in one envelope:

    {"success": false, "data": null,
     "error": {"errorCode", "httpStatusCode", "userFacingMessage",
               "developerMessage"?, "correlationId"}}

Mapping:
    StockKernelError         -> its ``http_status`` / ``code``
    RequestValidationError   -> 400 VALIDATION_ERROR
    anything else            -> 500 INTERNAL_ERROR (logged with traceback)
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stock_kernel.exceptions import StockKernelError, ValidationError
from stock_kernel.logging_config import LogContext, get_logger

logger = get_logger("api.errors")

CORRELATION_HEADER = "X-Correlation-Id"


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None) or LogContext.get("correlation_id")


def error_body(
    request: Request,
    code: str,
    status: int,
    message: str,
    developer_message: str | None = None,
) -> dict:
    error = {
        "errorCode": code,
        "httpStatusCode": status,
        "userFacingMessage": message,
        "correlationId": _correlation_id(request),
    }
    if developer_message:
        error["developerMessage"] = developer_message
    return {"success": False, "data": None, "error": error}


def _response(request: Request, status: int, body: dict) -> JSONResponse:
    headers = {}
    correlation_id = _correlation_id(request)
    if correlation_id:
        headers[CORRELATION_HEADER] = correlation_id
    return JSONResponse(status_code=status, content=body, headers=headers)


async def handle_kernel_error(request: Request, exc: StockKernelError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "request_failed",
        extra={
            "error_code": exc.code,
            "http_status": exc.http_status,
            "error_type": type(exc).__name__,
        },
    )
    return _response(
        request,
        exc.http_status,
        error_body(request, exc.code, exc.http_status, exc.message, exc.developer_message),
    )


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = jsonable_encoder(exc.errors())
    first = details[0] if details else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    developer_message = f"{location}: {first.get('msg')}" if first else None
    logger.info("request_invalid", extra={"error_count": len(details)})
    return _response(
        request,
        ValidationError.http_status,
        error_body(
            request,
            ValidationError.code,
            ValidationError.http_status,
            ValidationError.default_message,
            developer_message,
        ),
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", exc_info=exc)
    return _response(
        request,
        StockKernelError.http_status,
        error_body(
            request,
            StockKernelError.code,
            StockKernelError.http_status,
            StockKernelError.default_message,
        ),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StockKernelError, handle_kernel_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
