"""
Exception handlers mapping service errors to JSON responses.

Error response format:
    {"message": "Human-readable error message", "code": "MACHINE_READABLE_CODE"}
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import PocketBankError
from ..logging_config import get_logger, log_action


logger = get_logger("pocket_bank.api")


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "code": code})


async def pocket_bank_error_handler(request: Request, exc: PocketBankError) -> JSONResponse:
    level = "error" if exc.status_code >= 500 else "info"
    log_action(
        logger, level, f"{request.method} {request.url.path} failed: {exc.message}",
        action="request_failed", resource=request.url.path,
        extra={"code": exc.code, "status": exc.status_code}
    )
    return _error_response(exc.status_code, exc.message, exc.code)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {location} {first.get('msg', '')}".strip()
    else:
        message = "Invalid request body"
    return _error_response(status.HTTP_400_BAD_REQUEST, message, "VALIDATION_ERROR")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error", "INTERNAL_ERROR")


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PocketBankError, pocket_bank_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
