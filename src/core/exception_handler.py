"""
Global exception handler for the Media Upload Orchestrator.
Maps domain exceptions to HTTP responses carrying the error category.
"""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .exceptions import (
    AuthException,
    DynamoDBException,
    FileTooLargeException,
    MediaUploadException,
    ProtocolException,
    RetryExhaustedException,
    S3Exception,
    SessionNotFoundException,
    TransientNetworkException,
    UploadCancelledException,
    ValidationException
)

logger = logging.getLogger(__name__)

# Most specific first; the first match wins
ERROR_RESPONSES = [
    (FileTooLargeException, 413, "File Too Large"),
    (ValidationException, 400, "Validation Error"),
    (SessionNotFoundException, 404, "Not Found"),
    (AuthException, 401, "Platform Authorization Failed"),
    (UploadCancelledException, 409, "Upload Cancelled"),
    (RetryExhaustedException, 502, "Platform Unavailable"),
    (ProtocolException, 502, "Platform Error"),
    (TransientNetworkException, 503, "Platform Temporarily Unavailable"),
    (DynamoDBException, 500, "Database Error"),
    (S3Exception, 500, "Storage Error"),
]


def error_response(exc: MediaUploadException) -> JSONResponse:
    for exc_type, status_code, title in ERROR_RESPONSES:
        if isinstance(exc, exc_type):
            break
    else:
        status_code, title = 500, "Upload Error"

    content = {"error": title, "message": exc.message, "category": exc.category.value}
    if isinstance(exc, RetryExhaustedException):
        content["exhausted"] = True
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(MediaUploadException)
    async def handle_upload_error(request: Request, exc: MediaUploadException):
        response = error_response(exc)
        if response.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return response

    @app.exception_handler(Exception)
    async def handle_generic_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "message": "An unexpected error occurred"}
        )
