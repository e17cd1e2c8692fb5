"""Exception handlers translating domain errors into JSON responses"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.exceptions import BookingError, PersistenceError
from infrastructure.config import get_settings

logger = logging.getLogger(__name__)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    body = {
        "error": type(exc).__name__,
        "message": exc.message,
        "code": exc.error_code.value,
    }
    if exc.details:
        body["details"] = exc.details
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code.value}")
    return JSONResponse(status_code=exc.status_code, content=body)


async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.details}")
    body = {
        "error": type(exc).__name__,
        "message": "Internal server error",
        "code": exc.error_code.value,
    }
    if get_settings().DEBUG:
        body["message"] = exc.message
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.add_exception_handler(BookingError, booking_error_handler)
