"""
FastAPI application entry point for the card content service.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from card_service.config import get_settings
from card_service.errors import CardServiceError
from card_service.routes import router

logger = logging.getLogger(__name__)

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "idempotency-key",
]


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message}
    )


async def handle_card_service_error(
    request: Request, exc: CardServiceError
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Error in %s: %s", request.url.path, exc)
    else:
        logger.warning("Rejected %s: %s", request.url.path, exc)
    return _error_response(exc.status_code, str(exc) or "Unknown error")


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning("Malformed request to %s: %s", request.url.path, exc.errors())
    return _error_response(400, "Invalid or missing JSON body")


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Card Content Service", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
    )
    app.add_exception_handler(CardServiceError, handle_card_service_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
