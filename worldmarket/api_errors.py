"""
API error handling. Structured JSON errors with codes.

Every error response: {"error": {"code": "...", "message": "...", "details": {...}}}
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from worldmarket.errors import (
    InvalidAmount, InvalidBet, InvalidOutcome,
    NumericInstability, PoolExists, PoolNotFound, StateUnavailable,
)


logger = logging.getLogger(__name__)


class APIError(Exception):
    """Structured API error with HTTP status and machine-readable code."""

    def __init__(self, status: int, code: str, message: str,
                 details: dict | None = None,
                 headers: dict | None = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers

    def response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content={"error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }},
            headers=self.headers,
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return exc.response()


def translate_engine_error(exc: Exception) -> APIError:
    """Translate engine exceptions to structured API errors."""
    msg = str(exc)

    if isinstance(exc, InvalidOutcome):
        return APIError(400, "invalid_outcome", msg)

    if isinstance(exc, InvalidBet):
        return APIError(400, "invalid_bet", msg)

    if isinstance(exc, InvalidAmount):
        return APIError(400, "invalid_amount", msg)

    if isinstance(exc, PoolNotFound):
        return APIError(404, "pool_not_found", msg)

    if isinstance(exc, PoolExists):
        return APIError(409, "pool_exists", msg)

    if isinstance(exc, StateUnavailable):
        logger.warning("lock contention: %s", msg)
        return APIError(503, "state_unavailable", msg,
                        headers={"Retry-After": "1"})

    if isinstance(exc, NumericInstability):
        logger.warning("numeric instability: %s", msg)
        return APIError(422, "numeric_instability", msg)

    return APIError(400, "bad_request", msg)
