"""
API error handling. Structured JSON errors with codes.

Every error response: {"error": {"code": "...", "message": "...", "details": {...}}}
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from lmsr_amm.errors import EngineError
from lmsr_amm.ledger import (
    AccountNotFound, InsufficientBalance, InsufficientPosition, LedgerError,
)


class APIError(Exception):
    """Structured API error with HTTP status and machine-readable code."""

    def __init__(self, status: int, code: str, message: str,
                 details: dict | None = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}

    def response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content={"error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }},
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return exc.response()


# Engine codes that aren't plain 400s
_STATUS_BY_CODE = {
    "market_not_found": 404,
    "market_exists": 409,
    "reentrancy": 409,
    "invariant_violation": 422,
}


def translate_engine_error(exc: Exception) -> APIError:
    """Translate engine and ledger exceptions to structured API errors."""
    msg = str(exc)

    if isinstance(exc, EngineError):
        return APIError(_STATUS_BY_CODE.get(exc.code, 400), exc.code, msg,
                        {"type": type(exc).__name__})

    if isinstance(exc, InsufficientBalance):
        return APIError(400, "insufficient_balance", msg)

    if isinstance(exc, InsufficientPosition):
        return APIError(400, "insufficient_position", msg)

    if isinstance(exc, AccountNotFound):
        return APIError(404, "account_not_found", msg)

    if isinstance(exc, LedgerError) and "not found" in msg:
        return APIError(404, "market_not_found", msg)

    return APIError(400, "bad_request", msg)
