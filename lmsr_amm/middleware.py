"""
Operator auth dependency. Every mutation is an operator call.
"""

import os
from typing import Annotated

from fastapi import Depends, Request

from lmsr_amm.api_errors import APIError


ADMIN_KEY = os.environ.get("LMSR_ADMIN_KEY", "")


def _get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:]
    return None


async def require_admin(request: Request) -> None:
    """Require the admin API key."""
    if not ADMIN_KEY:
        raise APIError(500, "admin_required",
                       "LMSR_ADMIN_KEY not configured")
    token = _get_bearer_token(request)
    if not token:
        raise APIError(401, "auth_required", "Authorization header required")
    if token != ADMIN_KEY:
        raise APIError(403, "admin_required", "Admin API key required")


AdminDep = Annotated[None, Depends(require_admin)]
