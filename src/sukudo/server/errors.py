"""Standardized API error responses.

Every error body has ``error`` (human-readable) and ``code``
(machine-readable), plus optional ``details``.
"""

from __future__ import annotations

from typing import Any

from aiohttp import web

INVALID_REQUEST = "INVALID_REQUEST"
INVALID_JSON = "INVALID_JSON"
INVALID_PARAMETER = "INVALID_PARAMETER"
INVALID_ID_FORMAT = "INVALID_ID_FORMAT"
VALIDATION_FAILED = "VALIDATION_FAILED"
NOT_FOUND = "NOT_FOUND"
STORAGE_ERROR = "STORAGE_ERROR"
SHUTTING_DOWN = "SHUTTING_DOWN"
DATABASE_UNAVAILABLE = "DATABASE_UNAVAILABLE"


def api_error(
    message: str,
    *,
    code: str,
    status: int = 400,
    details: Any = None,
) -> web.Response:
    """Create a JSON error response."""
    body: dict[str, Any] = {"error": message, "code": code}
    if details is not None:
        body["details"] = details
    return web.json_response(body, status=status)
