"""
Domain errors raised by the lifecycle engine and services.

Each one is an ``HTTPException`` so FastAPI renders it as
``{"detail": "..."}`` with the right status code without any extra handler.
"""

import logging

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from complaint_portal.config import ENVIRONMENT

logger = logging.getLogger(__name__)


class PortalError(HTTPException):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class ValidationFailed(PortalError):
    status_code = 400


class Conflict(PortalError):
    status_code = 400


class InvalidTransition(PortalError):
    """Mutation attempted on a complaint whose state does not allow it."""
    status_code = 400


class AuthenticationFailed(PortalError):
    status_code = 401


class AccessDenied(PortalError):
    status_code = 403


class NotFound(PortalError):
    status_code = 404


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"detail": "Internal server error"}
    if ENVIRONMENT == "development":
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)
