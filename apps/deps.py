# apps/deps.py
import hmac
import logging
from typing import Any, Optional

import jwt
from fastapi import Header, Request
from fastapi.responses import JSONResponse

from apps.container import Container
from shared.auth_tokens import decode_token

logger = logging.getLogger(__name__)

# Error codes
ERROR_UNAUTHORIZED = "UNAUTHORIZED"
ERROR_BAD_REQUEST = "BAD_REQUEST"
ERROR_NOT_FOUND = "NOT_FOUND"
ERROR_CONFLICT = "CONFLICT"
ERROR_UNEXPECTED = "UNEXPECTED_ERROR"


class ApiError(Exception):
    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def _err(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": code, "message": message})


def _ok(data: Any = None, message: Optional[str] = None, status: int = 200) -> JSONResponse:
    payload: dict = {"success": True}
    if message:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    return JSONResponse(status_code=status, content=payload)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _err(exc.status, exc.code, exc.message)


def get_container(request: Request) -> Container:
    return request.app.state.container


def require_user(request: Request, authorization: Optional[str] = Header(None)) -> str:
    """Bearer JWT -> user id (`sub`, or `userId` for tokens issued by older clients)."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise ApiError(401, ERROR_UNAUTHORIZED, "No token provided")
    token = authorization.split(" ", 1)[1].strip()
    secret = get_container(request).settings.jwt_secret
    try:
        claims = decode_token(token, secret)
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise ApiError(401, ERROR_UNAUTHORIZED, "Invalid token")
    user_id = claims.get("sub") or claims.get("userId")
    if not user_id:
        raise ApiError(401, ERROR_UNAUTHORIZED, "Invalid token")
    return str(user_id)


def require_api_key(request: Request, x_api_key: Optional[str] = Header(None, alias="x-api-key")) -> None:
    expected = get_container(request).settings.api_key
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise ApiError(401, ERROR_UNAUTHORIZED, "Invalid API key")
