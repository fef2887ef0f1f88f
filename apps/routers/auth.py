# apps/routers/auth.py
import logging
from datetime import timedelta

import jwt
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.container import Container
from apps.deps import ERROR_BAD_REQUEST, ERROR_UNAUTHORIZED, _err, _ok, get_container, require_api_key
from shared.auth_tokens import decode_token, issue_token

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


class TokenRequest(BaseModel):
    user_id: str = Field(alias="userId")

    model_config = {"populate_by_name": True}


class VerifyRequest(BaseModel):
    token: str


class UserTokenRequest(BaseModel):
    user_id: str = Field(alias="userId")
    token: str

    model_config = {"populate_by_name": True}


@auth_router.post("/token")
async def generate_token(req: TokenRequest, c: Container = Depends(get_container)):
    """Development helper: a JWT for any user id."""
    if not req.user_id.strip():
        return _err(400, ERROR_BAD_REQUEST, "userId is required")
    hours = c.settings.jwt_expires_in_hours
    token = issue_token(req.user_id, c.settings.jwt_secret, timedelta(hours=hours))
    return _ok({"token": token, "expiresIn": f"{hours}h", "userId": req.user_id},
               message="Token generated successfully")


@auth_router.post("/verify")
async def verify_token(req: VerifyRequest, c: Container = Depends(get_container)):
    try:
        claims = decode_token(req.token, c.settings.jwt_secret)
    except jwt.InvalidTokenError:
        return _err(401, ERROR_UNAUTHORIZED, "Token is invalid or expired")
    return _ok({"userId": claims.get("sub") or claims.get("userId"), "valid": True}, message="Token is valid")


@auth_router.post("/user-tokens", dependencies=[Depends(require_api_key)])
async def store_user_token(req: UserTokenRequest, c: Container = Depends(get_container)):
    """The finance backend hands over a user's bearer token so chat messages can act for them."""
    expires_at = c.tokens.store_token(req.user_id, req.token)
    return _ok({"userId": req.user_id, "expiresAt": expires_at.isoformat()}, message="Token stored")
