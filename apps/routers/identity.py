# apps/routers/identity.py
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.container import Container
from apps.deps import ERROR_BAD_REQUEST, _err, _ok, get_container, require_api_key

logger = logging.getLogger(__name__)

identity_router = APIRouter(prefix="/api/identity", tags=["identity"], dependencies=[Depends(require_api_key)])


class MappingRequest(BaseModel):
    user_id: str = Field(alias="userId")
    phone_number: str = Field(alias="phoneNumber")
    verification_code: str = Field(alias="verificationCode", min_length=1)

    model_config = {"populate_by_name": True}


class VerifyPhoneRequest(BaseModel):
    phone_number: str = Field(alias="phoneNumber")
    code: str

    model_config = {"populate_by_name": True}


@identity_router.post("/mappings")
async def create_mapping(req: MappingRequest, c: Container = Depends(get_container)):
    try:
        mapping = c.identity.create_pending_mapping(req.user_id, req.phone_number, req.verification_code)
    except ValueError as e:
        return _err(400, ERROR_BAD_REQUEST, str(e))
    return _ok({
        "userId": mapping.user_id,
        "phoneNumber": mapping.phone,
        "isVerified": mapping.is_verified,
        "expiresAt": mapping.verification_expires_at.isoformat() if mapping.verification_expires_at else None,
    }, message="Verification code set", status=201)


@identity_router.post("/verify")
async def verify_phone(req: VerifyPhoneRequest, c: Container = Depends(get_container)):
    verified = c.identity.verify(req.phone_number, req.code)
    if not verified:
        return _err(400, ERROR_BAD_REQUEST, "Invalid or expired verification code")
    return _ok({"phoneNumber": c.identity.normalize(req.phone_number), "verified": True},
               message="Phone number verified")
