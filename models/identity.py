from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class UserMapping(BaseModel):
    user_id: str
    phone: str                          # canonical phone, also the store key
    is_verified: bool = False
    verified_at: Optional[datetime] = None
    verification_code: Optional[str] = None
    verification_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}
