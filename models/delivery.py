from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"


class DeliveryJob(BaseModel):
    id: str
    user_id: str
    recipient: str
    body: str
    template_id: Optional[str] = None
    attempts_made: int = 0
    status: DeliveryStatus = DeliveryStatus.PENDING
    sent_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None   # set while a FAILED job waits for its retry
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class DeliveryLogEntry(BaseModel):
    """Append-only audit record of one delivery attempt (SENT or FAILED)."""
    job_id: str
    status: DeliveryStatus
    error_message: Optional[str] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"extra": "ignore"}


class DeliveryJobView(BaseModel):
    job: DeliveryJob
    logs: List[DeliveryLogEntry] = Field(default_factory=list)


class BulkItemResult(BaseModel):
    recipient: str
    success: bool
    job_id: Optional[str] = None
    error: Optional[str] = None
