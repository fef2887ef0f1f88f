from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from models.transaction import TransactionKind


class MessageTemplate(BaseModel):
    id: str
    name: str
    content: str
    variables: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class EventType(str, Enum):
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
    WALLET_CREATED = "WALLET_CREATED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    REMINDER = "REMINDER"


class TriggerConditions(BaseModel):
    wallet_id: Optional[str] = Field(default=None, alias="walletId")
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    amount_threshold: Optional[float] = Field(default=None, alias="amountThreshold")
    transaction_type: Optional[TransactionKind] = Field(default=None, alias="transactionType")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class Trigger(BaseModel):
    id: str
    name: str
    event_type: EventType
    conditions: TriggerConditions = Field(default_factory=TriggerConditions)
    template_id: str
    enabled: bool = True
    created_at: datetime

    model_config = {"extra": "ignore"}
