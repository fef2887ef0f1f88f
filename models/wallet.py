from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from models.transaction import TransactionDraft


class WalletOption(BaseModel):
    """Read-only projection of a wallet, fetched live per decision."""
    id: str
    name: str
    type: str = Field(default="", alias="wallet_type")
    is_default: bool = False

    model_config = {
        "extra": "ignore",
        "populate_by_name": True,
    }


class Category(BaseModel):
    id: str
    name: str

    model_config = {"extra": "ignore"}


class PendingWalletSelection(BaseModel):
    channel_id: str
    user_id: str
    draft: TransactionDraft
    auth_token: str
    options: List[WalletOption]
    created_at: datetime


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    NEEDS_CHOICE = "needs_choice"
    CANNOT_PROCEED = "cannot_proceed"
    INVALID = "invalid"


class WalletDecision(BaseModel):
    status: ResolutionStatus
    wallet_id: Optional[str] = None
    options: List[WalletOption] = Field(default_factory=list)
    reason: Optional[str] = None
    # set when a pending dialogue was consumed
    selection: Optional[PendingWalletSelection] = None

    @classmethod
    def resolved(cls, wallet_id: str, selection: Optional[PendingWalletSelection] = None) -> "WalletDecision":
        return cls(status=ResolutionStatus.RESOLVED, wallet_id=wallet_id, selection=selection)

    @classmethod
    def needs_choice(cls, options: List[WalletOption]) -> "WalletDecision":
        return cls(status=ResolutionStatus.NEEDS_CHOICE, options=list(options))

    @classmethod
    def cannot_proceed(cls) -> "WalletDecision":
        return cls(status=ResolutionStatus.CANNOT_PROCEED, reason="no wallets")

    @classmethod
    def invalid(cls, reason: str) -> "WalletDecision":
        return cls(status=ResolutionStatus.INVALID, reason=reason)
