from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TransactionKind(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class TransactionDraft(BaseModel):
    """
    Structured transaction extracted from a free-text chat message.
    Never persisted directly; it waits for a wallet and is then sent to the
    finance backend.
    """

    kind: TransactionKind
    amount: float = Field(gt=0)
    category: Optional[str] = None
    description: str = Field(min_length=1)
    occurred_on: date
    wallet_hint: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def kind_label(self) -> str:
        return "Pemasukan" if self.kind == TransactionKind.INCOME else "Pengeluaran"


class CreateTransactionResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
