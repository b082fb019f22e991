"""Backend-neutral records returned by ledger stores."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class TransactionRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))  # assigned before insert
    user_id: str
    transaction_type: str  # credit_added, credit_removed, credit_spent
    amount: int  # positive = credit, negative = debit
    balance_after: int
    description: str
    performed_by: str | None = None
    related_user_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ProfileRecord(BaseModel):
    user_id: str
    full_name: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
