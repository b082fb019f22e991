from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class CreditTransaction(Document):
    record_id: Indexed(str, unique=True)  # assigned by the service before insert
    user_id: str
    transaction_type: str  # credit_added, credit_removed, credit_spent
    amount: int  # positive = credit, negative = debit
    balance_after: int
    description: str
    performed_by: str | None = None
    related_user_id: str | None = None  # counterparty of a transfer
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
        ]
