from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class UserCredit(Document):
    """Current balance per account; one row per user_id."""
    user_id: Indexed(str, unique=True)
    balance: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "user_credits"
