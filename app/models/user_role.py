from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class UserRole(Document):
    user_id: Indexed(str, unique=True)
    role: str  # admin | master | reseller | client
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "user_roles"
