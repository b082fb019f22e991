from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Profile(Document):
    user_id: Indexed(str, unique=True)
    full_name: str | None = None
    created_by: str | None = None  # account that created this one
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "profiles"
