"""User profile document model."""

from datetime import datetime
from typing import Optional, Literal
from beanie import Document, Indexed
from pydantic import Field


class UserProfile(Document):
    """Profile fields the pipeline reads when standardizing results."""

    user_id: Indexed(str, unique=True)
    full_name: Optional[str] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    date_of_birth: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "user_profiles"
