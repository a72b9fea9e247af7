"""Database models for lab report extraction."""

from app.models.lab_upload import LabUpload
from app.models.user_profile import UserProfile

__all__ = ["LabUpload", "UserProfile"]
