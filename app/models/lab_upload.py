"""Lab upload document model."""

from datetime import datetime
from typing import Optional, List
from beanie import Document, Indexed
from pydantic import Field

from app.schemas.extraction import ExtractedLabData
from app.schemas.lab_upload import LabUploadStatus, ProcessingStage


class LabUpload(Document):
    """One uploaded lab report PDF and the state of its extraction job."""

    # Ownership and file
    user_id: Indexed(str)
    filename: str
    storage_path: str
    file_size: int = 0

    # Job state
    status: LabUploadStatus = LabUploadStatus.PENDING
    processing_stage: Optional[ProcessingStage] = None
    skip_verification: bool = False
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    event_id: Optional[str] = None

    # Results
    extracted_data: Optional[ExtractedLabData] = None
    extraction_confidence: Optional[float] = None
    verification_passed: Optional[bool] = None
    corrections: Optional[List[str]] = None
    error_message: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Settings:
        name = "lab_uploads"
        indexes = [
            "user_id",
            "status",
            [("user_id", 1), ("created_at", -1)],  # For upload lists
        ]
