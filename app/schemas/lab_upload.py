"""Pydantic schemas for lab upload records and API responses."""

from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field

from app.schemas.extraction import ExtractedLabData


class LabUploadStatus(str, Enum):
    """Status of lab upload processing."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class ProcessingStage(str, Enum):
    """Pipeline stage of a processing upload, in execution order."""
    FETCHING_PDF = "fetching_pdf"
    SPLITTING_PAGES = "splitting_pages"
    EXTRACTING_GEMINI = "extracting_gemini"
    VERIFYING_GPT = "verifying_gpt"
    POST_PROCESSING = "post_processing"


TERMINAL_STATUSES = {LabUploadStatus.COMPLETE, LabUploadStatus.PARTIAL, LabUploadStatus.FAILED}
RETRYABLE_STATUSES = {LabUploadStatus.FAILED, LabUploadStatus.PARTIAL}
STAGE_ORDER = list(ProcessingStage)


class LabUploadRecord(BaseModel):
    """Snapshot of a lab upload as the pipeline sees it."""
    id: str
    user_id: str
    filename: str
    storage_path: str
    file_size: int = 0
    status: LabUploadStatus = LabUploadStatus.PENDING
    processing_stage: Optional[ProcessingStage] = None
    skip_verification: bool = False
    extracted_data: Optional[ExtractedLabData] = None
    extraction_confidence: Optional[float] = None
    verification_passed: Optional[bool] = None
    corrections: Optional[List[str]] = None
    error_message: Optional[str] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None
    event_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class LabUploadResponse(LabUploadRecord):
    """Upload record plus read-time policy flags for clients."""
    is_stuck: bool = False
    can_delete: bool = True


class ProcessResponse(BaseModel):
    """Response after a processing trigger or retry is accepted."""
    upload_id: str
    status: LabUploadStatus
    message: str


class LabUploadListResponse(BaseModel):
    """Response for lab upload list query."""
    uploads: List[LabUploadResponse]
    total: int
