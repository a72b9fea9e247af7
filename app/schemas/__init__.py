"""Pydantic schemas for pipeline data and API requests/responses."""

from app.schemas.extraction import (
    Biomarker,
    BiomarkerMatchDetail,
    ExtractedLabData,
    ExtractionDebugInfo,
    LabMetadata,
    PageDebugInfo,
    ProcessedBiomarker,
)
from app.schemas.lab_upload import (
    LabUploadRecord,
    LabUploadResponse,
    LabUploadStatus,
    ProcessingStage,
    ProcessResponse,
)

__all__ = [
    "Biomarker",
    "BiomarkerMatchDetail",
    "ExtractedLabData",
    "ExtractionDebugInfo",
    "LabMetadata",
    "PageDebugInfo",
    "ProcessedBiomarker",
    "LabUploadRecord",
    "LabUploadResponse",
    "LabUploadStatus",
    "ProcessingStage",
    "ProcessResponse",
]
