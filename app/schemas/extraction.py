"""Pydantic schemas for lab report extraction."""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field


Flag = Literal["high", "low", "normal"]
Gender = Literal["male", "female"]


# ============ RAW AND PROCESSED BIOMARKERS ============

class Biomarker(BaseModel):
    """A biomarker exactly as the extraction model reported it."""
    name: str
    value: float
    unit: str = ""
    secondary_value: Optional[float] = None
    secondary_unit: Optional[str] = None
    reference_min: Optional[float] = None
    reference_max: Optional[float] = None
    flag: Optional[Flag] = None


class ProcessedBiomarker(BaseModel):
    """A raw biomarker after catalog matching and unit conversion."""
    original_name: str
    original_value: float
    original_unit: str
    matched: bool = False
    standard_code: Optional[str] = None
    standard_name: Optional[str] = None
    standard_value: Optional[float] = None
    standard_unit: Optional[str] = None
    reference_min: Optional[float] = None
    reference_max: Optional[float] = None
    flag: Optional[Flag] = None
    validation_issues: List[str] = Field(default_factory=list)


class ConversionApplied(BaseModel):
    from_value: float
    from_unit: str
    to_value: float
    to_unit: str
    factor: float


class ConversionMissing(BaseModel):
    from_unit: str
    to_unit: str


class BiomarkerMatchDetail(BaseModel):
    """Per-biomarker trace of the matching stage."""
    original_name: str
    matched_code: Optional[str] = None
    matched_name: Optional[str] = None
    conversion_applied: Optional[ConversionApplied] = None
    conversion_missing: Optional[ConversionMissing] = None
    validation_issues: List[str] = Field(default_factory=list)


# ============ DEBUG TELEMETRY ============

class ExtractionStageDebug(BaseModel):
    model: str
    thinking_level: Optional[str] = None
    duration_ms: int = 0
    biomarkers_extracted: int = 0
    raw_response: str = ""
    pages_processed: Optional[int] = None
    avg_page_duration_ms: Optional[int] = None


class VerificationStageDebug(BaseModel):
    model: Optional[str] = None
    reasoning_effort: Optional[str] = None
    duration_ms: int = 0
    verification_passed: Optional[bool] = None
    corrections_count: int = 0
    skipped: bool = False
    raw_response: str = ""
    pages_verified: Optional[int] = None
    pages_passed: Optional[int] = None
    pages_failed: Optional[int] = None


class MatchingStageDebug(BaseModel):
    duration_ms: int = 0
    standards_count: int = 0
    user_gender: Optional[Gender] = None
    matched_count: int = 0
    unmatched_count: int = 0
    conversion_method: str = "deterministic"
    conversions_applied: int = 0
    conversions_missing: int = 0
    match_details: List[BiomarkerMatchDetail] = Field(default_factory=list)
    raw_response: Optional[str] = None


class MergeStageDebug(BaseModel):
    name: str = "Cross-page merge"
    total_biomarkers_before_merge: int = 0
    total_biomarkers_after_merge: int = 0
    duplicates_removed: int = 0
    conflicts_resolved: int = 0


class PageExtractionDebug(BaseModel):
    duration_ms: int = 0
    biomarkers_extracted: int = 0
    raw_response_preview: Optional[str] = None
    empty_page: bool = False
    error: Optional[str] = None


class PageVerificationDebug(BaseModel):
    duration_ms: int = 0
    verification_passed: bool = False
    corrections_count: int = 0
    corrections: List[str] = Field(default_factory=list)
    raw_response_preview: Optional[str] = None
    error: Optional[str] = None


class PageDebugInfo(BaseModel):
    page_number: int
    extraction: PageExtractionDebug
    verification: Optional[PageVerificationDebug] = None


class ExtractionDebugInfo(BaseModel):
    """Single diagnostic record for one pipeline run."""
    total_duration_ms: int = 0
    pdf_size_bytes: int = 0
    stage1: ExtractionStageDebug
    stage2: VerificationStageDebug
    stage3: Optional[MatchingStageDebug] = None
    is_chunked: bool = False
    page_count: Optional[int] = None
    page_details: Optional[List[PageDebugInfo]] = None
    merge_stage: Optional[MergeStageDebug] = None


# ============ EXTRACTED DATA ============

class LabMetadata(BaseModel):
    """Report-level fields the models may supply."""
    client_name: Optional[str] = None
    client_gender: Optional[Literal["male", "female", "other"]] = None
    client_birthday: Optional[str] = None
    lab_name: Optional[str] = None
    ordering_doctor: Optional[str] = None
    test_date: Optional[str] = None


class ExtractedLabData(LabMetadata):
    """Result of a pipeline run, persisted on the upload record."""
    biomarkers: List[Biomarker] = Field(default_factory=list)
    processed_biomarkers: Optional[List[ProcessedBiomarker]] = None
    debug_info: Optional[ExtractionDebugInfo] = None

    class Config:
        json_schema_extra = {
            "example": {
                "lab_name": "Aster Diagnostic",
                "test_date": "2024-01-15",
                "biomarkers": [
                    {"name": "Glucose", "value": 95, "unit": "mg/dL",
                     "reference_min": 70, "reference_max": 100}
                ],
                "processed_biomarkers": [
                    {
                        "original_name": "Glucose",
                        "original_value": 95,
                        "original_unit": "mg/dL",
                        "matched": True,
                        "standard_code": "glucose",
                        "standard_name": "Glucose",
                        "standard_value": 95,
                        "standard_unit": "mg/dL",
                        "reference_min": 70,
                        "reference_max": 100,
                        "flag": "normal",
                        "validation_issues": []
                    }
                ]
            }
        }
