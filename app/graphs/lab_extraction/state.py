"""LangGraph state schema for lab extraction workflow."""

from typing import TypedDict, Optional, List, Dict

from app.schemas.extraction import Biomarker, LabMetadata
from app.services.biomarker_matcher import MatchResult
from app.services.biomarker_merger import MergeResult
from app.services.chunk_planner import ChunkPlan, WorkUnit
from app.services.extraction_service import ExtractionOutcome
from app.services.job_state import LabUploadJob
from app.services.verification_service import VerificationOutcome


class LabExtractionState(TypedDict, total=False):
    """State schema for the lab extraction workflow."""

    # Input - provided when starting the workflow
    upload_id: str
    capture_debug: bool

    # Job handle, set once the upload has started
    job: Optional[LabUploadJob]

    # Document
    pdf_bytes: bytes
    pdf_size_bytes: int
    page_count: int
    plan: ChunkPlan
    chunked: bool
    units: List[WorkUnit]

    # Stage 1 / 2 results, ordered by page
    extractions: List[ExtractionOutcome]
    verifications: List[VerificationOutcome]
    verification_skipped: bool

    # Merged result
    merge: Optional[MergeResult]
    biomarkers: List[Biomarker]
    metadata: LabMetadata
    corrections: List[str]
    verification_passed: Optional[bool]

    # Stage 3
    match: Optional[MatchResult]
    standards_count: int
    user_gender: Optional[str]
    matching_error: Optional[str]

    # Wall-clock timings in ms, keyed by stage
    durations: Dict[str, int]
    run_started: float

    # Outcome
    error: Optional[str]
    final_status: Optional[str]
