"""Lab upload job lifecycle: legal transitions, retry reset and stuck detection."""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from app.config import settings
from app.core.logging import logger
from app.schemas.extraction import ExtractedLabData
from app.schemas.lab_upload import (
    RETRYABLE_STATUSES,
    STAGE_ORDER,
    LabUploadRecord,
    LabUploadStatus,
    ProcessingStage,
)
from app.services.lab_upload_repository import LabUploadRepository
from app.shared.exceptions import InvalidTransitionError


# Every field a run writes; cleared on retry
RESULT_FIELDS = (
    "processing_stage",
    "extracted_data",
    "extraction_confidence",
    "verification_passed",
    "corrections",
    "error_message",
    "current_page",
    "total_pages",
    "started_at",
    "completed_at",
)


# ============ TRANSITIONS ============
# Each returns the field updates to apply; none of them touch storage.

def start(upload: LabUploadRecord, now: datetime) -> Dict[str, Any]:
    """pending -> processing(fetching_pdf)."""
    if upload.status != LabUploadStatus.PENDING:
        raise InvalidTransitionError(f"Cannot start upload in status '{upload.status.value}'")
    return {
        "status": LabUploadStatus.PROCESSING,
        "processing_stage": ProcessingStage.FETCHING_PDF,
        "started_at": now,
        "completed_at": None,
        "error_message": None,
    }


def advance_stage(upload: LabUploadRecord, stage: ProcessingStage) -> Dict[str, Any]:
    """Move a processing upload to a later stage. Stages never move backwards."""
    if upload.status != LabUploadStatus.PROCESSING:
        raise InvalidTransitionError(f"Cannot change stage of upload in status '{upload.status.value}'")
    if upload.processing_stage is not None and STAGE_ORDER.index(stage) <= STAGE_ORDER.index(upload.processing_stage):
        raise InvalidTransitionError(
            f"Stage cannot move from '{upload.processing_stage.value}' to '{stage.value}'"
        )
    return {"processing_stage": stage}


def record_progress(upload: LabUploadRecord, current_page: int, total_pages: int) -> Dict[str, Any]:
    if upload.status != LabUploadStatus.PROCESSING:
        raise InvalidTransitionError(f"Cannot record progress for upload in status '{upload.status.value}'")
    return {"current_page": current_page, "total_pages": total_pages}


def finish(
    upload: LabUploadRecord,
    status: LabUploadStatus,
    now: datetime,
    extracted_data: ExtractedLabData,
    extraction_confidence: float,
    verification_passed: Optional[bool],
    corrections: List[str],
) -> Dict[str, Any]:
    """processing -> complete | partial, with the run's results."""
    if status not in (LabUploadStatus.COMPLETE, LabUploadStatus.PARTIAL):
        raise InvalidTransitionError(f"finish() cannot set status '{status.value}'")
    if upload.status != LabUploadStatus.PROCESSING:
        raise InvalidTransitionError(f"Cannot finish upload in status '{upload.status.value}'")
    return {
        "status": status,
        "processing_stage": None,
        "completed_at": now,
        "extracted_data": extracted_data,
        "extraction_confidence": extraction_confidence,
        "verification_passed": verification_passed,
        "corrections": corrections,
        "error_message": None,
    }


def fail(upload: LabUploadRecord, error_message: str, now: datetime) -> Dict[str, Any]:
    """pending | processing -> failed."""
    if upload.status not in (LabUploadStatus.PENDING, LabUploadStatus.PROCESSING):
        raise InvalidTransitionError(f"Cannot fail upload in status '{upload.status.value}'")
    return {
        "status": LabUploadStatus.FAILED,
        "processing_stage": None,
        "completed_at": now,
        "started_at": upload.started_at or now,
        "error_message": error_message or "Unknown error",
    }


def reset_for_retry(upload: LabUploadRecord) -> Dict[str, Any]:
    """failed | partial -> pending, clearing every result field."""
    if upload.status not in RETRYABLE_STATUSES:
        raise InvalidTransitionError(f"Cannot retry upload in status '{upload.status.value}'")
    updates: Dict[str, Any] = {name: None for name in RESULT_FIELDS}
    updates["status"] = LabUploadStatus.PENDING
    return updates


# ============ READ-TIME POLICY ============

def is_stuck(upload: LabUploadRecord, now: datetime, threshold: Optional[timedelta] = None) -> bool:
    """Processing for longer than the threshold; its worker is presumed dead."""
    if upload.status != LabUploadStatus.PROCESSING:
        return False
    threshold = threshold or timedelta(minutes=settings.STUCK_JOB_THRESHOLD_MINUTES)
    reference = upload.started_at or upload.created_at
    return now - reference > threshold


def can_delete(upload: LabUploadRecord, now: datetime, threshold: Optional[timedelta] = None) -> bool:
    """Anything not processing, or a stuck processing job."""
    return upload.status != LabUploadStatus.PROCESSING or is_stuck(upload, now, threshold)


# ============ PERSISTED JOB ============

class LabUploadJob:
    """
    Applies transitions for one upload and persists them.
    Holds the latest snapshot so every check runs against current state.
    """

    def __init__(self, repository: LabUploadRepository, record: LabUploadRecord):
        self.repository = repository
        self.record = record

    @property
    def upload_id(self) -> str:
        return self.record.id

    async def _apply(self, updates: Dict[str, Any]) -> LabUploadRecord:
        self.record = await self.repository.update(self.upload_id, updates)
        return self.record

    async def start(self, now: Optional[datetime] = None) -> Optional[LabUploadRecord]:
        """
        Claim the upload for this run. Returns None when another run
        moved it out of pending first.
        """
        updates = start(self.record, now or datetime.utcnow())
        record = await self.repository.claim(self.upload_id, LabUploadStatus.PENDING, updates)
        if record is None:
            logger.warning(f"Upload {self.upload_id} was claimed by another run")
            return None
        self.record = record
        logger.info(f"Upload {self.upload_id} started processing")
        return record

    async def advance_stage(self, stage: ProcessingStage) -> LabUploadRecord:
        record = await self._apply(advance_stage(self.record, stage))
        logger.info(f"Upload {self.upload_id} entered stage {stage.value}")
        return record

    async def record_progress(self, current_page: int, total_pages: int) -> LabUploadRecord:
        return await self._apply(record_progress(self.record, current_page, total_pages))

    async def finish(self, status: LabUploadStatus, now: Optional[datetime] = None, **results) -> LabUploadRecord:
        record = await self._apply(finish(self.record, status, now or datetime.utcnow(), **results))
        logger.info(f"Upload {self.upload_id} finished with status {status.value}")
        return record

    async def fail(self, error_message: str, now: Optional[datetime] = None) -> LabUploadRecord:
        record = await self._apply(fail(self.record, error_message, now or datetime.utcnow()))
        logger.error(f"Upload {self.upload_id} failed: {error_message}")
        return record
