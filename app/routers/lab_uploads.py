"""Lab upload endpoints: upload, status polling, processing trigger, retry and delete."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, status

from app.core.logging import logger
from app.dependencies import get_pipeline_context, get_repository, get_storage
from app.graphs.lab_extraction import PipelineContext, run_lab_extraction
from app.schemas.lab_upload import (
    LabUploadListResponse,
    LabUploadRecord,
    LabUploadResponse,
    LabUploadStatus,
    ProcessResponse,
)
from app.services import job_state
from app.services.lab_upload_repository import LabUploadRepository
from app.services.storage_service import StorageService
from app.shared.exceptions import (
    BadRequestException,
    ConflictException,
    InvalidTransitionError,
    NotFoundException,
)

router = APIRouter(prefix="/lab-uploads", tags=["Lab Uploads"])

SUPPORTED_EXTENSIONS = {".pdf"}


def to_response(record: LabUploadRecord, now: Optional[datetime] = None) -> LabUploadResponse:
    """Attach the read-time stuck/delete policy to a record."""
    now = now or datetime.utcnow()
    return LabUploadResponse(
        **record.model_dump(),
        is_stuck=job_state.is_stuck(record, now),
        can_delete=job_state.can_delete(record, now),
    )


async def get_owned_upload(
    upload_id: str,
    user_id: Optional[str],
    repository: LabUploadRepository,
) -> LabUploadRecord:
    """Fetch an upload, hiding other users' uploads behind a 404."""
    record = await repository.get(upload_id)
    if record is None or (user_id is not None and record.user_id != user_id):
        raise NotFoundException(f"Lab upload {upload_id} not found")
    return record


@router.post("", response_model=LabUploadResponse, status_code=status.HTTP_201_CREATED)
async def create_lab_upload(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    skip_verification: bool = Form(False),
    repository: LabUploadRepository = Depends(get_repository),
    storage: StorageService = Depends(get_storage),
):
    """
    Store an uploaded lab report PDF and create a pending upload record.
    Processing starts with POST /lab-uploads/{id}/process.
    """
    if Path(file.filename or "").suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise BadRequestException("Unsupported file type. Only PDF lab reports are accepted")

    data = await file.read()
    if not data:
        raise BadRequestException("Uploaded file is empty")

    storage_path = storage.save(user_id, file.filename, data)
    record = await repository.create(
        LabUploadRecord(
            id="",
            user_id=user_id,
            filename=file.filename,
            storage_path=storage_path,
            file_size=len(data),
            skip_verification=skip_verification,
        )
    )

    logger.info(f"Created lab upload {record.id} for user {user_id}: {file.filename}")
    return to_response(record)


@router.get("", response_model=LabUploadListResponse)
async def list_lab_uploads(
    user_id: str,
    repository: LabUploadRepository = Depends(get_repository),
):
    """List a user's uploads, newest first."""
    records = await repository.list_for_user(user_id)
    now = datetime.utcnow()
    return LabUploadListResponse(
        uploads=[to_response(r, now) for r in records],
        total=len(records),
    )


@router.get("/{upload_id}", response_model=LabUploadResponse)
async def get_lab_upload(
    upload_id: str,
    user_id: Optional[str] = None,
    repository: LabUploadRepository = Depends(get_repository),
):
    """Status polling: the upload record as the pipeline last wrote it."""
    return to_response(await get_owned_upload(upload_id, user_id, repository))


@router.post("/{upload_id}/process", response_model=ProcessResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_lab_upload(
    upload_id: str,
    background_tasks: BackgroundTasks,
    user_id: Optional[str] = None,
    capture_debug: Optional[bool] = None,
    repository: LabUploadRepository = Depends(get_repository),
    context: PipelineContext = Depends(get_pipeline_context),
):
    """
    Start processing a pending upload in the background.
    Acceptance says nothing about the outcome; poll GET /lab-uploads/{id}.
    """
    record = await get_owned_upload(upload_id, user_id, repository)
    if record.status != LabUploadStatus.PENDING:
        raise ConflictException(f"Upload is '{record.status.value}'; only pending uploads can be processed")

    background_tasks.add_task(run_lab_extraction, upload_id, context=context, capture_debug=capture_debug)
    logger.info(f"Queued processing for lab upload {upload_id}")

    return ProcessResponse(
        upload_id=upload_id,
        status=record.status,
        message="Processing started",
    )


@router.post("/{upload_id}/retry", response_model=ProcessResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_lab_upload(
    upload_id: str,
    background_tasks: BackgroundTasks,
    user_id: Optional[str] = None,
    capture_debug: Optional[bool] = None,
    repository: LabUploadRepository = Depends(get_repository),
    context: PipelineContext = Depends(get_pipeline_context),
):
    """Reset a failed or partial upload to pending and process it again."""
    record = await get_owned_upload(upload_id, user_id, repository)
    try:
        updates = job_state.reset_for_retry(record)
    except InvalidTransitionError as e:
        raise ConflictException(str(e))

    record = await repository.update(upload_id, updates)
    background_tasks.add_task(run_lab_extraction, upload_id, context=context, capture_debug=capture_debug)
    logger.info(f"Retrying lab upload {upload_id}")

    return ProcessResponse(
        upload_id=upload_id,
        status=record.status,
        message="Retry started",
    )


@router.delete("/{upload_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lab_upload(
    upload_id: str,
    user_id: Optional[str] = None,
    repository: LabUploadRepository = Depends(get_repository),
    storage: StorageService = Depends(get_storage),
):
    """Delete an upload unless it is actively processing (stuck jobs may be deleted)."""
    record = await get_owned_upload(upload_id, user_id, repository)
    if not job_state.can_delete(record, datetime.utcnow()):
        raise ConflictException("Upload is still processing and cannot be deleted yet")

    storage.delete(record.storage_path)
    await repository.delete(upload_id)
    logger.info(f"Deleted lab upload {upload_id}")
