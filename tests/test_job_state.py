"""Tests for upload status transitions and read-time stuck policy."""

from datetime import datetime, timedelta

import pytest

from app.schemas.extraction import ExtractedLabData
from app.schemas.lab_upload import LabUploadRecord, LabUploadStatus, ProcessingStage
from app.services import job_state
from app.services.job_state import LabUploadJob
from app.shared.exceptions import InvalidTransitionError

NOW = datetime(2024, 3, 1, 12, 0, 0)


def record(**kwargs) -> LabUploadRecord:
    fields = dict(id="u1", user_id="user-1", filename="r.pdf", storage_path="user-1/r.pdf", created_at=NOW)
    fields.update(kwargs)
    return LabUploadRecord(**fields)


def processing(stage=ProcessingStage.FETCHING_PDF, started=NOW) -> LabUploadRecord:
    return record(status=LabUploadStatus.PROCESSING, processing_stage=stage, started_at=started)


def test_start_only_from_pending():
    updates = job_state.start(record(), NOW)
    assert updates["status"] == LabUploadStatus.PROCESSING
    assert updates["processing_stage"] == ProcessingStage.FETCHING_PDF
    assert updates["started_at"] == NOW
    assert "event_id" not in updates

    for status in (LabUploadStatus.PROCESSING, LabUploadStatus.COMPLETE, LabUploadStatus.FAILED):
        with pytest.raises(InvalidTransitionError):
            job_state.start(record(status=status), NOW)


def test_stages_only_move_forward():
    upload = processing(ProcessingStage.EXTRACTING_GEMINI)

    assert job_state.advance_stage(upload, ProcessingStage.POST_PROCESSING) == {
        "processing_stage": ProcessingStage.POST_PROCESSING
    }
    with pytest.raises(InvalidTransitionError):
        job_state.advance_stage(upload, ProcessingStage.SPLITTING_PAGES)
    with pytest.raises(InvalidTransitionError):
        job_state.advance_stage(upload, ProcessingStage.EXTRACTING_GEMINI)
    with pytest.raises(InvalidTransitionError):
        job_state.advance_stage(record(), ProcessingStage.SPLITTING_PAGES)


def test_finish_sets_results_and_clears_stage():
    data = ExtractedLabData(lab_name="Lab")
    updates = job_state.finish(
        processing(ProcessingStage.POST_PROCESSING),
        LabUploadStatus.PARTIAL,
        NOW,
        extracted_data=data,
        extraction_confidence=0.8,
        verification_passed=None,
        corrections=["note"],
    )
    assert updates["status"] == LabUploadStatus.PARTIAL
    assert updates["processing_stage"] is None
    assert updates["completed_at"] == NOW
    assert updates["extracted_data"] is data


def test_finish_rejects_other_statuses_and_sources():
    kwargs = dict(extracted_data=ExtractedLabData(), extraction_confidence=0.95,
                  verification_passed=True, corrections=[])
    with pytest.raises(InvalidTransitionError):
        job_state.finish(processing(), LabUploadStatus.FAILED, NOW, **kwargs)
    with pytest.raises(InvalidTransitionError):
        job_state.finish(record(), LabUploadStatus.COMPLETE, NOW, **kwargs)


def test_fail_from_pending_fills_started_at():
    updates = job_state.fail(record(), "boom", NOW)
    assert updates["status"] == LabUploadStatus.FAILED
    assert updates["started_at"] == NOW
    assert updates["completed_at"] == NOW
    assert updates["error_message"] == "boom"

    earlier = NOW - timedelta(minutes=3)
    assert job_state.fail(processing(started=earlier), "", NOW)["started_at"] == earlier

    with pytest.raises(InvalidTransitionError):
        job_state.fail(record(status=LabUploadStatus.COMPLETE), "late", NOW)


def test_retry_clears_every_result_field():
    upload = record(
        status=LabUploadStatus.PARTIAL,
        extracted_data=ExtractedLabData(),
        extraction_confidence=0.7,
        verification_passed=False,
        corrections=["x"],
        current_page=2,
        total_pages=2,
        started_at=NOW,
        completed_at=NOW,
    )
    updates = job_state.reset_for_retry(upload)

    assert updates["status"] == LabUploadStatus.PENDING
    for name in job_state.RESULT_FIELDS:
        assert updates[name] is None

    for status in (LabUploadStatus.PENDING, LabUploadStatus.PROCESSING, LabUploadStatus.COMPLETE):
        with pytest.raises(InvalidTransitionError):
            job_state.reset_for_retry(record(status=status))


def test_stuck_detection_and_delete_policy():
    threshold = timedelta(minutes=20)
    stuck = processing(started=NOW - timedelta(minutes=25))
    fresh = processing(started=NOW - timedelta(minutes=10))

    assert job_state.is_stuck(stuck, NOW, threshold)
    assert job_state.can_delete(stuck, NOW, threshold)
    assert not job_state.is_stuck(fresh, NOW, threshold)
    assert not job_state.can_delete(fresh, NOW, threshold)

    done = record(status=LabUploadStatus.COMPLETE, started_at=NOW - timedelta(hours=5))
    assert not job_state.is_stuck(done, NOW, threshold)
    assert job_state.can_delete(done, NOW, threshold)


def test_stuck_falls_back_to_created_at():
    upload = record(status=LabUploadStatus.PROCESSING, created_at=NOW - timedelta(minutes=30))
    assert job_state.is_stuck(upload, NOW, timedelta(minutes=20))


async def test_job_persists_each_transition(repository):
    created = await repository.create(record(id=""))
    job = LabUploadJob(repository, created)

    await job.start(NOW)
    await job.advance_stage(ProcessingStage.SPLITTING_PAGES)
    await job.record_progress(1, 3)
    await job.fail("page split exploded", NOW)

    stored = await repository.get(created.id)
    assert stored.status == LabUploadStatus.FAILED
    assert stored.current_page == 1 and stored.total_pages == 3
    assert job.record == stored
    assert [u.get("status") for u in repository.updates] == [
        LabUploadStatus.PROCESSING, None, None, LabUploadStatus.FAILED
    ]


async def test_job_start_loses_to_an_earlier_claim(repository):
    created = await repository.create(record(id=""))
    first = LabUploadJob(repository, created)
    second = LabUploadJob(repository, created)

    assert await first.start(NOW) is not None
    assert await second.start(NOW) is None

    assert second.record.status == LabUploadStatus.PENDING
    assert len(repository.updates) == 1


def test_retry_keeps_event_id():
    upload = record(status=LabUploadStatus.FAILED, event_id="evt-1")
    assert "event_id" not in job_state.reset_for_retry(upload)
