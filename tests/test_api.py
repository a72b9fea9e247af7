"""HTTP tests for the lab upload endpoints."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_pipeline_context, get_repository, get_storage
from app.schemas.lab_upload import LabUploadStatus
from main import app
from tests.conftest import ScriptedProvider, biomarker_json, make_pdf

GLUCOSE = {"name": "Glucose", "value": 95, "unit": "mg/dL", "reference_min": 70, "reference_max": 100}
PREFIX = "/api/v1/lab-uploads"


@pytest.fixture
def client(repository, storage, make_context):
    extraction = ScriptedProvider({None: [biomarker_json(GLUCOSE)]})
    context = make_context(extraction)

    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_pipeline_context] = lambda: context
    yield TestClient(app)
    app.dependency_overrides.clear()


def upload(client, data=None, filename="report.pdf", user_id="user-1", **form):
    return client.post(
        PREFIX,
        files={"file": (filename, data if data is not None else make_pdf(["Glucose 95"]), "application/pdf")},
        data={"user_id": user_id, **form},
    )


def set_fields(repository, upload_id, **fields):
    repository.records[upload_id] = repository.records[upload_id].model_copy(update=fields)


def test_upload_creates_pending_record(client, repository):
    response = upload(client)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["user_id"] == "user-1"
    assert body["can_delete"] is True
    assert body["is_stuck"] is False
    assert repository.records[body["id"]].file_size > 0


def test_upload_rejects_non_pdf_and_empty_files(client):
    assert upload(client, data=b"hello", filename="notes.txt").status_code == 400
    assert upload(client, data=b"").status_code == 400


def test_process_runs_pipeline_in_background(client, repository):
    upload_id = upload(client).json()["id"]

    response = client.post(f"{PREFIX}/{upload_id}/process")

    assert response.status_code == 202
    assert response.json()["upload_id"] == upload_id
    # TestClient runs background tasks before returning
    status = client.get(f"{PREFIX}/{upload_id}").json()
    assert status["status"] == "complete"
    assert status["extracted_data"]["biomarkers"][0]["name"] == "Glucose"


def test_process_requires_pending_upload(client, repository):
    upload_id = upload(client).json()["id"]
    set_fields(repository, upload_id, status=LabUploadStatus.COMPLETE)

    assert client.post(f"{PREFIX}/{upload_id}/process").status_code == 409


def test_retry_resets_failed_upload(client, repository):
    upload_id = upload(client).json()["id"]
    set_fields(repository, upload_id, status=LabUploadStatus.FAILED, error_message="boom")

    response = client.post(f"{PREFIX}/{upload_id}/retry")

    assert response.status_code == 202
    assert response.json()["status"] == "pending"
    assert repository.records[upload_id].status == LabUploadStatus.COMPLETE
    assert repository.records[upload_id].error_message is None


def test_retry_rejects_completed_upload(client, repository):
    upload_id = upload(client).json()["id"]
    set_fields(repository, upload_id, status=LabUploadStatus.COMPLETE)

    assert client.post(f"{PREFIX}/{upload_id}/retry").status_code == 409


def test_delete_respects_stuck_policy(client, repository, storage):
    upload_id = upload(client).json()["id"]
    set_fields(
        repository,
        upload_id,
        status=LabUploadStatus.PROCESSING,
        started_at=datetime.utcnow() - timedelta(minutes=10),
    )
    assert client.delete(f"{PREFIX}/{upload_id}").status_code == 409

    set_fields(repository, upload_id, started_at=datetime.utcnow() - timedelta(minutes=25))
    assert client.get(f"{PREFIX}/{upload_id}").json()["is_stuck"] is True

    storage_path = repository.records[upload_id].storage_path
    assert client.delete(f"{PREFIX}/{upload_id}").status_code == 204
    assert upload_id not in repository.records
    assert not (storage.root / storage_path).exists()


def test_list_and_ownership(client):
    mine = upload(client, user_id="user-1").json()["id"]
    upload(client, user_id="user-2")

    listing = client.get(PREFIX, params={"user_id": "user-1"}).json()
    assert listing["total"] == 1
    assert listing["uploads"][0]["id"] == mine

    assert client.get(f"{PREFIX}/{mine}", params={"user_id": "user-2"}).status_code == 404
    assert client.get(f"{PREFIX}/does-not-exist").status_code == 404


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
