"""
Pytest configuration and shared fixtures for testing.
"""

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
import pytest

from app.graphs.lab_extraction.context import PipelineContext
from app.schemas.lab_upload import LabUploadRecord
from app.services.ai_providers import ProviderRequest, RetryPolicy, StructuredExtractionProvider
from app.services.lab_upload_repository import LabUploadRepository
from app.services.storage_service import StorageService


# ============ PDF HELPERS ============

def make_pdf(pages: List[str]) -> bytes:
    """Build a real PDF with one text page per entry."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def biomarker_json(*biomarkers: dict, **extra) -> str:
    return json.dumps({"biomarkers": list(biomarkers), **extra})


# ============ FAKE COLLABORATORS ============

class InMemoryLabUploadRepository(LabUploadRepository):
    """Dict-backed repository that records every update for assertions."""

    def __init__(self, genders: Optional[Dict[str, str]] = None):
        self.records: Dict[str, LabUploadRecord] = {}
        self.updates: List[Dict[str, Any]] = []
        self.genders = genders or {}

    async def get(self, upload_id: str) -> Optional[LabUploadRecord]:
        return self.records.get(upload_id)

    async def create(self, record: LabUploadRecord) -> LabUploadRecord:
        record = record.model_copy(update={"id": uuid.uuid4().hex})
        self.records[record.id] = record
        return record

    def _write(self, upload_id: str, fields: Dict[str, Any]) -> LabUploadRecord:
        self.updates.append(dict(fields))
        record = self.records[upload_id].model_copy(update=fields)
        self.records[upload_id] = record
        return record

    async def update(self, upload_id: str, fields: Dict[str, Any]) -> LabUploadRecord:
        return self._write(upload_id, fields)

    async def claim(self, upload_id: str, expected_status, fields: Dict[str, Any]) -> Optional[LabUploadRecord]:
        # Check and write with no await in between, like a conditional update
        record = self.records.get(upload_id)
        if record is None or record.status != expected_status:
            return None
        return self._write(upload_id, fields)

    async def delete(self, upload_id: str) -> bool:
        return self.records.pop(upload_id, None) is not None

    async def list_for_user(self, user_id: str) -> List[LabUploadRecord]:
        records = [r for r in self.records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def get_user_gender(self, user_id: str) -> Optional[str]:
        return self.genders.get(user_id)


class ScriptedProvider(StructuredExtractionProvider):
    """
    Replays scripted responses per page (None = whole document).
    A script entry is either raw model text or an exception to raise.
    The last entry repeats once the script runs out.
    """

    name = "scripted"

    def __init__(self, script: Dict[Optional[int], list], model: str = "scripted-model", reasoning: str = "high"):
        super().__init__(model=model, reasoning=reasoning, timeout=5)
        self.script = {page: list(entries) for page, entries in script.items()}
        self.calls: List[ProviderRequest] = []

    async def _generate(self, request: ProviderRequest) -> str:
        self.calls.append(request)
        entries = self.script[request.page_number]
        entry = entries.pop(0) if len(entries) > 1 else entries[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    def calls_for(self, page_number: Optional[int]) -> int:
        return sum(1 for c in self.calls if c.page_number == page_number)


# ============ FIXTURES ============

@pytest.fixture
def repository():
    return InMemoryLabUploadRepository()


@pytest.fixture
def storage(tmp_path):
    return StorageService(root=str(tmp_path / "uploads"))


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, wait_seconds=0)


@pytest.fixture
def make_context(repository, storage, fast_retry):
    """Build a PipelineContext around the in-memory repository and scripted providers."""

    def build(extraction: ScriptedProvider, verification: Optional[ScriptedProvider] = None, **overrides):
        kwargs = dict(
            repository=repository,
            storage=storage,
            extraction_provider=extraction,
            verification_provider=verification or ScriptedProvider({}, model="verifier", reasoning="medium"),
            retry_policy=fast_retry,
            clock=datetime.utcnow,
        )
        kwargs.update(overrides)
        return PipelineContext(**kwargs)

    return build


@pytest.fixture
def create_upload(repository, storage):
    """Store a PDF and create a pending upload for it."""

    async def create(pdf_bytes: bytes, user_id: str = "user-1", skip_verification: bool = False) -> LabUploadRecord:
        storage_path = storage.save(user_id, "report.pdf", pdf_bytes)
        return await repository.create(
            LabUploadRecord(
                id="",
                user_id=user_id,
                filename="report.pdf",
                storage_path=storage_path,
                file_size=len(pdf_bytes),
                skip_verification=skip_verification,
            )
        )

    return create
