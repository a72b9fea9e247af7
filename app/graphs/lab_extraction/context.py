"""Collaborators a lab extraction run depends on."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from app.config import settings
from app.services.ai_providers import (
    RetryPolicy,
    StructuredExtractionProvider,
    get_extraction_provider,
    get_verification_provider,
)
from app.services.biomarker_catalog import BiomarkerCatalog, load_catalog
from app.services.lab_upload_repository import BeanieLabUploadRepository, LabUploadRepository
from app.services.matching_assistant import MatchingAssistant
from app.services.storage_service import StorageService


@dataclass
class PipelineContext:
    """Passed to every node through config["configurable"]["context"]."""
    repository: LabUploadRepository
    storage: StorageService
    extraction_provider: StructuredExtractionProvider
    verification_provider: StructuredExtractionProvider
    catalog_loader: Callable[[], BiomarkerCatalog] = load_catalog
    matching_assistant: Optional[MatchingAssistant] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy.from_settings)
    max_page_concurrency: int = settings.MAX_PAGE_CONCURRENCY
    chunk_min_pages: int = settings.CHUNK_MIN_PAGES
    chunk_min_bytes: int = settings.CHUNK_MIN_BYTES
    duplicate_tolerance: float = settings.DUPLICATE_VALUE_TOLERANCE
    raw_response_max_chars: int = settings.RAW_RESPONSE_MAX_CHARS
    raw_response_preview_chars: int = settings.RAW_RESPONSE_PREVIEW_CHARS
    clock: Callable[[], datetime] = datetime.utcnow


def build_default_context(repository: Optional[LabUploadRepository] = None) -> PipelineContext:
    """Production wiring from settings."""
    return PipelineContext(
        repository=repository or BeanieLabUploadRepository(),
        storage=StorageService(),
        extraction_provider=get_extraction_provider(),
        verification_provider=get_verification_provider(),
        matching_assistant=MatchingAssistant() if settings.MATCHING_MODEL_ASSIST else None,
    )
