"""
Shared dependencies across the application.

Routers get their collaborators from here so tests can swap them
through app.dependency_overrides.
"""

from app.graphs.lab_extraction.context import PipelineContext, build_default_context
from app.services.lab_upload_repository import BeanieLabUploadRepository, LabUploadRepository
from app.services.storage_service import StorageService


def get_repository() -> LabUploadRepository:
    return BeanieLabUploadRepository()


def get_storage() -> StorageService:
    return StorageService()


def get_pipeline_context() -> PipelineContext:
    return build_default_context()


__all__ = ["get_repository", "get_storage", "get_pipeline_context"]
