"""Business logic services."""

from app.services.pdf_service import PDFService
from app.services.storage_service import StorageService

__all__ = ["PDFService", "StorageService"]
