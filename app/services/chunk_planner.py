"""Decides whether a document is processed whole or page by page."""

from dataclasses import dataclass
from typing import List, Optional

from app.config import settings
from app.services.pdf_service import PDFService
from app.shared.exceptions import SplitError


@dataclass(frozen=True)
class ChunkPlan:
    chunked: bool
    page_count: int
    pdf_size_bytes: int


@dataclass(frozen=True)
class WorkUnit:
    """The whole document (page_number None) or a single page."""
    data: bytes
    page_number: Optional[int] = None

    @property
    def label(self) -> str:
        return f"page {self.page_number}" if self.page_number is not None else "document"


def plan_chunks(
    page_count: int,
    pdf_size_bytes: int,
    min_pages: Optional[int] = None,
    min_bytes: Optional[int] = None,
) -> ChunkPlan:
    """
    Single-shot for one page, or for short documents under the size threshold.
    Everything else is chunked per page.
    """
    if page_count < 1:
        raise SplitError("PDF has no readable pages")

    min_pages = settings.CHUNK_MIN_PAGES if min_pages is None else min_pages
    min_bytes = settings.CHUNK_MIN_BYTES if min_bytes is None else min_bytes

    if page_count <= 1 or (page_count < min_pages and pdf_size_bytes < min_bytes):
        chunked = False
    else:
        chunked = True

    return ChunkPlan(chunked=chunked, page_count=page_count, pdf_size_bytes=pdf_size_bytes)


def build_units(plan: ChunkPlan, pdf_bytes: bytes) -> List[WorkUnit]:
    """Materialize the units of work a plan calls for."""
    if not plan.chunked:
        return [WorkUnit(data=pdf_bytes)]
    return [WorkUnit(data=page.data, page_number=page.page_number) for page in PDFService.split_pages(pdf_bytes)]
