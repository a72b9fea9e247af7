"""PDF handling service using PyMuPDF."""

from dataclasses import dataclass
from typing import List

import fitz  # PyMuPDF

from app.core.logging import logger
from app.shared.exceptions import SplitError


@dataclass(frozen=True)
class PageChunk:
    """A single page re-packaged as a standalone PDF."""
    page_number: int  # 1-based
    data: bytes

    @property
    def byte_size(self) -> int:
        return len(self.data)


class PDFService:
    """Service for inspecting and splitting PDF documents held in memory."""

    @staticmethod
    def get_page_count(data: bytes) -> int:
        """Get number of pages in PDF. Returns 0 for unreadable input."""
        try:
            doc = fitz.open(stream=data, filetype="pdf")
            count = doc.page_count
            doc.close()
            return count
        except Exception as e:
            logger.error(f"Error getting page count: {e}")
            return 0

    @staticmethod
    def split_pages(data: bytes) -> List[PageChunk]:
        """
        Split a PDF into one single-page PDF per page, in page order.
        Raises SplitError if the document cannot be opened or has no pages.
        """
        try:
            source = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            raise SplitError(f"PDF could not be opened: {e}") from e

        try:
            if source.is_encrypted:
                raise SplitError("PDF is password-protected")
            if source.page_count < 1:
                raise SplitError("PDF has no readable pages")

            chunks = []
            for index in range(source.page_count):
                page_doc = fitz.open()
                page_doc.insert_pdf(source, from_page=index, to_page=index)
                chunks.append(PageChunk(page_number=index + 1, data=page_doc.tobytes()))
                page_doc.close()

            logger.info(f"Split PDF into {len(chunks)} pages")
            return chunks
        finally:
            source.close()
