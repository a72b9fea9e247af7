"""Tests for PDF inspection and splitting with PyMuPDF."""

import fitz
import pytest

from app.services.pdf_service import PDFService
from app.shared.exceptions import SplitError

from tests.conftest import make_pdf


def test_page_count():
    assert PDFService.get_page_count(make_pdf(["a", "b", "c"])) == 3


def test_page_count_of_garbage_is_zero():
    assert PDFService.get_page_count(b"definitely not a pdf") == 0


def test_split_pages_keeps_page_text():
    chunks = PDFService.split_pages(make_pdf(["HDL 1.42 mmol/L", "Notes only"]))

    assert [c.page_number for c in chunks] == [1, 2]
    doc = fitz.open(stream=chunks[0].data, filetype="pdf")
    assert "HDL 1.42" in doc[0].get_text()
    doc.close()
    assert chunks[0].byte_size == len(chunks[0].data)


def test_split_unreadable_pdf_raises():
    with pytest.raises(SplitError):
        PDFService.split_pages(b"%PDF-broken")
