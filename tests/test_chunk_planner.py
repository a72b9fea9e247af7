"""Tests for single-shot vs chunked planning and PDF splitting."""

import pytest

from app.services.chunk_planner import WorkUnit, build_units, plan_chunks
from app.services.pdf_service import PDFService
from app.shared.exceptions import SplitError

from tests.conftest import make_pdf

MIB = 1024 * 1024


# ============ PLANNING ============

def test_single_page_is_single_shot():
    plan = plan_chunks(1, 20 * MIB, min_pages=2, min_bytes=5 * MIB)
    assert plan.chunked is False


def test_multi_page_is_chunked_with_defaults():
    plan = plan_chunks(2, 10_000, min_pages=2, min_bytes=5 * MIB)
    assert plan.chunked is True
    assert plan.page_count == 2


def test_short_small_document_stays_single_shot_when_threshold_raised():
    plan = plan_chunks(3, 100_000, min_pages=5, min_bytes=5 * MIB)
    assert plan.chunked is False


def test_short_but_large_document_is_chunked():
    plan = plan_chunks(3, 6 * MIB, min_pages=5, min_bytes=5 * MIB)
    assert plan.chunked is True


def test_zero_pages_raises_split_error():
    with pytest.raises(SplitError, match="no readable pages"):
        plan_chunks(0, 1000)


# ============ UNITS ============

def test_single_shot_unit_is_whole_document():
    pdf = make_pdf(["Glucose 95 mg/dL"])
    units = build_units(plan_chunks(1, len(pdf)), pdf)
    assert units == [WorkUnit(data=pdf)]
    assert units[0].label == "document"


def test_chunked_units_are_single_pages_in_order():
    pdf = make_pdf(["page one", "page two", "page three"])
    plan = plan_chunks(3, len(pdf), min_pages=2, min_bytes=5 * MIB)

    units = build_units(plan, pdf)

    assert [u.page_number for u in units] == [1, 2, 3]
    assert all(PDFService.get_page_count(u.data) == 1 for u in units)
    assert units[1].label == "page 2"
