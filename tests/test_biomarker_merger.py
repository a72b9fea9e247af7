"""Tests for the cross-page merge."""

import itertools

from app.schemas.extraction import Biomarker
from app.services.biomarker_merger import (
    PageResult,
    merge_corrections,
    merge_key,
    merge_page_results,
    values_match,
)


def bm(name, value, unit="mg/dL", **kwargs):
    return Biomarker(name=name, value=value, unit=unit, **kwargs)


def test_merge_key_ignores_case_and_whitespace():
    assert merge_key("HDL Cholesterol") == merge_key("hdl  cholesterol ") == "hdlcholesterol"


def test_values_match_relative_tolerance():
    assert values_match(100.0, 100.9, 0.01)
    assert not values_match(100.0, 102.0, 0.01)
    assert values_match(0.0, 0.0, 0.01)


def test_single_page_is_identity():
    page = PageResult(page_number=1, biomarkers=[bm("Glucose", 95), bm("glucose", 97)])

    result = merge_page_results([page])

    assert result.biomarkers == page.biomarkers
    assert result.duplicates_removed == 0
    assert result.conflicts_resolved == 0


def test_duplicate_within_tolerance_keeps_first_and_fills_range():
    pages = [
        PageResult(page_number=1, biomarkers=[bm("Glucose", 95.0)]),
        PageResult(page_number=2, biomarkers=[bm("glucose", 95.5, reference_min=70, reference_max=100, flag="normal")]),
    ]

    result = merge_page_results(pages, tolerance=0.01)

    assert len(result.biomarkers) == 1
    kept = result.biomarkers[0]
    assert kept.value == 95.0
    assert (kept.reference_min, kept.reference_max, kept.flag) == (70, 100, "normal")
    assert result.duplicates_removed == 1
    assert result.conflicts_resolved == 0


def test_conflict_prefers_verified_page_and_keeps_position():
    pages = [
        PageResult(page_number=1, biomarkers=[bm("LDL", 160), bm("HDL", 50)], verification_passed=False),
        PageResult(page_number=2, biomarkers=[bm("LDL", 130)], verification_passed=True),
    ]

    result = merge_page_results(pages)

    assert [b.name for b in result.biomarkers] == ["LDL", "HDL"]
    assert result.biomarkers[0].value == 130
    assert result.conflicts_resolved == 1
    assert result.conflicts[0].source_pages == [1, 2]
    assert result.conflicts[0].kept_value == 130


def test_conflict_without_verified_winner_keeps_first_occurrence():
    pages = [
        PageResult(page_number=1, biomarkers=[bm("TSH", 2.1, "mIU/L")], verification_passed=True),
        PageResult(page_number=2, biomarkers=[bm("TSH", 3.4, "mIU/L")], verification_passed=True),
    ]

    result = merge_page_results(pages)

    assert result.biomarkers[0].value == 2.1
    assert result.warnings


def test_conservation_holds():
    pages = [
        PageResult(page_number=1, biomarkers=[bm("A", 1), bm("B", 2), bm("C", 3)]),
        PageResult(page_number=2, biomarkers=[bm("a", 1), bm("B", 5)]),
        PageResult(page_number=3, biomarkers=[bm("C", 3), bm("D", 4)]),
    ]

    result = merge_page_results(pages)

    assert result.total_before == 7
    assert result.total_after == result.total_before - result.duplicates_removed
    assert result.total_after == 4


def test_merge_is_independent_of_completion_order():
    pages = [
        PageResult(page_number=1, biomarkers=[bm("LDL", 160), bm("HDL", 50)]),
        PageResult(page_number=2, biomarkers=[bm("LDL", 130)], verification_passed=True),
        PageResult(page_number=3, biomarkers=[bm("HDL", 50.2, reference_min=40), bm("TG", 120)]),
    ]

    results = [merge_page_results(list(order)) for order in itertools.permutations(pages)]

    first = results[0]
    for other in results[1:]:
        assert other.biomarkers == first.biomarkers
        assert other.duplicates_removed == first.duplicates_removed


def test_merge_corrections_are_prefixed_by_page():
    pages = [
        PageResult(page_number=2, biomarkers=[], corrections=["Fixed LDL unit"]),
        PageResult(page_number=1, biomarkers=[], corrections=["Added HDL"]),
    ]

    assert merge_corrections(pages) == ["[Page 1] Added HDL", "[Page 2] Fixed LDL unit"]
