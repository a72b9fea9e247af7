"""Cross-page merge of chunked extraction results."""

import re
from dataclasses import dataclass, field
from typing import Dict, List

from app.core.logging import logger
from app.schemas.extraction import Biomarker


@dataclass
class PageResult:
    """Final biomarkers for one page after extraction and verification."""
    page_number: int
    biomarkers: List[Biomarker]
    verification_passed: bool = False
    corrections: List[str] = field(default_factory=list)


@dataclass
class BiomarkerConflict:
    biomarker_name: str
    source_pages: List[int]
    values: List[float]
    kept_value: float


@dataclass
class MergeResult:
    biomarkers: List[Biomarker]
    total_before: int = 0
    duplicates_removed: int = 0
    conflicts_resolved: int = 0
    conflicts: List[BiomarkerConflict] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    source_pages: Dict[str, List[int]] = field(default_factory=dict)

    @property
    def total_after(self) -> int:
        return len(self.biomarkers)


@dataclass
class _Entry:
    biomarker: Biomarker
    pages: List[int]
    values: List[float]
    passed: bool
    conflicted: bool = False


def merge_key(name: str) -> str:
    """Lower-cased name with all whitespace removed."""
    return re.sub(r"\s+", "", name.lower())


def values_match(a: float, b: float, tolerance: float) -> bool:
    """Relative comparison; identical values always match."""
    if a == b:
        return True
    return abs(a - b) <= tolerance * max(abs(a), abs(b))


def _fill_missing(kept: Biomarker, other: Biomarker) -> Biomarker:
    updates = {}
    if kept.reference_min is None and kept.reference_max is None and (
        other.reference_min is not None or other.reference_max is not None
    ):
        updates["reference_min"] = other.reference_min
        updates["reference_max"] = other.reference_max
    if kept.flag is None and other.flag is not None:
        updates["flag"] = other.flag
    return kept.model_copy(update=updates) if updates else kept


def merge_page_results(pages: List[PageResult], tolerance: float = 0.01) -> MergeResult:
    """
    Combine per-page biomarker lists into one list.

    Pages are processed in page-number order. A repeated key whose value is
    within `tolerance` is a duplicate: the first entry is kept and borrows any
    reference range or flag it lacks. A repeated key with a different value is
    a conflict: a verification-passed page beats an unverified one, otherwise
    the first occurrence wins. The winner keeps the first occurrence's position.
    """
    ordered = sorted(pages, key=lambda p: p.page_number)

    if len(ordered) == 1:
        only = ordered[0]
        return MergeResult(
            biomarkers=list(only.biomarkers),
            total_before=len(only.biomarkers),
            source_pages={merge_key(b.name): [only.page_number] for b in only.biomarkers},
        )

    entries: Dict[str, _Entry] = {}
    result = MergeResult(biomarkers=[])

    for page in ordered:
        for biomarker in page.biomarkers:
            result.total_before += 1
            key = merge_key(biomarker.name)
            entry = entries.get(key)

            if entry is None:
                entries[key] = _Entry(
                    biomarker=biomarker,
                    pages=[page.page_number],
                    values=[biomarker.value],
                    passed=page.verification_passed,
                )
                continue

            result.duplicates_removed += 1
            entry.pages.append(page.page_number)
            entry.values.append(biomarker.value)

            if values_match(entry.biomarker.value, biomarker.value, tolerance):
                entry.biomarker = _fill_missing(entry.biomarker, biomarker)
                continue

            result.conflicts_resolved += 1
            entry.conflicted = True
            result.warnings.append(
                f'Biomarker "{biomarker.name}" has different values on pages '
                f'{", ".join(str(p) for p in entry.pages)}: {entry.biomarker.value} vs {biomarker.value}'
            )
            if page.verification_passed and not entry.passed:
                entry.biomarker = biomarker
                entry.passed = True

    for key, entry in entries.items():
        result.biomarkers.append(entry.biomarker)
        result.source_pages[key] = entry.pages
        if entry.conflicted:
            result.conflicts.append(
                BiomarkerConflict(
                    biomarker_name=entry.biomarker.name,
                    source_pages=entry.pages,
                    values=entry.values,
                    kept_value=entry.biomarker.value,
                )
            )

    for warning in result.warnings:
        logger.warning(warning)
    logger.info(
        f"Merged {result.total_before} biomarkers into {result.total_after} "
        f"({result.duplicates_removed} removed, {result.conflicts_resolved} conflicts)"
    )
    return result


def merge_corrections(pages: List[PageResult]) -> List[str]:
    """All page corrections, prefixed with their page number, in page order."""
    corrections = []
    for page in sorted(pages, key=lambda p: p.page_number):
        corrections.extend(f"[Page {page.page_number}] {c}" for c in page.corrections)
    return corrections
