"""Assembles the per-run diagnostic record. Observes results, never changes them."""

from typing import Dict, List, Optional

from app.schemas.extraction import (
    ExtractionDebugInfo,
    ExtractionStageDebug,
    MatchingStageDebug,
    MergeStageDebug,
    PageDebugInfo,
    PageExtractionDebug,
    PageVerificationDebug,
    VerificationStageDebug,
)
from app.services.biomarker_matcher import MatchResult
from app.services.biomarker_merger import MergeResult
from app.services.extraction_service import ExtractionOutcome
from app.services.verification_service import VerificationOutcome


def truncate(text: Optional[str], limit: int) -> str:
    """Cap a raw model response, noting how much was cut."""
    text = text or ""
    if limit <= 0 or len(text) <= limit:
        return text
    return f"{text[:limit]}... [truncated {len(text) - limit} chars]"


def _joined_raw(outcomes, limit: int) -> str:
    if len(outcomes) == 1 and outcomes[0].page_number is None:
        return truncate(outcomes[0].raw_text, limit)
    parts = [f"--- Page {o.page_number} ---\n{o.raw_text}" for o in outcomes if o.raw_text]
    return truncate("\n\n".join(parts), limit)


def build_extraction_stage(
    model: str,
    thinking_level: Optional[str],
    outcomes: List[ExtractionOutcome],
    duration_ms: int,
    chunked: bool,
    raw_limit: int,
) -> ExtractionStageDebug:
    stage = ExtractionStageDebug(
        model=model,
        thinking_level=thinking_level,
        duration_ms=duration_ms,
        biomarkers_extracted=sum(len(o.biomarkers) for o in outcomes),
        raw_response=_joined_raw(outcomes, raw_limit),
    )
    if chunked:
        stage.pages_processed = len(outcomes)
        if outcomes:
            stage.avg_page_duration_ms = int(sum(o.duration_ms for o in outcomes) / len(outcomes))
    return stage


def build_verification_stage(
    model: Optional[str],
    reasoning_effort: Optional[str],
    outcomes: List[VerificationOutcome],
    duration_ms: int,
    chunked: bool,
    skipped: bool,
    verification_passed: Optional[bool],
    corrections_count: int,
    raw_limit: int,
) -> VerificationStageDebug:
    if skipped:
        return VerificationStageDebug(model=model, reasoning_effort=reasoning_effort, skipped=True)

    stage = VerificationStageDebug(
        model=model,
        reasoning_effort=reasoning_effort,
        duration_ms=duration_ms,
        verification_passed=verification_passed,
        corrections_count=corrections_count,
        raw_response=_joined_raw(outcomes, raw_limit) if outcomes else "",
    )
    if chunked:
        stage.pages_verified = len(outcomes)
        stage.pages_passed = sum(1 for o in outcomes if o.passed)
        stage.pages_failed = stage.pages_verified - stage.pages_passed
    return stage


def build_page_details(
    extractions: List[ExtractionOutcome],
    verifications: List[VerificationOutcome],
    preview_limit: int,
) -> List[PageDebugInfo]:
    verified: Dict[int, VerificationOutcome] = {v.page_number: v for v in verifications}
    details = []
    for extraction in sorted(extractions, key=lambda o: o.page_number or 0):
        page = PageDebugInfo(
            page_number=extraction.page_number,
            extraction=PageExtractionDebug(
                duration_ms=extraction.duration_ms,
                biomarkers_extracted=len(extraction.biomarkers),
                raw_response_preview=truncate(extraction.raw_text, preview_limit) or None,
                empty_page=extraction.empty_page,
                error=extraction.error,
            ),
        )
        verification = verified.get(extraction.page_number)
        if verification is not None:
            page.verification = PageVerificationDebug(
                duration_ms=verification.duration_ms,
                verification_passed=verification.passed,
                corrections_count=len(verification.corrections),
                corrections=list(verification.corrections),
                raw_response_preview=truncate(verification.raw_text, preview_limit) or None,
                error=verification.error,
            )
        details.append(page)
    return details


def build_merge_stage(merge: MergeResult) -> MergeStageDebug:
    return MergeStageDebug(
        total_biomarkers_before_merge=merge.total_before,
        total_biomarkers_after_merge=merge.total_after,
        duplicates_removed=merge.duplicates_removed,
        conflicts_resolved=merge.conflicts_resolved,
    )


def build_matching_stage(
    match: MatchResult,
    standards_count: int,
    user_gender: Optional[str],
    duration_ms: int,
    raw_limit: int,
) -> MatchingStageDebug:
    return MatchingStageDebug(
        duration_ms=duration_ms,
        standards_count=standards_count,
        user_gender=user_gender,
        matched_count=match.matched_count,
        unmatched_count=match.unmatched_count,
        conversion_method=match.method,
        conversions_applied=match.conversions_applied,
        conversions_missing=match.conversions_missing,
        match_details=list(match.match_details),
        raw_response=truncate(match.raw_response, raw_limit) if match.raw_response else None,
    )
