"""Stage 2: independent audit of an extraction against the source PDF."""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from app.core.logging import logger
from app.schemas.extraction import Biomarker, LabMetadata
from app.services.ai_providers import (
    ProviderRequest,
    RetryPolicy,
    StructuredExtractionProvider,
    call_with_retry,
)
from app.services.chunk_planner import WorkUnit
from app.services.extraction_service import (
    ExtractionOutcome,
    gather_or_cancel,
    parse_biomarkers,
    parse_metadata,
)
from app.shared.exceptions import ProviderError, VerificationError


VERIFICATION_SYSTEM_PROMPT = """You are a meticulous medical data auditor.
You compare extracted lab data with the original document and correct any mistakes."""

VERIFICATION_PROMPT = """You are verifying a lab result extraction. You are given:

1. The original lab result PDF (attached as a file)
2. The extracted data from another AI model (shown below as JSON)

## Extracted Data to Verify:
```json
{extracted_json}
```

## Verification Checklist:
1. Patient name, gender, and birthday must match the PDF exactly
2. Lab name and ordering doctor must match the PDF
3. Test date must be correct
4. For EACH biomarker, verify against the PDF:
   - Name: standard English medical terminology
   - Value: exactly correct
   - Unit: the primary unit shown in the PDF
   - Secondary value/unit: if the PDF shows values in multiple units
   - Reference range: min and max must match the PDF
   - Flag: only if stated in the PDF
5. Add any biomarker the extraction missed and remove any that is not in the PDF

## Response Format:
Return ONLY valid JSON (no markdown code blocks) with the corrected/verified data:
{{
    "client_name": "...",
    "client_gender": "male" or "female" or "other",
    "client_birthday": "YYYY-MM-DD",
    "lab_name": "...",
    "ordering_doctor": "...",
    "test_date": "YYYY-MM-DD",
    "biomarkers": [ same shape as the input biomarkers ],
    "corrections": ["One entry per correction made"],
    "verification_passed": true
}}

Set "verification_passed" to false if any correction changed a value, unit or reference range."""


@dataclass
class VerificationOutcome:
    """Verified (or, on failure, the original) data for one unit of work."""
    biomarkers: List[Biomarker] = field(default_factory=list)
    metadata: LabMetadata = field(default_factory=LabMetadata)
    passed: bool = False
    corrections: List[str] = field(default_factory=list)
    raw_text: str = ""
    duration_ms: int = 0
    page_number: Optional[int] = None
    error: Optional[str] = None


def _merge_metadata(original: LabMetadata, verified: LabMetadata) -> LabMetadata:
    merged = original.model_dump()
    for key, value in verified.model_dump().items():
        if value is not None:
            merged[key] = value
    return LabMetadata(**merged)


def _parse_verification(data: dict, extraction: ExtractionOutcome):
    biomarkers = data.get("biomarkers")
    if not isinstance(biomarkers, list):
        raise VerificationError("Verification response is missing the biomarkers list")

    corrections = data.get("corrections") or []
    if not isinstance(corrections, list):
        corrections = [corrections]
    corrections = [str(c) for c in corrections if c]

    passed = data.get("verification_passed", data.get("verificationPassed"))
    if not isinstance(passed, bool):
        passed = not corrections

    metadata = _merge_metadata(extraction.metadata, parse_metadata(data))
    return parse_biomarkers(biomarkers), metadata, passed, corrections


async def verify_unit(
    provider: StructuredExtractionProvider,
    unit: WorkUnit,
    extraction: ExtractionOutcome,
    policy: RetryPolicy,
) -> VerificationOutcome:
    """
    Audit one unit's extraction. Never raises: on any failure the extraction is
    kept unverified with a correction note describing the degradation.
    """
    started = time.perf_counter()
    extracted = {
        **extraction.metadata.model_dump(exclude_none=True),
        "biomarkers": [b.model_dump(exclude_none=True) for b in extraction.biomarkers],
    }
    request = ProviderRequest(
        system_prompt=VERIFICATION_SYSTEM_PROMPT,
        user_prompt=VERIFICATION_PROMPT.format(extracted_json=json.dumps(extracted, indent=2)),
        pdf_bytes=unit.data,
        filename=f"lab_report_page_{unit.page_number}.pdf" if unit.page_number else "lab_report.pdf",
        page_number=unit.page_number,
    )

    raw_text = ""
    try:
        try:
            response = await call_with_retry(provider, request, policy)
        except ProviderError as e:
            raise VerificationError(str(e)) from e
        raw_text = response.raw_text
        biomarkers, metadata, passed, corrections = _parse_verification(response.data, extraction)
    except VerificationError as e:
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.warning(f"Verification of {unit.label} failed, keeping unverified extraction: {e}")
        return VerificationOutcome(
            biomarkers=list(extraction.biomarkers),
            metadata=extraction.metadata,
            passed=False,
            corrections=[f"Verification failed: {e} - returning unverified extraction"],
            raw_text=raw_text,
            duration_ms=duration_ms,
            page_number=unit.page_number,
            error=str(e),
        )

    outcome = VerificationOutcome(
        biomarkers=biomarkers,
        metadata=metadata,
        passed=passed,
        corrections=corrections,
        raw_text=raw_text,
        duration_ms=int((time.perf_counter() - started) * 1000),
        page_number=unit.page_number,
    )
    logger.info(
        f"Verified {unit.label}: passed={passed}, {len(corrections)} corrections in {outcome.duration_ms}ms"
    )
    return outcome


async def verify_pages(
    provider: StructuredExtractionProvider,
    units: List[WorkUnit],
    extractions: List[ExtractionOutcome],
    policy: RetryPolicy,
    concurrency: int,
    on_page_done: Optional[Callable[[VerificationOutcome], Awaitable[None]]] = None,
) -> List[VerificationOutcome]:
    """
    Verify every page that produced biomarkers, concurrently (bounded).
    Failed and empty pages are not sent. Results are ordered by page number.
    """
    by_page = {e.page_number: e for e in extractions}
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(unit: WorkUnit, extraction: ExtractionOutcome) -> VerificationOutcome:
        async with semaphore:
            outcome = await verify_unit(provider, unit, extraction, policy)
        if on_page_done is not None:
            await on_page_done(outcome)
        return outcome

    tasks = []
    for unit in units:
        extraction = by_page.get(unit.page_number)
        if extraction is None or extraction.failed or extraction.empty_page:
            continue
        tasks.append(run_one(unit, extraction))

    outcomes = await gather_or_cancel(tasks)
    return sorted(outcomes, key=lambda o: o.page_number or 0)
