"""Stage 1: biomarker extraction from a PDF or a single page."""

import asyncio
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
from app.shared.exceptions import ExtractionError, ProviderError


EXTRACTION_SYSTEM_PROMPT = """You are a medical lab report data extractor.
You read lab result documents and return their contents as strict JSON."""

EXTRACTION_PROMPT = """Analyze this lab result PDF and extract all data as JSON.

Return ONLY valid JSON in this exact format (no markdown, no code blocks):
{
    "client_name": "Patient full name exactly as shown",
    "client_gender": "male" or "female" or "other",
    "client_birthday": "YYYY-MM-DD",
    "lab_name": "Lab facility name",
    "ordering_doctor": "Doctor name if shown",
    "test_date": "YYYY-MM-DD format of when tests were performed",
    "biomarkers": [
        {
            "name": "Standard English biomarker name",
            "value": 123.4,
            "unit": "primary unit as shown in PDF",
            "secondary_value": 6.8,
            "secondary_unit": "alternative unit if shown",
            "reference_min": 0,
            "reference_max": 100,
            "flag": "high" or "low" or "normal"
        }
    ]
}

Important:
- Extract ALL biomarkers/tests visible in the document
- TRANSLATE all biomarker names to standard English medical terminology
- Use standard abbreviations where appropriate (e.g., LDL, HDL, TSH, HbA1c, ALT, AST, WBC, RBC)
- Keep the ORIGINAL unit from the PDF as "unit"
- If the PDF shows a secondary value with a different unit, include "secondary_value" and "secondary_unit"
- Parse numeric values correctly (remove thousands separators, handle decimals)
- Only set "flag" when the report states it explicitly
- If a field is not found, omit it from the response
- If the page contains no test results, return an empty "biomarkers" list"""

FLAGS = {"high", "low", "normal"}
GENDERS = {"male", "female", "other"}


@dataclass
class ExtractionOutcome:
    """Result of extracting one unit of work."""
    biomarkers: List[Biomarker] = field(default_factory=list)
    metadata: LabMetadata = field(default_factory=LabMetadata)
    raw_text: str = ""
    duration_ms: int = 0
    page_number: Optional[int] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def empty_page(self) -> bool:
        return not self.failed and not self.biomarkers


# ============ PARSING ============

def _pick(data: dict, *keys):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def parse_number(value) -> Optional[float]:
    """Lenient numeric parse. Returns None for anything that is not a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace(" ", "")
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None

    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _optional_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_biomarkers(items) -> List[Biomarker]:
    """Coerce model output into Biomarkers, dropping items without a name or numeric value."""
    if not isinstance(items, list):
        return []

    biomarkers = []
    for item in items:
        if not isinstance(item, dict):
            continue

        name = _optional_text(item.get("name"))
        value = parse_number(item.get("value"))
        if not name or value is None:
            logger.debug(f"Dropping unparseable biomarker: {item}")
            continue

        flag = _optional_text(item.get("flag"))
        flag = flag.lower() if flag else None

        biomarkers.append(
            Biomarker(
                name=name,
                value=value,
                unit=_optional_text(item.get("unit")) or "",
                secondary_value=parse_number(_pick(item, "secondary_value", "secondaryValue")),
                secondary_unit=_optional_text(_pick(item, "secondary_unit", "secondaryUnit")),
                reference_min=parse_number(_pick(item, "reference_min", "referenceMin")),
                reference_max=parse_number(_pick(item, "reference_max", "referenceMax")),
                flag=flag if flag in FLAGS else None,
            )
        )
    return biomarkers


def parse_metadata(data: dict) -> LabMetadata:
    gender = _optional_text(_pick(data, "client_gender", "clientGender"))
    gender = gender.lower() if gender else None

    return LabMetadata(
        client_name=_optional_text(_pick(data, "client_name", "clientName")),
        client_gender=gender if gender in GENDERS else None,
        client_birthday=_optional_text(_pick(data, "client_birthday", "clientBirthday")),
        lab_name=_optional_text(_pick(data, "lab_name", "labName")),
        ordering_doctor=_optional_text(_pick(data, "ordering_doctor", "orderingDoctor")),
        test_date=_optional_text(_pick(data, "test_date", "testDate")),
    )


# ============ EXTRACTION ============

async def gather_or_cancel(coroutines) -> list:
    """
    Run coroutines concurrently like asyncio.gather. If one raises, the
    others are cancelled and awaited before the error propagates.
    """
    tasks = [asyncio.ensure_future(c) for c in coroutines]
    try:
        return await asyncio.gather(*tasks)
    finally:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


async def extract_unit(
    provider: StructuredExtractionProvider,
    unit: WorkUnit,
    policy: RetryPolicy,
) -> ExtractionOutcome:
    """
    Extract biomarkers from one unit of work.
    Raises ExtractionError once retries are exhausted or on a permanent failure.
    """
    started = time.perf_counter()
    user_prompt = EXTRACTION_PROMPT
    if unit.page_number is not None:
        user_prompt += f"\n\nThis document is page {unit.page_number} of a larger lab report."

    request = ProviderRequest(
        system_prompt=EXTRACTION_SYSTEM_PROMPT,
        user_prompt=user_prompt,
        pdf_bytes=unit.data,
        filename=f"lab_report_page_{unit.page_number}.pdf" if unit.page_number else "lab_report.pdf",
        page_number=unit.page_number,
    )

    try:
        response = await call_with_retry(provider, request, policy)
    except ProviderError as e:
        raise ExtractionError(f"Extraction failed for {unit.label}: {e}") from e

    outcome = ExtractionOutcome(
        biomarkers=parse_biomarkers(response.data.get("biomarkers")),
        metadata=parse_metadata(response.data),
        raw_text=response.raw_text,
        duration_ms=int((time.perf_counter() - started) * 1000),
        page_number=unit.page_number,
    )
    logger.info(f"Extracted {len(outcome.biomarkers)} biomarkers from {unit.label} in {outcome.duration_ms}ms")
    return outcome


async def extract_pages(
    provider: StructuredExtractionProvider,
    units: List[WorkUnit],
    policy: RetryPolicy,
    concurrency: int,
    on_page_done: Optional[Callable[[ExtractionOutcome], Awaitable[None]]] = None,
) -> List[ExtractionOutcome]:
    """
    Extract every page concurrently (bounded), ordered by page number.
    A failed page yields an outcome with `error` set instead of raising.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def run_one(unit: WorkUnit) -> ExtractionOutcome:
        async with semaphore:
            started = time.perf_counter()
            try:
                outcome = await extract_unit(provider, unit, policy)
            except ExtractionError as e:
                logger.warning(f"{e}; continuing without {unit.label}")
                outcome = ExtractionOutcome(
                    page_number=unit.page_number,
                    duration_ms=int((time.perf_counter() - started) * 1000),
                    error=str(e.__cause__ or e),
                )
        if on_page_done is not None:
            await on_page_done(outcome)
        return outcome

    outcomes = await gather_or_cancel(run_one(unit) for unit in units)
    return sorted(outcomes, key=lambda o: o.page_number or 0)


def combine_metadata(pages: List[LabMetadata]) -> LabMetadata:
    """First non-empty value per field, pages given in page order."""
    combined = {}
    for metadata in pages:
        for key, value in metadata.model_dump().items():
            if value is not None and combined.get(key) is None:
                combined[key] = value
    return LabMetadata(**combined)
