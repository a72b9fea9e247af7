"""LangGraph nodes for lab extraction workflow."""

import asyncio
import time
from typing import List, Literal, Optional

from langchain_core.runnables import RunnableConfig

from app.core.logging import get_upload_logger
from app.graphs.lab_extraction.context import PipelineContext
from app.graphs.lab_extraction.state import LabExtractionState
from app.schemas.extraction import ExtractedLabData, ExtractionDebugInfo, LabMetadata
from app.schemas.lab_upload import LabUploadStatus, ProcessingStage
from app.services import telemetry
from app.services.biomarker_matcher import match_biomarkers, resolve_gender
from app.services.biomarker_merger import PageResult, merge_corrections, merge_page_results
from app.services.chunk_planner import WorkUnit, build_units, plan_chunks
from app.services.extraction_service import (
    ExtractionOutcome,
    combine_metadata,
    extract_pages,
    extract_unit,
)
from app.services.job_state import LabUploadJob
from app.services.pdf_service import PDFService
from app.services.verification_service import VerificationOutcome, verify_pages, verify_unit
from app.shared.exceptions import ExtractionError, MatchingError, PipelineError


CONFIDENCE_VERIFIED = 0.95
CONFIDENCE_UNVERIFIED = 0.8
CONFIDENCE_VERIFICATION_FAILED = 0.7


def get_context(config: RunnableConfig) -> PipelineContext:
    return config["configurable"]["context"]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _with_duration(state: LabExtractionState, stage: str, started: float) -> dict:
    return {**state.get("durations", {}), stage: _elapsed_ms(started)}


# ============ NODE 1: START JOB ============

async def start_job(state: LabExtractionState, config: RunnableConfig) -> dict:
    """
    Load the upload and claim it for this run.
    Uploads that are missing, not pending, or claimed by a concurrent run
    are left untouched.
    """
    ctx = get_context(config)
    log = get_upload_logger(state["upload_id"])

    record = await ctx.repository.get(state["upload_id"])
    if record is None:
        log.error("Upload not found, nothing to process")
        return {"job": None}
    if record.status != LabUploadStatus.PENDING:
        log.warning(f"Upload is '{record.status.value}', not pending; skipping run")
        return {"job": None}

    job = LabUploadJob(ctx.repository, record)
    if await job.start(now=ctx.clock()) is None:
        log.warning("Another run claimed this upload; skipping run")
        return {"job": None}
    log.info(f"Processing {record.filename} ({record.file_size} bytes)")

    return {
        "job": job,
        "run_started": time.perf_counter(),
        "durations": {},
        "error": None,
    }


# ============ NODE 2: FETCH PDF ============

async def fetch_pdf(state: LabExtractionState, config: RunnableConfig) -> dict:
    ctx = get_context(config)
    job = state["job"]

    try:
        pdf_bytes = await ctx.storage.read(job.record.storage_path)
    except PipelineError as e:
        return {"error": str(e)}

    get_upload_logger(job.upload_id).info(f"Fetched PDF ({len(pdf_bytes)} bytes)")
    return {"pdf_bytes": pdf_bytes, "pdf_size_bytes": len(pdf_bytes)}


# ============ NODE 3: PLAN CHUNKS ============

async def plan_document(state: LabExtractionState, config: RunnableConfig) -> dict:
    """Count pages and choose single-shot or per-page processing."""
    ctx = get_context(config)
    log = get_upload_logger(state["job"].upload_id)

    page_count = PDFService.get_page_count(state["pdf_bytes"])
    try:
        plan = plan_chunks(page_count, state["pdf_size_bytes"], ctx.chunk_min_pages, ctx.chunk_min_bytes)
    except PipelineError as e:
        return {"error": str(e), "page_count": page_count}

    log.info(f"{page_count} page(s), {'chunked' if plan.chunked else 'single-shot'} processing")
    updates = {"plan": plan, "page_count": page_count, "chunked": plan.chunked}
    if not plan.chunked:
        updates["units"] = build_units(plan, state["pdf_bytes"])
    return updates


# ============ NODE 4: SPLIT PAGES ============

async def split_pages(state: LabExtractionState, config: RunnableConfig) -> dict:
    job: LabUploadJob = state["job"]
    await job.advance_stage(ProcessingStage.SPLITTING_PAGES)

    try:
        units = build_units(state["plan"], state["pdf_bytes"])
    except PipelineError as e:
        return {"error": str(e)}

    await job.record_progress(0, len(units))
    return {"units": units}


# ============ NODE 5: EXTRACT ============

async def extract_units(state: LabExtractionState, config: RunnableConfig) -> dict:
    """Stage 1. Single-shot failures fail the job; chunked failures degrade per page."""
    ctx = get_context(config)
    job: LabUploadJob = state["job"]
    log = get_upload_logger(job.upload_id, "extraction")
    units: List[WorkUnit] = state["units"]
    started = time.perf_counter()

    await job.advance_stage(ProcessingStage.EXTRACTING_GEMINI)

    if not state.get("chunked"):
        try:
            outcome = await extract_unit(ctx.extraction_provider, units[0], ctx.retry_policy)
        except ExtractionError as e:
            return {"error": str(e), "durations": _with_duration(state, "extraction", started)}
        return {"extractions": [outcome], "durations": _with_duration(state, "extraction", started)}

    progress_lock = asyncio.Lock()
    done = 0

    async def on_page_done(outcome: ExtractionOutcome) -> None:
        nonlocal done
        async with progress_lock:
            done += 1
            try:
                await job.record_progress(done, len(units))
            except Exception as e:
                # Progress writes are best effort
                log.warning(f"Could not record progress {done}/{len(units)}: {e}")

    outcomes = await extract_pages(
        ctx.extraction_provider,
        units,
        ctx.retry_policy,
        ctx.max_page_concurrency,
        on_page_done=on_page_done,
    )

    failed = [o for o in outcomes if o.failed]
    log.info(f"Extracted {len(units) - len(failed)}/{len(units)} pages")
    if len(failed) == len(outcomes):
        return {
            "error": f"Extraction failed for all {len(outcomes)} pages: {failed[0].error}",
            "extractions": outcomes,
            "durations": _with_duration(state, "extraction", started),
        }
    return {"extractions": outcomes, "durations": _with_duration(state, "extraction", started)}


# ============ NODE 6: VERIFY ============

async def verify_units(state: LabExtractionState, config: RunnableConfig) -> dict:
    """Stage 2. Never fails the job."""
    ctx = get_context(config)
    job: LabUploadJob = state["job"]
    log = get_upload_logger(job.upload_id, "verification")

    if job.record.skip_verification:
        log.info("Verification skipped by request")
        return {"verifications": [], "verification_skipped": True}

    started = time.perf_counter()
    await job.advance_stage(ProcessingStage.VERIFYING_GPT)
    units: List[WorkUnit] = state["units"]
    extractions: List[ExtractionOutcome] = state["extractions"]

    if not state.get("chunked"):
        extraction = extractions[0]
        if extraction.empty_page:
            log.info("Nothing extracted; verification not needed")
            verifications = []
        else:
            verifications = [await verify_unit(ctx.verification_provider, units[0], extraction, ctx.retry_policy)]
    else:
        verifications = await verify_pages(
            ctx.verification_provider,
            units,
            extractions,
            ctx.retry_policy,
            ctx.max_page_concurrency,
        )

    return {
        "verifications": verifications,
        "verification_skipped": False,
        "durations": _with_duration(state, "verification", started),
    }


# ============ NODE 7: MERGE ============

def _overall_verification(state: LabExtractionState, verifications: List[VerificationOutcome]) -> Optional[bool]:
    if state.get("verification_skipped") or not verifications:
        return None
    return all(v.passed for v in verifications)


async def merge_results(state: LabExtractionState, config: RunnableConfig) -> dict:
    """Combine the units into one biomarker list. Identity for a single unit."""
    ctx = get_context(config)
    extractions: List[ExtractionOutcome] = state["extractions"]
    verifications: List[VerificationOutcome] = state.get("verifications", [])
    verified = {v.page_number: v for v in verifications}
    verification_passed = _overall_verification(state, verifications)

    if not state.get("chunked"):
        extraction = extractions[0]
        verification = verified.get(extraction.page_number)
        source = verification or extraction
        return {
            "biomarkers": list(source.biomarkers),
            "metadata": source.metadata,
            "corrections": list(verification.corrections) if verification else [],
            "verification_passed": verification_passed,
            "merge": None,
        }

    pages = []
    page_metadata = []
    for extraction in extractions:
        if extraction.failed:
            pages.append(
                PageResult(
                    page_number=extraction.page_number,
                    biomarkers=[],
                    corrections=[f"Extraction failed: {extraction.error} - page skipped"],
                )
            )
            continue
        verification = verified.get(extraction.page_number)
        source = verification or extraction
        page_metadata.append(source.metadata)
        pages.append(
            PageResult(
                page_number=extraction.page_number,
                biomarkers=list(source.biomarkers),
                verification_passed=bool(verification and verification.passed),
                corrections=list(verification.corrections) if verification else [],
            )
        )

    merge = merge_page_results(pages, ctx.duplicate_tolerance)
    metadata = combine_metadata(page_metadata)
    return {
        "biomarkers": merge.biomarkers,
        "metadata": metadata,
        "corrections": merge_corrections(pages),
        "verification_passed": verification_passed,
        "merge": merge,
    }


# ============ NODE 8: MATCH ============

async def match_stage(state: LabExtractionState, config: RunnableConfig) -> dict:
    """Stage 3. Any failure here leaves the job partial, never failed."""
    ctx = get_context(config)
    job: LabUploadJob = state["job"]
    log = get_upload_logger(job.upload_id, "matching")
    started = time.perf_counter()

    await job.advance_stage(ProcessingStage.POST_PROCESSING)
    metadata: LabMetadata = state["metadata"]

    try:
        try:
            catalog = ctx.catalog_loader()
            profile_gender = await ctx.repository.get_user_gender(job.record.user_id)
            gender = resolve_gender(profile_gender, metadata.client_gender)

            result = match_biomarkers(state["biomarkers"], catalog, gender)
            if ctx.matching_assistant is not None and result.unmatched_count:
                unmatched = [p.original_name for p in result.processed if not p.matched]
                hints, raw = await ctx.matching_assistant.suggest(unmatched, catalog)
                if hints:
                    result = match_biomarkers(state["biomarkers"], catalog, gender, name_hints=hints)
                result.raw_response = raw
        except MatchingError:
            raise
        except Exception as e:
            raise MatchingError(f"{type(e).__name__}: {e}") from e
    except MatchingError as e:
        log.error(f"Post-processing failed: {e}")
        return {"matching_error": str(e), "durations": _with_duration(state, "matching", started)}

    return {
        "match": result,
        "standards_count": len(catalog),
        "user_gender": gender,
        "matching_error": None,
        "durations": _with_duration(state, "matching", started),
    }


# ============ NODE 9: FINALIZE ============

def extraction_confidence(verification_passed: Optional[bool]) -> float:
    if verification_passed is None:
        return CONFIDENCE_UNVERIFIED
    return CONFIDENCE_VERIFIED if verification_passed else CONFIDENCE_VERIFICATION_FAILED


def build_debug_info(state: LabExtractionState, ctx: PipelineContext) -> ExtractionDebugInfo:
    durations = state.get("durations", {})
    chunked = bool(state.get("chunked"))
    extractions = state.get("extractions", [])
    verifications = state.get("verifications", [])
    raw_limit = ctx.raw_response_max_chars

    debug = ExtractionDebugInfo(
        total_duration_ms=_elapsed_ms(state["run_started"]),
        pdf_size_bytes=state.get("pdf_size_bytes", 0),
        stage1=telemetry.build_extraction_stage(
            model=ctx.extraction_provider.model,
            thinking_level=ctx.extraction_provider.reasoning,
            outcomes=extractions,
            duration_ms=durations.get("extraction", 0),
            chunked=chunked,
            raw_limit=raw_limit,
        ),
        stage2=telemetry.build_verification_stage(
            model=ctx.verification_provider.model,
            reasoning_effort=ctx.verification_provider.reasoning,
            outcomes=verifications,
            duration_ms=durations.get("verification", 0),
            chunked=chunked,
            skipped=bool(state.get("verification_skipped")),
            verification_passed=state.get("verification_passed"),
            corrections_count=sum(len(v.corrections) for v in verifications),
            raw_limit=raw_limit,
        ),
        is_chunked=chunked,
        page_count=state.get("page_count"),
    )

    match = state.get("match")
    if match is not None:
        debug.stage3 = telemetry.build_matching_stage(
            match,
            standards_count=state.get("standards_count", 0),
            user_gender=state.get("user_gender"),
            duration_ms=durations.get("matching", 0),
            raw_limit=raw_limit,
        )

    if chunked:
        debug.page_details = telemetry.build_page_details(
            extractions, verifications, ctx.raw_response_preview_chars
        )
        if state.get("merge") is not None:
            debug.merge_stage = telemetry.build_merge_stage(state["merge"])
    return debug


async def finalize_job(state: LabExtractionState, config: RunnableConfig) -> dict:
    """Persist results; complete when matching succeeded, partial otherwise."""
    ctx = get_context(config)
    job: LabUploadJob = state["job"]
    match = state.get("match")
    corrections = list(state.get("corrections", []))

    data = ExtractedLabData(
        **state["metadata"].model_dump(),
        biomarkers=state["biomarkers"],
        processed_biomarkers=match.processed if match is not None else None,
    )

    if match is None:
        status = LabUploadStatus.PARTIAL
        corrections.append(f"Post-processing failed: {state.get('matching_error')} - biomarkers not standardized")
    else:
        status = LabUploadStatus.COMPLETE
        if match.unmatched_count:
            corrections.append(
                f"{match.unmatched_count} biomarker(s) could not be matched to standards - review required"
            )

    if state.get("capture_debug"):
        data.debug_info = build_debug_info(state, ctx)

    await job.finish(
        status,
        now=ctx.clock(),
        extracted_data=data,
        extraction_confidence=extraction_confidence(state.get("verification_passed")),
        verification_passed=state.get("verification_passed"),
        corrections=corrections,
    )
    return {"final_status": status.value}


# ============ NODE 10: FAIL ============

async def fail_job(state: LabExtractionState, config: RunnableConfig) -> dict:
    ctx = get_context(config)
    job: LabUploadJob = state["job"]
    await job.fail(state.get("error") or "Unknown error", now=ctx.clock())
    return {"final_status": LabUploadStatus.FAILED.value}


# ============ ROUTING FUNCTIONS ============

def route_after_start(state: LabExtractionState) -> Literal["fetch_pdf", "__end__"]:
    """Route based on whether the upload could be started."""
    if state.get("job") is None:
        return "__end__"
    return "fetch_pdf"


def route_on_error(next_node: str):
    """Route to fail_job when the previous node recorded an error."""
    def route(state: LabExtractionState) -> str:
        if state.get("error"):
            return "fail_job"
        return next_node
    return route


def route_after_plan(state: LabExtractionState) -> Literal["fail_job", "split_pages", "extract_units"]:
    """Route based on the chunking decision."""
    if state.get("error"):
        return "fail_job"
    if state.get("chunked"):
        return "split_pages"
    return "extract_units"
