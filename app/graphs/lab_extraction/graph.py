"""LangGraph workflow definition for lab extraction."""

from typing import Optional

from langgraph.graph import StateGraph, START, END

from app.config import settings
from app.core.logging import get_upload_logger
from app.graphs.lab_extraction.context import PipelineContext
from app.graphs.lab_extraction.state import LabExtractionState
from app.graphs.lab_extraction.nodes import (
    start_job,
    fetch_pdf,
    plan_document,
    split_pages,
    extract_units,
    verify_units,
    merge_results,
    match_stage,
    finalize_job,
    fail_job,
    route_after_start,
    route_after_plan,
    route_on_error,
)
from app.schemas.lab_upload import LabUploadStatus
from app.services import job_state


def build_lab_extraction_graph() -> StateGraph:
    """Build the lab extraction workflow graph."""

    graph = StateGraph(LabExtractionState)

    graph.add_node("start_job", start_job)
    graph.add_node("fetch_pdf", fetch_pdf)
    graph.add_node("plan_chunks", plan_document)
    graph.add_node("split_pages", split_pages)
    graph.add_node("extract_units", extract_units)
    graph.add_node("verify_units", verify_units)
    graph.add_node("merge_results", merge_results)
    graph.add_node("match_biomarkers", match_stage)
    graph.add_node("finalize_job", finalize_job)
    graph.add_node("fail_job", fail_job)

    # Start -> Start Job -> (Fetch PDF | End)
    graph.add_edge(START, "start_job")
    graph.add_conditional_edges(
        "start_job",
        route_after_start,
        {"fetch_pdf": "fetch_pdf", "__end__": END},
    )

    # Fetch PDF -> (Plan Chunks | Fail)
    graph.add_conditional_edges(
        "fetch_pdf",
        route_on_error("plan_chunks"),
        {"plan_chunks": "plan_chunks", "fail_job": "fail_job"},
    )

    # Plan Chunks -> (Split Pages | Extract | Fail)
    graph.add_conditional_edges(
        "plan_chunks",
        route_after_plan,
        {"split_pages": "split_pages", "extract_units": "extract_units", "fail_job": "fail_job"},
    )

    graph.add_conditional_edges(
        "split_pages",
        route_on_error("extract_units"),
        {"extract_units": "extract_units", "fail_job": "fail_job"},
    )

    # Extract -> (Verify | Fail)
    graph.add_conditional_edges(
        "extract_units",
        route_on_error("verify_units"),
        {"verify_units": "verify_units", "fail_job": "fail_job"},
    )

    # Verify -> Merge -> Match -> Finalize -> End
    graph.add_edge("verify_units", "merge_results")
    graph.add_edge("merge_results", "match_biomarkers")
    graph.add_edge("match_biomarkers", "finalize_job")
    graph.add_edge("finalize_job", END)
    graph.add_edge("fail_job", END)

    return graph


# No checkpointer: runs never pause, and the upload record is the durable state
lab_extraction_graph = build_lab_extraction_graph().compile()


async def run_lab_extraction(
    upload_id: str,
    *,
    context: PipelineContext,
    capture_debug: Optional[bool] = None,
) -> Optional[str]:
    """
    Run the whole pipeline for one upload and return its final status.
    Returns None when the upload was missing or not pending.
    """
    if capture_debug is None:
        capture_debug = settings.CAPTURE_DEBUG_INFO
    log = get_upload_logger(upload_id)

    try:
        final_state = await lab_extraction_graph.ainvoke(
            {"upload_id": upload_id, "capture_debug": capture_debug},
            config={"configurable": {"context": context}},
        )
    except Exception as e:
        log.exception(f"Pipeline crashed: {e}")
        await _mark_crashed(upload_id, context, f"Unexpected error: {e}")
        return LabUploadStatus.FAILED.value

    return final_state.get("final_status")


async def _mark_crashed(upload_id: str, context: PipelineContext, message: str) -> None:
    """Best effort: a crashed run must not leave the upload processing."""
    log = get_upload_logger(upload_id)
    try:
        record = await context.repository.get(upload_id)
        if record is None or record.status not in (LabUploadStatus.PENDING, LabUploadStatus.PROCESSING):
            return
        await context.repository.update(upload_id, job_state.fail(record, message, context.clock()))
    except Exception as e:
        log.error(f"Could not mark crashed run as failed: {e}")
