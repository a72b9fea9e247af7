"""Lab extraction workflow."""

from app.graphs.lab_extraction.context import PipelineContext, build_default_context
from app.graphs.lab_extraction.graph import lab_extraction_graph, run_lab_extraction
from app.graphs.lab_extraction.state import LabExtractionState

__all__ = [
    "lab_extraction_graph",
    "run_lab_extraction",
    "LabExtractionState",
    "PipelineContext",
    "build_default_context",
]
