"""Static reference data."""

from app.data.biomarker_standards import BIOMARKER_STANDARDS, normalize_name, normalize_unit

__all__ = ["BIOMARKER_STANDARDS", "normalize_name", "normalize_unit"]
