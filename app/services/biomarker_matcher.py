"""Stage 3: catalog matching, unit conversion, flags and validation."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.core.logging import logger
from app.schemas.extraction import (
    Biomarker,
    BiomarkerMatchDetail,
    ConversionApplied,
    ConversionMissing,
    ProcessedBiomarker,
)
from app.services.biomarker_catalog import BiomarkerCatalog, BiomarkerStandard, convert_value


DETERMINISTIC = "deterministic"
MODEL_ASSISTED = "model_assisted"

# Fallback plausibility ceiling, as a multiple of the reference max
IMPLAUSIBLE_REFERENCE_MULTIPLE = 10


@dataclass
class MatchResult:
    processed: List[ProcessedBiomarker] = field(default_factory=list)
    match_details: List[BiomarkerMatchDetail] = field(default_factory=list)
    conversions_applied: int = 0
    conversions_missing: int = 0
    method: str = DETERMINISTIC
    raw_response: Optional[str] = None

    @property
    def matched_count(self) -> int:
        return sum(1 for p in self.processed if p.matched)

    @property
    def unmatched_count(self) -> int:
        return len(self.processed) - self.matched_count


def resolve_gender(profile_gender: Optional[str], client_gender: Optional[str]) -> Optional[str]:
    """Profile gender, else the report's gender. None means gender-neutral ranges."""
    for candidate in (profile_gender, client_gender):
        if candidate and candidate.lower() in ("male", "female"):
            return candidate.lower()
    return None


def compute_flag(value: float, reference_min: Optional[float], reference_max: Optional[float]) -> Optional[str]:
    """Boundaries are inclusive: a value equal to min or max is normal."""
    if reference_min is None and reference_max is None:
        return None
    if reference_min is not None and value < reference_min:
        return "low"
    if reference_max is not None and value > reference_max:
        return "high"
    return "normal"


def validation_issues(value: float, standard: BiomarkerStandard, reference_max: Optional[float]) -> List[str]:
    """Sanity checks on a value expressed in the standard unit."""
    issues = []
    if value < 0:
        issues.append(f"Negative value {value:g} {standard.standard_unit}")
        return issues

    if standard.plausible is not None:
        low, high = standard.plausible
        if value < low or value > high:
            issues.append(
                f"Value {value:g} {standard.standard_unit} is outside the plausible range {low:g}-{high:g}"
            )
    elif reference_max is not None and value > reference_max * IMPLAUSIBLE_REFERENCE_MULTIPLE:
        issues.append(
            f"Value {value:g} {standard.standard_unit} is more than "
            f"{IMPLAUSIBLE_REFERENCE_MULTIPLE}x the reference maximum {reference_max:g}"
        )
    return issues


def _unmatched(biomarker: Biomarker) -> Tuple[ProcessedBiomarker, BiomarkerMatchDetail]:
    processed = ProcessedBiomarker(
        original_name=biomarker.name,
        original_value=biomarker.value,
        original_unit=biomarker.unit,
        matched=False,
        reference_min=biomarker.reference_min,
        reference_max=biomarker.reference_max,
        flag=biomarker.flag,
    )
    return processed, BiomarkerMatchDetail(original_name=biomarker.name)


def _matched(
    biomarker: Biomarker,
    standard: BiomarkerStandard,
    gender: Optional[str],
) -> Tuple[ProcessedBiomarker, BiomarkerMatchDetail]:
    reference_min, reference_max = standard.reference_range(gender)
    detail = BiomarkerMatchDetail(
        original_name=biomarker.name,
        matched_code=standard.code,
        matched_name=standard.name,
    )
    issues: List[str] = []

    if not biomarker.unit.strip():
        factor = 1.0
        issues.append(f"Unit not reported; assumed {standard.standard_unit}")
    else:
        factor = standard.conversion_factor(biomarker.unit)

    if factor is None:
        # Value stays in the reported unit, so no range-based flag
        detail.conversion_missing = ConversionMissing(from_unit=biomarker.unit, to_unit=standard.standard_unit)
        issues.append(f"No conversion from {biomarker.unit} to {standard.standard_unit}; value kept as reported")
        if biomarker.value < 0:
            issues.append(f"Negative value {biomarker.value:g} {biomarker.unit}")
        standard_value = biomarker.value
        standard_unit = biomarker.unit
        flag = biomarker.flag
    else:
        standard_value = convert_value(biomarker.value, factor)
        standard_unit = standard.standard_unit
        if factor != 1.0:
            detail.conversion_applied = ConversionApplied(
                from_value=biomarker.value,
                from_unit=biomarker.unit,
                to_value=standard_value,
                to_unit=standard_unit,
                factor=factor,
            )
        issues.extend(validation_issues(standard_value, standard, reference_max))
        flag = biomarker.flag or compute_flag(standard_value, reference_min, reference_max)

    detail.validation_issues = issues
    processed = ProcessedBiomarker(
        original_name=biomarker.name,
        original_value=biomarker.value,
        original_unit=biomarker.unit,
        matched=True,
        standard_code=standard.code,
        standard_name=standard.name,
        standard_value=standard_value,
        standard_unit=standard_unit,
        reference_min=reference_min,
        reference_max=reference_max,
        flag=flag,
        validation_issues=list(issues),
    )
    return processed, detail


def match_biomarkers(
    biomarkers: List[Biomarker],
    catalog: BiomarkerCatalog,
    gender: Optional[str] = None,
    name_hints: Optional[Dict[str, str]] = None,
) -> MatchResult:
    """
    Match each raw biomarker to the catalog and standardize it.

    `name_hints` maps a raw name to a catalog code and is consulted only when
    the deterministic lookup misses; hints naming unknown codes are ignored.
    Output order follows input order.
    """
    name_hints = name_hints or {}
    result = MatchResult(method=MODEL_ASSISTED if name_hints else DETERMINISTIC)

    for biomarker in biomarkers:
        standard = catalog.lookup(biomarker.name)
        if standard is None and biomarker.name in name_hints:
            standard = catalog.get(name_hints[biomarker.name])

        if standard is None:
            processed, detail = _unmatched(biomarker)
        else:
            processed, detail = _matched(biomarker, standard, gender)

        if detail.conversion_applied is not None:
            result.conversions_applied += 1
        if detail.conversion_missing is not None:
            result.conversions_missing += 1

        result.processed.append(processed)
        result.match_details.append(detail)

    logger.info(
        f"Matched {result.matched_count}/{len(result.processed)} biomarkers "
        f"({result.conversions_applied} converted, {result.conversions_missing} missing conversions)"
    )
    return result
