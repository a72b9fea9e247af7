"""Read-only biomarker standard catalog shared by all pipeline runs."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.core.logging import logger
from app.data.biomarker_standards import (
    BIOMARKER_STANDARDS,
    normalize_name,
    normalize_unit,
    resolve_reference_range,
)
from app.shared.exceptions import MatchingError


@dataclass(frozen=True)
class BiomarkerStandard:
    """Canonical definition of one biomarker."""
    code: str
    name: str
    category: str
    standard_unit: str
    aliases: Tuple[str, ...] = ()
    unit_conversions: Dict[str, float] = field(default_factory=dict)
    reference: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    plausible: Optional[Tuple[float, float]] = None

    def reference_range(self, gender: Optional[str] = None) -> Tuple[Optional[float], Optional[float]]:
        """Gender-adjusted (min, max); gender-neutral when gender is unknown."""
        return resolve_reference_range(self.reference, gender)

    def conversion_factor(self, unit: str) -> Optional[float]:
        """
        Factor converting `unit` into the standard unit.
        Returns 1.0 for the standard unit itself and None when no factor exists.
        """
        wanted = normalize_unit(unit)
        if wanted == normalize_unit(self.standard_unit):
            return 1.0
        for source_unit, factor in self.unit_conversions.items():
            if normalize_unit(source_unit) == wanted:
                return factor
        return None


class BiomarkerCatalog:
    """Name/alias index over a fixed set of standards."""

    def __init__(self, standards: List[BiomarkerStandard]):
        self._standards: Dict[str, BiomarkerStandard] = {s.code: s for s in standards}
        self._index: Dict[str, str] = {}

        for standard in standards:
            keys = [standard.code, standard.code.replace("_", " "), standard.name, *standard.aliases]
            for key in keys:
                # First definition wins when two standards share an alias
                self._index.setdefault(normalize_name(key), standard.code)

    def __len__(self) -> int:
        return len(self._standards)

    @property
    def codes(self) -> List[str]:
        return list(self._standards)

    def get(self, code: str) -> Optional[BiomarkerStandard]:
        return self._standards.get(code)

    def lookup(self, name: str) -> Optional[BiomarkerStandard]:
        """Exact or alias match, case- and whitespace-insensitive."""
        code = self._index.get(normalize_name(name))
        return self._standards[code] if code else None

    def describe(self) -> List[dict]:
        """Compact listing used in model prompts."""
        return [
            {"code": s.code, "name": s.name, "aliases": list(s.aliases), "unit": s.standard_unit}
            for s in self._standards.values()
        ]

    @classmethod
    def from_definitions(cls, definitions: Dict[str, dict]) -> "BiomarkerCatalog":
        standards = []
        for code, info in definitions.items():
            standards.append(
                BiomarkerStandard(
                    code=code,
                    name=info["name"],
                    category=info.get("category", "OTHER"),
                    standard_unit=info["standard_unit"],
                    aliases=tuple(info.get("aliases", [])),
                    unit_conversions=dict(info.get("unit_conversions", {})),
                    reference={k: tuple(v) for k, v in info.get("reference", {}).items()},
                    plausible=tuple(info["plausible"]) if info.get("plausible") else None,
                )
            )
        return cls(standards)


_catalog: Optional[BiomarkerCatalog] = None


def load_catalog() -> BiomarkerCatalog:
    """
    Build the shared catalog once from the bundled standards.
    Raises MatchingError when the definitions are missing or malformed.
    """
    global _catalog
    if _catalog is not None:
        return _catalog

    try:
        catalog = BiomarkerCatalog.from_definitions(BIOMARKER_STANDARDS)
    except (KeyError, TypeError, ValueError) as e:
        raise MatchingError(f"Biomarker catalog is malformed: {e}") from e

    if not len(catalog):
        raise MatchingError("Biomarker catalog is empty")

    logger.info(f"Loaded biomarker catalog with {len(catalog)} standards")
    _catalog = catalog
    return _catalog


def convert_value(value: float, factor: float) -> float:
    """Reported unit -> standard unit."""
    return value * factor


def revert_value(value: float, factor: float) -> float:
    """Standard unit -> reported unit (inverse of convert_value)."""
    return value / factor
