"""Biomarker standards: canonical units, unit conversions and reference ranges."""

from typing import Optional, Tuple

# Canonical biomarker definitions keyed by standard code.
#
# unit_conversions maps a reported unit to the factor that brings it into
# standard_unit: value_in_standard = value_in_reported_unit * factor.
# reference holds (min, max) per gender; "default" is the gender-neutral range.
# plausible, when present, bounds physiologically possible values.
BIOMARKER_STANDARDS = {
    # Complete Blood Count (CBC)
    "hemoglobin": {
        "name": "Hemoglobin",
        "aliases": ["Hb", "Hgb", "Haemoglobin", "HGB"],
        "category": "CBC",
        "standard_unit": "g/dL",
        "unit_conversions": {"g/L": 0.1, "mmol/L": 1.611},
        "reference": {"male": (13.5, 17.5), "female": (12.0, 16.0), "default": (12.0, 17.5)},
        "plausible": (2.0, 25.0),
    },
    "hematocrit": {
        "name": "Hematocrit",
        "aliases": ["Hct", "Haematocrit", "Packed Cell Volume", "PCV"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {"L/L": 100.0},
        "reference": {"male": (38.3, 48.6), "female": (35.5, 44.9), "default": (35.5, 48.6)},
        "plausible": (5.0, 80.0),
    },
    "rbc": {
        "name": "Red Blood Cell Count",
        "aliases": ["RBC", "Red Blood Cell", "Red Blood Cells", "Erythrocytes", "Red Cell Count"],
        "category": "CBC",
        "standard_unit": "M/uL",
        "unit_conversions": {"10^12/L": 1.0, "x10^12/L": 1.0, "10^6/uL": 1.0, "x10^6/uL": 1.0},
        "reference": {"male": (4.5, 5.5), "female": (4.0, 5.0), "default": (4.0, 5.5)},
    },
    "wbc": {
        "name": "White Blood Cell Count",
        "aliases": ["WBC", "White Blood Cell", "White Blood Cells", "Leukocytes", "Total WBC Count", "Total WBC"],
        "category": "CBC",
        "standard_unit": "K/uL",
        "unit_conversions": {"10^9/L": 1.0, "x10^9/L": 1.0, "10^3/uL": 1.0, "x10^3/uL": 1.0, "cells/uL": 0.001},
        "reference": {"default": (4.5, 11.0)},
    },
    "platelets": {
        "name": "Platelet Count",
        "aliases": ["PLT", "Platelet", "Platelets", "Thrombocytes"],
        "category": "CBC",
        "standard_unit": "K/uL",
        "unit_conversions": {"10^9/L": 1.0, "x10^9/L": 1.0, "10^3/uL": 1.0, "x10^3/uL": 1.0},
        "reference": {"default": (150, 400)},
    },
    "mcv": {
        "name": "Mean Corpuscular Volume",
        "aliases": ["MCV", "Mean Cell Volume"],
        "category": "CBC",
        "standard_unit": "fL",
        "unit_conversions": {},
        "reference": {"default": (80, 100)},
    },
    "mch": {
        "name": "Mean Corpuscular Hemoglobin",
        "aliases": ["MCH", "Mean Cell Hemoglobin"],
        "category": "CBC",
        "standard_unit": "pg",
        "unit_conversions": {},
        "reference": {"default": (27, 33)},
    },
    "mchc": {
        "name": "Mean Corpuscular Hemoglobin Concentration",
        "aliases": ["MCHC"],
        "category": "CBC",
        "standard_unit": "g/dL",
        "unit_conversions": {"g/L": 0.1},
        "reference": {"default": (31.5, 35.5)},
    },
    "rdw": {
        "name": "Red Cell Distribution Width",
        "aliases": ["RDW", "RDW-CV"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (11.5, 14.5)},
    },
    "neutrophils": {
        "name": "Neutrophils",
        "aliases": ["Neutrophil", "Neut", "Neutro"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (40, 70)},
    },
    "lymphocytes": {
        "name": "Lymphocytes",
        "aliases": ["Lymphocyte", "Lymph"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (20, 40)},
    },
    "monocytes": {
        "name": "Monocytes",
        "aliases": ["Monocyte", "Mono"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (2, 8)},
    },
    "eosinophils": {
        "name": "Eosinophils",
        "aliases": ["Eosinophil", "Eos"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (1, 4)},
    },
    "basophils": {
        "name": "Basophils",
        "aliases": ["Basophil", "Baso"],
        "category": "CBC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (0, 2)},
    },

    # Lipid Panel
    "cholesterol_total": {
        "name": "Total Cholesterol",
        "aliases": ["Cholesterol", "TC", "Serum Cholesterol"],
        "category": "LIPID",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference": {"default": (0, 200)},
        "plausible": (20, 1000),
    },
    "ldl": {
        "name": "LDL Cholesterol",
        "aliases": ["LDL", "LDL-C", "Low Density Lipoprotein"],
        "category": "LIPID",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference": {"default": (0, 100)},
    },
    "hdl": {
        "name": "HDL Cholesterol",
        "aliases": ["HDL", "HDL-C", "High Density Lipoprotein"],
        "category": "LIPID",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference": {"male": (40, 100), "female": (50, 100), "default": (40, 100)},
        "plausible": (5, 200),
    },
    "triglycerides": {
        "name": "Triglycerides",
        "aliases": ["TG", "Triglyceride", "Trigs"],
        "category": "LIPID",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 88.57},
        "reference": {"default": (0, 150)},
    },
    "vldl": {
        "name": "VLDL Cholesterol",
        "aliases": ["VLDL", "Very Low Density Lipoprotein"],
        "category": "LIPID",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference": {"default": (5, 40)},
    },

    # Metabolic Panel
    "glucose": {
        "name": "Glucose",
        "aliases": ["Blood Sugar", "FBS", "Fasting Blood Sugar", "Fasting Glucose", "Blood Glucose"],
        "category": "METABOLIC",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 18.016},
        "reference": {"default": (70, 100)},
        "plausible": (10, 1500),
    },
    "hba1c": {
        # IFCC mmol/mol maps to NGSP % through an offset, not a factor.
        "name": "Hemoglobin A1c",
        "aliases": ["HbA1c", "A1C", "Glycated Hemoglobin", "Glycosylated Hemoglobin"],
        "category": "METABOLIC",
        "standard_unit": "%",
        "unit_conversions": {},
        "reference": {"default": (4.0, 5.7)},
        "plausible": (2.0, 20.0),
    },
    "bun": {
        "name": "Blood Urea Nitrogen",
        "aliases": ["BUN", "Urea Nitrogen"],
        "category": "METABOLIC",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 2.801},
        "reference": {"default": (7, 20)},
    },
    "creatinine": {
        "name": "Creatinine",
        "aliases": ["Serum Creatinine", "Creat"],
        "category": "METABOLIC",
        "standard_unit": "mg/dL",
        "unit_conversions": {"umol/L": 0.01131},
        "reference": {"male": (0.7, 1.3), "female": (0.6, 1.1), "default": (0.6, 1.3)},
    },
    "sodium": {
        "name": "Sodium",
        "aliases": ["Na", "Serum Sodium"],
        "category": "METABOLIC",
        "standard_unit": "mEq/L",
        "unit_conversions": {"mmol/L": 1.0},
        "reference": {"default": (136, 145)},
        "plausible": (100, 200),
    },
    "potassium": {
        "name": "Potassium",
        "aliases": ["K", "Serum Potassium"],
        "category": "METABOLIC",
        "standard_unit": "mEq/L",
        "unit_conversions": {"mmol/L": 1.0},
        "reference": {"default": (3.5, 5.0)},
        "plausible": (1.0, 10.0),
    },
    "chloride": {
        "name": "Chloride",
        "aliases": ["Cl", "Serum Chloride"],
        "category": "METABOLIC",
        "standard_unit": "mEq/L",
        "unit_conversions": {"mmol/L": 1.0},
        "reference": {"default": (98, 106)},
    },
    "co2": {
        "name": "Bicarbonate",
        "aliases": ["CO2", "Carbon Dioxide", "HCO3"],
        "category": "METABOLIC",
        "standard_unit": "mEq/L",
        "unit_conversions": {"mmol/L": 1.0},
        "reference": {"default": (23, 29)},
    },
    "calcium": {
        "name": "Calcium",
        "aliases": ["Ca", "Serum Calcium"],
        "category": "METABOLIC",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 4.008},
        "reference": {"default": (8.5, 10.5)},
    },

    # Liver Function
    "alt": {
        "name": "Alanine Aminotransferase",
        "aliases": ["ALT", "SGPT", "Alanine Transaminase"],
        "category": "LIVER",
        "standard_unit": "U/L",
        "unit_conversions": {"IU/L": 1.0, "ukat/L": 60.0},
        "reference": {"male": (7, 56), "female": (7, 45), "default": (7, 56)},
    },
    "ast": {
        "name": "Aspartate Aminotransferase",
        "aliases": ["AST", "SGOT", "Aspartate Transaminase"],
        "category": "LIVER",
        "standard_unit": "U/L",
        "unit_conversions": {"IU/L": 1.0, "ukat/L": 60.0},
        "reference": {"default": (10, 40)},
    },
    "alp": {
        "name": "Alkaline Phosphatase",
        "aliases": ["ALP", "Alk Phos"],
        "category": "LIVER",
        "standard_unit": "U/L",
        "unit_conversions": {"IU/L": 1.0},
        "reference": {"default": (44, 147)},
    },
    "bilirubin_total": {
        "name": "Total Bilirubin",
        "aliases": ["Bilirubin", "T. Bilirubin", "T.Bil"],
        "category": "LIVER",
        "standard_unit": "mg/dL",
        "unit_conversions": {"umol/L": 0.05848},
        "reference": {"default": (0.1, 1.2)},
    },
    "albumin": {
        "name": "Albumin",
        "aliases": ["Serum Albumin", "Alb"],
        "category": "LIVER",
        "standard_unit": "g/dL",
        "unit_conversions": {"g/L": 0.1},
        "reference": {"default": (3.5, 5.0)},
    },
    "total_protein": {
        "name": "Total Protein",
        "aliases": ["Protein", "Serum Protein", "TP"],
        "category": "LIVER",
        "standard_unit": "g/dL",
        "unit_conversions": {"g/L": 0.1},
        "reference": {"default": (6.0, 8.3)},
    },

    # Thyroid
    "tsh": {
        "name": "Thyroid Stimulating Hormone",
        "aliases": ["TSH", "Thyrotropin"],
        "category": "THYROID",
        "standard_unit": "mIU/L",
        "unit_conversions": {"uIU/mL": 1.0, "mU/L": 1.0},
        "reference": {"default": (0.4, 4.0)},
    },
    "t3": {
        "name": "Total T3",
        "aliases": ["T3", "Triiodothyronine"],
        "category": "THYROID",
        "standard_unit": "ng/dL",
        "unit_conversions": {"nmol/L": 65.1},
        "reference": {"default": (80, 200)},
    },
    "t4": {
        "name": "Total T4",
        "aliases": ["T4", "Thyroxine"],
        "category": "THYROID",
        "standard_unit": "ug/dL",
        "unit_conversions": {"nmol/L": 0.0777},
        "reference": {"default": (4.5, 12.0)},
    },
    "free_t4": {
        "name": "Free T4",
        "aliases": ["FT4", "Free Thyroxine"],
        "category": "THYROID",
        "standard_unit": "ng/dL",
        "unit_conversions": {"pmol/L": 0.0777},
        "reference": {"default": (0.8, 1.8)},
    },

    # Vitamins and iron studies
    "vitamin_d": {
        "name": "Vitamin D, 25-Hydroxy",
        "aliases": ["Vitamin D", "Vit D", "25-OH Vitamin D", "25-Hydroxyvitamin D"],
        "category": "VITAMIN",
        "standard_unit": "ng/mL",
        "unit_conversions": {"nmol/L": 0.4006},
        "reference": {"default": (30, 100)},
    },
    "vitamin_b12": {
        "name": "Vitamin B12",
        "aliases": ["B12", "Cobalamin", "Cyanocobalamin"],
        "category": "VITAMIN",
        "standard_unit": "pg/mL",
        "unit_conversions": {"pmol/L": 1.355},
        "reference": {"default": (200, 900)},
    },
    "folate": {
        "name": "Folate",
        "aliases": ["Folic Acid", "Vitamin B9"],
        "category": "VITAMIN",
        "standard_unit": "ng/mL",
        "unit_conversions": {"nmol/L": 0.4413},
        "reference": {"default": (3.0, 17.0)},
    },
    "iron": {
        "name": "Iron",
        "aliases": ["Serum Iron", "Fe"],
        "category": "VITAMIN",
        "standard_unit": "ug/dL",
        "unit_conversions": {"umol/L": 5.585},
        "reference": {"male": (65, 175), "female": (50, 170), "default": (50, 175)},
    },
    "ferritin": {
        "name": "Ferritin",
        "aliases": ["Serum Ferritin"],
        "category": "VITAMIN",
        "standard_unit": "ng/mL",
        "unit_conversions": {"ug/L": 1.0, "pmol/L": 0.445},
        "reference": {"male": (20, 250), "female": (10, 120), "default": (10, 250)},
    },
}


def normalize_name(name: str) -> str:
    """Lower-case a biomarker name and collapse its whitespace."""
    return " ".join((name or "").lower().split())


def normalize_unit(unit: str) -> str:
    """Canonical spelling of a unit for comparisons (case, spaces, micro sign)."""
    cleaned = "".join((unit or "").split()).lower()
    cleaned = cleaned.replace("µ", "u").replace("μ", "u")
    if cleaned.startswith("mcg"):
        cleaned = "ug" + cleaned[3:]
    return cleaned


def resolve_reference_range(
    reference: dict,
    gender: Optional[str] = None
) -> Tuple[Optional[float], Optional[float]]:
    """
    Pick the reference range for a gender.
    Falls back to the gender-neutral "default" range, then to the widest
    range spanning the gender-specific ones.
    """
    if gender and gender.lower() in reference:
        return reference[gender.lower()]

    if "default" in reference:
        return reference["default"]

    ranges = [r for key, r in reference.items() if key in ("male", "female")]
    if not ranges:
        return None, None
    return min(r[0] for r in ranges), max(r[1] for r in ranges)
