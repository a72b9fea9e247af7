"""Tests for stage 1 parsing and per-page extraction."""

import asyncio
import json

import pytest

from app.schemas.extraction import LabMetadata
from app.services.chunk_planner import WorkUnit
from app.services.extraction_service import (
    combine_metadata,
    extract_pages,
    extract_unit,
    parse_biomarkers,
    parse_metadata,
    parse_number,
)
from app.shared.exceptions import ExtractionError, ProviderError, TransientProviderError
from tests.conftest import ScriptedProvider, biomarker_json

GLUCOSE = {"name": "Glucose", "value": 95, "unit": "mg/dL", "reference_min": 70, "reference_max": 100}


# ============ PARSING ============

@pytest.mark.parametrize("raw,expected", [
    (5, 5.0),
    ("1,250", 1250.0),
    (" 4.2 ", 4.2),
    ("<5", None),
    ("", None),
    (True, None),
    ("nan", None),
    (None, None),
])
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected


def test_parse_biomarkers_drops_invalid_items_and_accepts_camel_case():
    items = [
        GLUCOSE,
        {"name": "HDL", "value": "1.42", "unit": "mmol/L", "referenceMin": "1.0", "flag": "NORMAL"},
        {"name": "", "value": 3},
        {"name": "TSH", "value": "pending"},
        {"name": "LDL", "value": 120, "flag": "borderline"},
        "not an object",
    ]

    biomarkers = parse_biomarkers(items)

    assert [b.name for b in biomarkers] == ["Glucose", "HDL", "LDL"]
    assert biomarkers[1].value == 1.42
    assert biomarkers[1].reference_min == 1.0
    assert biomarkers[1].flag == "normal"
    assert biomarkers[2].flag is None
    assert biomarkers[2].unit == ""
    assert parse_biomarkers(None) == []


def test_parse_metadata_normalizes_gender():
    metadata = parse_metadata({"clientName": " Jane Doe ", "client_gender": "Female", "lab_name": ""})
    assert metadata.client_name == "Jane Doe"
    assert metadata.client_gender == "female"
    assert metadata.lab_name is None
    assert parse_metadata({"client_gender": "unknown"}).client_gender is None


def test_combine_metadata_takes_first_value_per_field():
    combined = combine_metadata([
        LabMetadata(lab_name="Aster"),
        LabMetadata(lab_name="Other", client_name="Jane"),
    ])
    assert combined.lab_name == "Aster"
    assert combined.client_name == "Jane"


# ============ EXTRACTION ============

async def test_transient_failure_is_retried(fast_retry):
    provider = ScriptedProvider({None: [TransientProviderError("503"), biomarker_json(GLUCOSE, lab_name="Aster")]})

    outcome = await extract_unit(provider, WorkUnit(data=b"%PDF"), fast_retry)

    assert provider.calls_for(None) == 2
    assert outcome.biomarkers[0].name == "Glucose"
    assert outcome.metadata.lab_name == "Aster"
    assert not outcome.empty_page


async def test_permanent_failure_is_not_retried(fast_retry):
    provider = ScriptedProvider({None: [ProviderError("400 bad request")]})

    with pytest.raises(ExtractionError):
        await extract_unit(provider, WorkUnit(data=b"%PDF"), fast_retry)
    assert provider.calls_for(None) == 1


async def test_retries_stop_after_max_attempts(fast_retry):
    provider = ScriptedProvider({None: [TransientProviderError("timeout")]})

    with pytest.raises(ExtractionError):
        await extract_unit(provider, WorkUnit(data=b"%PDF"), fast_retry)
    assert provider.calls_for(None) == fast_retry.max_attempts


async def test_non_json_answer_fails(fast_retry):
    provider = ScriptedProvider({None: ["I could not read this document."]})

    with pytest.raises(ExtractionError):
        await extract_unit(provider, WorkUnit(data=b"%PDF"), fast_retry)


async def test_extract_pages_isolates_page_failures(fast_retry):
    provider = ScriptedProvider({
        1: [biomarker_json(GLUCOSE)],
        2: [ProviderError("refused")],
        3: [biomarker_json()],
    })
    units = [WorkUnit(data=b"%PDF", page_number=n) for n in (3, 1, 2)]
    seen = []

    async def on_done(outcome):
        seen.append(outcome.page_number)

    outcomes = await extract_pages(provider, units, fast_retry, concurrency=2, on_page_done=on_done)

    assert [o.page_number for o in outcomes] == [1, 2, 3]
    assert len(outcomes[0].biomarkers) == 1
    assert outcomes[1].failed and "refused" in outcomes[1].error
    assert outcomes[2].empty_page
    assert sorted(seen) == [1, 2, 3]
    assert provider.calls_for(2) == 1
    assert provider.calls_for(3) == 1


async def test_top_level_array_is_not_an_extraction(fast_retry):
    provider = ScriptedProvider({None: [json.dumps([GLUCOSE])]})

    with pytest.raises(ExtractionError):
        await extract_unit(provider, WorkUnit(data=b"%PDF"), fast_retry)
    assert provider.calls_for(None) == 1


async def test_callback_error_cancels_remaining_pages(fast_retry):
    class SlowProvider(ScriptedProvider):
        async def _generate(self, request):
            await asyncio.sleep(0.01)
            return await super()._generate(request)

    provider = SlowProvider({n: [biomarker_json(GLUCOSE)] for n in (1, 2, 3)})
    units = [WorkUnit(data=b"%PDF", page_number=n) for n in (1, 2, 3)]

    async def on_done(outcome):
        raise RuntimeError("callback broke")

    with pytest.raises(RuntimeError):
        await extract_pages(provider, units, fast_retry, concurrency=1, on_page_done=on_done)

    calls = len(provider.calls)
    await asyncio.sleep(0.05)
    assert len(provider.calls) == calls < 3
