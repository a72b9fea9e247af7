"""Tests for model-assisted name matching with a fake chat model."""

from app.services.ai_providers import RetryPolicy
from app.services.biomarker_catalog import load_catalog
from app.services.matching_assistant import MatchingAssistant, NameMatch, NameMatchList
from app.shared.exceptions import TransientProviderError


class FakeStructuredLLM:
    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = 0

    def with_structured_output(self, schema):
        assert schema is NameMatchList
        return self

    async def ainvoke(self, messages):
        self.calls += 1
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


def assistant(*answers):
    llm = FakeStructuredLLM(answers)
    return MatchingAssistant(model="fake", llm=llm, policy=RetryPolicy(max_attempts=3, wait_seconds=0)), llm


async def test_known_codes_become_hints():
    answer = NameMatchList(matches=[
        NameMatch(original_name="Glucosa en ayunas", code="glucose"),
        NameMatch(original_name="Zonulin", code=None),
        NameMatch(original_name="Made up", code="not_a_code"),
    ])
    helper, _ = assistant(answer)

    hints, raw = await helper.suggest(["Glucosa en ayunas", "Zonulin", "Made up"], load_catalog())

    assert hints == {"Glucosa en ayunas": "glucose"}
    assert "glucose" in raw


async def test_transient_errors_are_retried():
    helper, llm = assistant(TransientProviderError("429"), NameMatchList(matches=[]))

    hints, _ = await helper.suggest(["Zonulin"], load_catalog())

    assert hints == {}
    assert llm.calls == 2


async def test_failure_degrades_to_no_hints():
    helper, llm = assistant(ValueError("schema mismatch"))

    assert await helper.suggest(["Zonulin"], load_catalog()) == ({}, None)
    assert llm.calls == 1


async def test_nothing_to_match_skips_the_model():
    helper, llm = assistant(NameMatchList())

    assert await helper.suggest([], load_catalog()) == ({}, None)
    assert llm.calls == 0
