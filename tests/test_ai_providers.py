"""Tests for provider JSON recovery, error classification and retry."""

import asyncio

import httpx
import pytest

from app.services.ai_providers import (
    GeminiProvider,
    OpenAIProvider,
    ProviderRequest,
    RetryPolicy,
    call_with_retry,
    classify_error,
    extract_json_from_text,
    get_provider,
)
from app.shared.exceptions import ProviderError, TransientProviderError
from tests.conftest import ScriptedProvider


def test_extract_json_plain_and_fenced():
    assert extract_json_from_text('{"a": 1}') == {"a": 1}
    assert extract_json_from_text('Here you go:\n```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json_from_text("```\n{\"a\": 3}\n```") == {"a": 3}


def test_extract_json_balanced_braces_ignore_strings():
    text = 'Result: {"note": "use } carefully", "nested": {"b": [1, 2]}} trailing words'
    assert extract_json_from_text(text) == {"note": "use } carefully", "nested": {"b": [1, 2]}}


def test_extract_json_returns_none_without_object():
    assert extract_json_from_text("") is None
    assert extract_json_from_text("no json here") is None
    assert extract_json_from_text("[1, 2, 3]") is None
    assert extract_json_from_text('{"broken": ') is None


def test_extract_json_does_not_dig_into_arrays():
    items = '[{"name": "Glucose", "value": 95}, {"name": "HDL", "value": 55}]'
    assert extract_json_from_text(items) is None
    assert extract_json_from_text(f"```json\n{items}\n```") is None
    assert extract_json_from_text(f"Here are the results: {items}") is None
    assert extract_json_from_text('Note [1]: {"biomarkers": []}') == {"biomarkers": []}


def test_classify_error():
    assert isinstance(classify_error(asyncio.TimeoutError()), TransientProviderError)
    assert isinstance(classify_error(httpx.ConnectError("refused")), TransientProviderError)
    assert type(classify_error(ValueError("bad"))) is ProviderError

    original = TransientProviderError("already classified")
    assert classify_error(original) is original


def test_get_provider():
    assert isinstance(get_provider("gemini", "gemini-3-pro-preview", "high"), GeminiProvider)
    provider = get_provider("OpenAI", "gpt-5.1", "medium")
    assert isinstance(provider, OpenAIProvider)
    assert provider.reasoning == "medium"

    with pytest.raises(ValueError):
        get_provider("claude", "some-model")


async def test_timeout_is_transient():
    class SlowProvider(ScriptedProvider):
        async def _generate(self, request):
            await asyncio.sleep(1)
            return "{}"

    provider = SlowProvider({})
    provider.timeout = 0.01

    with pytest.raises(TransientProviderError):
        await provider.extract(ProviderRequest(system_prompt="s", user_prompt="u"))


async def test_call_with_retry_recovers_from_transient_errors():
    provider = ScriptedProvider({None: [httpx.ReadTimeout("slow"), TransientProviderError("503"), '{"ok": true}']})

    response = await call_with_retry(
        provider,
        ProviderRequest(system_prompt="s", user_prompt="u"),
        RetryPolicy(max_attempts=3, wait_seconds=0),
    )

    assert response.data == {"ok": True}
    assert provider.calls_for(None) == 3


async def test_call_with_retry_reraises_last_error():
    provider = ScriptedProvider({None: [TransientProviderError("503")]})

    with pytest.raises(TransientProviderError):
        await call_with_retry(
            provider,
            ProviderRequest(system_prompt="s", user_prompt="u"),
            RetryPolicy(max_attempts=2, wait_seconds=0),
        )
    assert provider.calls_for(None) == 2


async def test_array_answer_is_a_provider_error():
    provider = ScriptedProvider({None: ['[{"name": "Glucose", "value": 95}]']})

    with pytest.raises(ProviderError):
        await provider.extract(ProviderRequest(system_prompt="s", user_prompt="u"))
