"""Structured-extraction model providers (Gemini, OpenAI) and their retry policy."""

import asyncio
import base64
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.core.logging import logger
from app.shared.exceptions import ProviderError, TransientProviderError


# ============ REQUEST / RESPONSE ============

@dataclass
class ProviderRequest:
    """One structured-extraction call: instructions plus the document."""
    system_prompt: str
    user_prompt: str
    pdf_bytes: Optional[bytes] = None
    filename: str = "lab_report.pdf"
    page_number: Optional[int] = None


@dataclass
class ProviderResponse:
    """Parsed JSON object and the raw text it was recovered from."""
    data: dict
    raw_text: str


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff applied to transient provider failures."""
    max_attempts: int = 3
    wait_seconds: float = 2.0
    max_wait_seconds: float = 30.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            wait_seconds=settings.PROVIDER_RETRY_WAIT_SECONDS,
        )


def extract_json_from_text(text: str) -> Optional[dict]:
    """
    Extract JSON object from text that may contain markdown or other content.
    Uses multiple strategies to find valid JSON.
    """
    if not text:
        return None

    # Strategy 1: the whole text is JSON. Only a top-level object counts.
    try:
        parsed = json.loads(text.strip())
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    # Strategy 2: fenced code block
    for pattern in (r'```json\s*([\s\S]*?)\s*```', r'```\s*([\s\S]*?)\s*```'):
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            try:
                parsed = json.loads(match.group(1).strip())
            except json.JSONDecodeError:
                continue
            return parsed if isinstance(parsed, dict) else None

    # Strategy 3: outermost balanced braces, ignoring braces inside strings
    start_idx = text.find('{')
    if start_idx == -1:
        return None

    # An array wrapping the objects is not a top-level object
    array_idx = text.find('[')
    if -1 < array_idx < start_idx:
        try:
            _, array_end = json.JSONDecoder().raw_decode(text, array_idx)
        except json.JSONDecodeError:
            array_end = -1
        if array_end > start_idx:
            return None

    depth = 0
    in_string = False
    escaped = False
    for i, char in enumerate(text[start_idx:], start_idx):
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start_idx:i + 1])
                except json.JSONDecodeError:
                    return None

    return None


# ============ ERROR CLASSIFICATION ============

def _is_transient_status(code: Optional[int]) -> bool:
    return code is not None and (code == 429 or code >= 500)


def classify_error(exc: Exception) -> ProviderError:
    """Map an SDK/transport exception onto the retryable or permanent provider error."""
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return TransientProviderError(f"Provider timeout or connection error: {exc}")

    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError)):
        return TransientProviderError(f"OpenAI unavailable: {exc}")
    if isinstance(exc, openai.APIStatusError):
        if _is_transient_status(exc.status_code):
            return TransientProviderError(f"OpenAI returned {exc.status_code}: {exc}")
        return ProviderError(f"OpenAI returned {exc.status_code}: {exc}")

    if isinstance(exc, genai_errors.APIError):
        if _is_transient_status(exc.code):
            return TransientProviderError(f"Gemini returned {exc.code}: {exc}")
        return ProviderError(f"Gemini returned {exc.code}: {exc}")

    return ProviderError(f"{type(exc).__name__}: {exc}")


# ============ PROVIDERS ============

class StructuredExtractionProvider(ABC):
    """Given a prompt and a PDF, return one JSON object."""

    name: str = "provider"

    def __init__(self, model: str, reasoning: Optional[str] = None, timeout: Optional[float] = None):
        self.model = model
        self.reasoning = reasoning
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT_SECONDS

    @abstractmethod
    async def _generate(self, request: ProviderRequest) -> str:
        """Send the request and return the model's text output."""

    async def extract(self, request: ProviderRequest) -> ProviderResponse:
        """
        Call the model and parse its JSON answer.
        Raises TransientProviderError for retryable failures, ProviderError otherwise.
        """
        try:
            raw_text = await asyncio.wait_for(self._generate(request), timeout=self.timeout)
        except ProviderError:
            raise
        except Exception as e:
            raise classify_error(e) from e

        data = extract_json_from_text(raw_text or "")
        if data is None:
            logger.error(f"{self.name} returned non-JSON output: {(raw_text or '')[:500]}")
            raise ProviderError(f"{self.name} response did not contain a JSON object")

        return ProviderResponse(data=data, raw_text=raw_text)


class GeminiProvider(StructuredExtractionProvider):
    """Google Gemini via the google-genai async client."""

    name = "gemini"

    def __init__(self, model: str, reasoning: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(model, reasoning, timeout)
        self._client: Optional[genai.Client] = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=settings.GOOGLE_API_KEY)
        return self._client

    async def _generate(self, request: ProviderRequest) -> str:
        contents = []
        if request.pdf_bytes is not None:
            contents.append(types.Part.from_bytes(data=request.pdf_bytes, mime_type="application/pdf"))
        contents.append(request.user_prompt)

        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            response_mime_type="application/json",
            temperature=0.1,
            max_output_tokens=64000,
            thinking_config=types.ThinkingConfig(thinking_level=self.reasoning) if self.reasoning else None,
        )

        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=config,
        )
        return response.text or ""


class OpenAIProvider(StructuredExtractionProvider):
    """OpenAI Responses API with the PDF attached as an input file."""

    name = "openai"

    def __init__(self, model: str, reasoning: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(model, reasoning, timeout)
        self._client: Optional[openai.AsyncOpenAI] = None

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            # Retries are ours, not the SDK's
            self._client = openai.AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def _generate(self, request: ProviderRequest) -> str:
        content = []
        if request.pdf_bytes is not None:
            encoded = base64.b64encode(request.pdf_bytes).decode("utf-8")
            content.append({
                "type": "input_file",
                "filename": request.filename,
                "file_data": f"data:application/pdf;base64,{encoded}",
            })
        content.append({"type": "input_text", "text": request.user_prompt})

        kwargs = {}
        if self.reasoning:
            kwargs["reasoning"] = {"effort": self.reasoning}

        response = await self.client.responses.create(
            model=self.model,
            input=[
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": content},
            ],
            **kwargs,
        )
        return response.output_text


PROVIDERS = {
    GeminiProvider.name: GeminiProvider,
    OpenAIProvider.name: OpenAIProvider,
}


def get_provider(name: str, model: str, reasoning: Optional[str] = None) -> StructuredExtractionProvider:
    """Instantiate a provider by configured name."""
    provider_cls = PROVIDERS.get(name.lower())
    if provider_cls is None:
        raise ValueError(f"Unknown model provider '{name}'. Expected one of: {', '.join(PROVIDERS)}")
    return provider_cls(model=model, reasoning=reasoning)


def get_extraction_provider() -> StructuredExtractionProvider:
    return get_provider(settings.EXTRACTION_PROVIDER, settings.EXTRACTION_MODEL, settings.EXTRACTION_THINKING_LEVEL)


def get_verification_provider() -> StructuredExtractionProvider:
    return get_provider(settings.VERIFICATION_PROVIDER, settings.VERIFICATION_MODEL, settings.VERIFICATION_REASONING_EFFORT)


# ============ RETRY ============

def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception()
    logger.warning(f"Provider call attempt {retry_state.attempt_number} failed ({exc}); retrying")


async def call_with_retry(
    provider: StructuredExtractionProvider,
    request: ProviderRequest,
    policy: RetryPolicy,
) -> ProviderResponse:
    """Run provider.extract, retrying only TransientProviderError. Re-raises the last error."""
    retrying = AsyncRetrying(
        wait=wait_exponential(multiplier=policy.wait_seconds, max=policy.max_wait_seconds),
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        retry=retry_if_exception_type(TransientProviderError),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await provider.extract(request)
