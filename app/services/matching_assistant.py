"""Optional model-assisted name matching for biomarkers the catalog lookup missed."""

import json
from typing import Dict, List, Optional, Tuple

from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.core.logging import logger
from app.services.ai_providers import RetryPolicy, classify_error
from app.services.biomarker_catalog import BiomarkerCatalog
from app.shared.exceptions import ProviderError, TransientProviderError


# ============ STRUCTURED OUTPUT SCHEMA ============

class NameMatch(BaseModel):
    """One proposed mapping from a report name to a catalog code."""
    original_name: str = Field(description="Biomarker name exactly as given")
    code: Optional[str] = Field(default=None, description="Catalog code, or null if none fits")


class NameMatchList(BaseModel):
    matches: List[NameMatch] = Field(default_factory=list)


SYSTEM_PROMPT = """You are a biomarker matching expert.
Map each lab test name to the code of the equivalent standardized biomarker.
Only use codes from the provided catalog. Use null when nothing is equivalent.
Consider translations, abbreviations and alternate spellings."""


class MatchingAssistant:
    """Asks a chat model to map unmatched names onto catalog codes."""

    def __init__(self, model: Optional[str] = None, llm=None, policy: Optional[RetryPolicy] = None):
        self.model = model or settings.MATCHING_ASSIST_MODEL
        self._llm = llm
        self.policy = policy or RetryPolicy.from_settings()

    @property
    def llm(self):
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self.model,
                api_key=settings.OPENAI_API_KEY,
                temperature=0,
                timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._llm

    async def _invoke(self, messages) -> NameMatchList:
        structured_llm = self.llm.with_structured_output(NameMatchList)
        try:
            return await structured_llm.ainvoke(messages)
        except Exception as e:
            raise classify_error(e) from e

    async def suggest(self, names: List[str], catalog: BiomarkerCatalog) -> Tuple[Dict[str, str], Optional[str]]:
        """
        Return ({original_name: code}, raw_response). Unknown codes are dropped.
        Any failure degrades to no suggestions.
        """
        if not names:
            return {}, None

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Catalog:\n{json.dumps(catalog.describe())}\n\n"
                    f"Names to match:\n{json.dumps(names)}"
                ),
            },
        ]

        retrying = AsyncRetrying(
            wait=wait_exponential(multiplier=self.policy.wait_seconds, max=self.policy.max_wait_seconds),
            stop=stop_after_attempt(max(1, self.policy.max_attempts)),
            retry=retry_if_exception_type(TransientProviderError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._invoke(messages)
        except ProviderError as e:
            logger.warning(f"Model-assisted matching failed, using deterministic matches only: {e}")
            return {}, None

        hints = {}
        for match in result.matches:
            if match.code and catalog.get(match.code) is not None and match.original_name in names:
                hints[match.original_name] = match.code
            elif match.code:
                logger.debug(f"Ignoring unknown code '{match.code}' proposed for '{match.original_name}'")

        logger.info(f"Model-assisted matching proposed {len(hints)}/{len(names)} codes")
        return hints, result.model_dump_json()
