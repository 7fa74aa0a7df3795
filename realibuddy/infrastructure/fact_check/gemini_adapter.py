"""Gemini implementation of the fact-check provider interface."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, Field

from ...domain.errors import CollaboratorError
from ...domain.models.verification import SourceFilter
from ...domain.ports.fact_check_provider import FactCheckProvider, FactCheckVerdict
from .prompt import render_system_prompt
from .source_domains import domains_for_filter

logger = logging.getLogger(__name__)

MAX_SOURCES = 5


class GeminiConfig(BaseModel):
    """Configuration for Gemini adapter."""

    api_key: str = Field(..., description="Gemini API key")
    model: str = Field(default="gemini-2.5-flash", description="Model with Google Search grounding")
    timeout: float = Field(default=30.0, description="API timeout in seconds")


def _strip_fences(text: str) -> str:
    """Remove a markdown code fence around a JSON reply."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _grounding_sources(response: Any) -> List[Dict[str, str]]:
    """Collect the web pages Google Search grounding returned."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []

    sources = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None or not getattr(web, "uri", None):
            continue
        sources.append({"title": getattr(web, "title", None) or "Untitled", "url": web.uri})
    return sources


class GeminiAdapter(FactCheckProvider):
    """Claim verification through Gemini with Google Search grounding.

    Gemini cannot restrict its search to a domain list, so a source filter is
    passed to the model as a preference in the prompt.
    """

    def __init__(
        self,
        config: Optional[GeminiConfig] = None,
        client: Optional[genai.Client] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._config = config or GeminiConfig(api_key="")
        self._client = client
        self._now = now
        self._initialized = False

    async def initialize(self) -> None:
        """Create the API client."""
        if not self._config.api_key and self._client is None:
            raise ConnectionError("Failed to initialize Gemini provider: GEMINI_API_KEY is not set")

        if self._client is None:
            self._client = genai.Client(
                api_key=self._config.api_key,
                http_options=types.HttpOptions(timeout=int(self._config.timeout * 1000)),
            )
        self._initialized = True
        logger.info(f"✅ Gemini provider ready (model={self._config.model})")

    def _user_prompt(self, claim: str, source_filter: Optional[SourceFilter]) -> str:
        prompt = f'Statement to verify: "{claim}"'
        domains = domains_for_filter(source_filter)
        if domains:
            prompt += f"\n\nPrefer evidence from these sites: {', '.join(domains)}"
        return prompt

    async def check(
        self,
        claim: str,
        source_filter: Optional[SourceFilter] = None,
    ) -> FactCheckVerdict:
        """Verify a claim with a Google Search grounded generation.

        Raises:
            CollaboratorError: If the API call fails or the reply is not valid JSON
        """
        if not self._client:
            raise RuntimeError("Provider not initialized")

        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=self._user_prompt(claim, source_filter),
                config=types.GenerateContentConfig(
                    system_instruction=render_system_prompt(self._now()),
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                ),
            )
        except genai_errors.APIError as e:
            logger.error(f"❌ Gemini request failed: {e}")
            raise CollaboratorError("fact-check", str(e)) from e

        text = response.text
        if not text:
            raise CollaboratorError("fact-check", "empty response from Gemini")

        # Grounded generations cannot use JSON mode, so the reply may arrive fenced.
        content = _strip_fences(text)
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"❌ Could not parse Gemini response: {content[:200]}")
            raise CollaboratorError("fact-check", f"invalid JSON response: {e}") from e
        if not isinstance(payload, dict):
            raise CollaboratorError("fact-check", "response is not a JSON object")

        sources = _grounding_sources(response)
        return FactCheckVerdict.from_raw(
            payload,
            citations=[s["url"] for s in sources],
            sources=sources[:MAX_SOURCES],
        )

    async def shutdown(self) -> None:
        """Close the API client."""
        if self._client is not None:
            await self._client.aio.aclose()
            self._client = None
        self._initialized = False

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None
