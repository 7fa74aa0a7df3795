"""Perplexity implementation of the fact-check provider interface."""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field

from ...domain.errors import CollaboratorError
from ...domain.models.verification import SourceFilter
from ...domain.ports.fact_check_provider import FactCheckProvider, FactCheckVerdict
from .prompt import render_system_prompt
from .source_domains import domains_for_filter

logger = logging.getLogger(__name__)

MAX_SOURCES = 5

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "verdict": {"type": "string", "enum": ["true", "false", "unverifiable"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "evidence": {"type": "string"},
    },
    "required": ["verdict", "confidence", "evidence"],
}

class PerplexityConfig(BaseModel):
    """Configuration for Perplexity adapter."""

    api_key: str = Field(..., description="Perplexity API key")
    model: str = Field(default="sonar-pro", description="Search-grounded model")
    base_url: str = Field(default="https://api.perplexity.ai", description="API base URL")
    timeout: float = Field(default=30.0, description="API timeout in seconds")


class PerplexityAdapter(FactCheckProvider):
    """Search-grounded claim verification through Perplexity's chat completions API."""

    def __init__(
        self,
        config: Optional[PerplexityConfig] = None,
        client: Optional[AsyncOpenAI] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the adapter.

        Args:
            config: Adapter configuration
            client: Optional pre-built client (tests inject a mock)
            now: Clock used for the date context in the prompt
        """
        self._config = config or PerplexityConfig(api_key="")
        self._client = client
        self._now = now
        self._initialized = False

    async def initialize(self) -> None:
        """Create the API client."""
        if not self._config.api_key and self._client is None:
            raise ConnectionError("Failed to initialize Perplexity provider: PERPLEXITY_API_KEY is not set")

        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.timeout,
            )
        self._initialized = True
        logger.info(f"✅ Perplexity provider ready (model={self._config.model})")

    async def check(
        self,
        claim: str,
        source_filter: Optional[SourceFilter] = None,
    ) -> FactCheckVerdict:
        """Verify a claim against live web search.

        Raises:
            CollaboratorError: If the API call fails or the reply is not valid JSON
        """
        if not self._client:
            raise RuntimeError("Provider not initialized")

        extra_body = {}
        domains = domains_for_filter(source_filter)
        if domains:
            extra_body["search_domain_filter"] = domains
            logger.debug(f"Restricting search to {len(domains)} {source_filter.value} domains")

        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": render_system_prompt(self._now())},
                    {"role": "user", "content": f'Statement to verify: "{claim}"'},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"schema": RESPONSE_SCHEMA},
                },
                extra_body=extra_body or None,
            )
        except OpenAIError as e:
            logger.error(f"❌ Perplexity request failed: {e}")
            raise CollaboratorError("fact-check", str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise CollaboratorError("fact-check", "empty response from Perplexity")

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"❌ Could not parse Perplexity response: {content[:200]}")
            raise CollaboratorError("fact-check", f"invalid JSON response: {e}") from e
        if not isinstance(payload, dict):
            raise CollaboratorError("fact-check", "response is not a JSON object")

        citations = getattr(response, "citations", None)
        search_results = getattr(response, "search_results", None)
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(f"Token usage: prompt={usage.prompt_tokens}, completion={usage.completion_tokens}")

        return FactCheckVerdict.from_raw(
            payload,
            citations=citations if isinstance(citations, list) else None,
            sources=search_results[:MAX_SOURCES] if isinstance(search_results, list) else None,
        )

    async def shutdown(self) -> None:
        """Close the API client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._initialized = False

    @property
    def provider_name(self) -> str:
        return "perplexity"

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None
