"""Tests for the Perplexity fact-check adapter."""

import json
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from openai import OpenAIError

from realibuddy.domain.errors import CollaboratorError
from realibuddy.domain.models.verification import SourceFilter, Verdict
from realibuddy.infrastructure.fact_check.perplexity_adapter import PerplexityAdapter, PerplexityConfig
from realibuddy.infrastructure.fact_check.source_domains import SOURCE_DOMAINS, domains_for_filter


def _response(content, citations=None, search_results=None):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        citations=citations,
        search_results=search_results,
        usage=None,
    )


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest_asyncio.fixture
async def adapter(mock_client):
    adapter = PerplexityAdapter(
        config=PerplexityConfig(api_key="test-key"),
        client=mock_client,
        now=lambda: datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc),
    )
    await adapter.initialize()
    yield adapter
    await adapter.shutdown()


@pytest.mark.asyncio
async def test_check_returns_normalized_verdict(adapter, mock_client):
    mock_client.chat.completions.create.return_value = _response(
        json.dumps({"verdict": "false", "confidence": 0.92, "evidence": "It happened on November 4"}),
        citations=["https://apnews.com/x"],
        search_results=[{"title": f"Result {i}", "url": f"https://r/{i}"} for i in range(8)],
    )

    result = await adapter.check("The crash happened on September 4")

    assert result.verdict is Verdict.FALSE
    assert result.confidence == 0.92
    assert result.citations == ["https://apnews.com/x"]
    assert len(result.sources) == 5

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "sonar-pro"
    assert kwargs["response_format"]["type"] == "json_schema"
    assert "2025-11-04" in kwargs["messages"][0]["content"]
    assert kwargs["messages"][1]["content"] == 'Statement to verify: "The crash happened on September 4"'
    assert kwargs["extra_body"] is None


@pytest.mark.asyncio
async def test_source_filter_restricts_domains(adapter, mock_client):
    mock_client.chat.completions.create.return_value = _response(
        json.dumps({"verdict": "true", "confidence": 0.8, "evidence": "ok"})
    )

    await adapter.check("claim", SourceFilter.NEWS)

    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["extra_body"] == {"search_domain_filter": SOURCE_DOMAINS[SourceFilter.NEWS]}


@pytest.mark.asyncio
async def test_unexpected_verdict_becomes_unverifiable(adapter, mock_client):
    mock_client.chat.completions.create.return_value = _response(
        json.dumps({"verdict": "mostly true", "confidence": 3, "evidence": "hm"})
    )

    result = await adapter.check("claim")

    assert result.verdict is Verdict.UNVERIFIABLE
    assert result.confidence == 1.0


@pytest.mark.asyncio
async def test_api_error_raises_collaborator_error(adapter, mock_client):
    mock_client.chat.completions.create.side_effect = OpenAIError("rate limited")

    with pytest.raises(CollaboratorError) as exc_info:
        await adapter.check("claim")
    assert exc_info.value.stage == "fact-check"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["not json", "[1, 2]", ""])
async def test_unparseable_response_raises(adapter, mock_client, content):
    mock_client.chat.completions.create.return_value = _response(content)

    with pytest.raises(CollaboratorError):
        await adapter.check("claim")


@pytest.mark.asyncio
async def test_initialize_requires_api_key():
    adapter = PerplexityAdapter(config=PerplexityConfig(api_key=""))

    with pytest.raises(ConnectionError):
        await adapter.initialize()
    assert not adapter.is_available


def test_domain_filters():
    assert domains_for_filter(None) is None
    assert domains_for_filter(SourceFilter.ALL) is None
    for source_filter in (SourceFilter.AUTHORITATIVE, SourceFilter.NEWS, SourceFilter.SOCIAL, SourceFilter.ACADEMIC):
        domains = domains_for_filter(source_filter)
        assert 0 < len(domains) <= 20
        assert len(set(domains)) == len(domains)
