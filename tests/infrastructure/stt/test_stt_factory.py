"""Tests for the STT provider factory."""

import pytest

from realibuddy.domain.ports.stt_provider import AudioFormat
from realibuddy.infrastructure.stt.deepgram_adapter import DeepgramAdapter
from realibuddy.infrastructure.stt.factory import STTProviderFactory


@pytest.mark.asyncio
async def test_create_deepgram_provider():
    factory = STTProviderFactory()

    provider = await factory.create_provider("deepgram", {"api_key": "test-key", "model": "nova-3"})

    assert isinstance(provider, DeepgramAdapter)
    assert provider.is_available
    assert "model=nova-3" in provider.listen_url(AudioFormat())
    assert await factory.create_provider("deepgram") is provider

    await factory.shutdown_all()
    assert not provider.is_available


@pytest.mark.asyncio
async def test_key_read_from_environment(monkeypatch):
    monkeypatch.setenv("DEEPGRAM_API_KEY", "env-key")
    factory = STTProviderFactory()

    provider = await factory.create_provider("deepgram")

    assert provider.is_available
    await factory.shutdown_all()


@pytest.mark.asyncio
async def test_missing_key_is_not_cached(monkeypatch):
    monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
    factory = STTProviderFactory()

    with pytest.raises(ConnectionError):
        await factory.create_provider("deepgram")

    provider = await factory.create_provider("deepgram", {"api_key": "late-key"})
    assert provider.is_available
    await factory.shutdown_all()


@pytest.mark.asyncio
async def test_unknown_provider():
    factory = STTProviderFactory()

    with pytest.raises(ValueError) as exc_info:
        await factory.create_provider("whisper")
    assert "deepgram" in str(exc_info.value)
    assert factory.supported_providers == ["deepgram"]
