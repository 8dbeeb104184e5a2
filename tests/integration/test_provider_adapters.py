import json
import stat
from pathlib import Path

import httpx
import pytest

from fossil_router.domain.exceptions import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from fossil_router.domain.models import CallRequest
from fossil_router.providers.base import ProviderConfig, ProviderKind
from fossil_router.providers.ollama_provider import OllamaProvider, render_prompt
from fossil_router.providers.openai_provider import OpenAIProvider
from fossil_router.utils.retry import is_rate_limit_error

pytestmark = pytest.mark.integration


def _build_client(handler):
    transport = httpx.MockTransport(handler)
    return httpx.AsyncClient(transport=transport)


def _request(**overrides):
    payload = {
        "model": "gpt-3.5-turbo",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "2+2"},
        ],
        "temperature": 0.2,
        "valueScore": 0.9,
        "purpose": "semantic-tagging",
    }
    payload.update(overrides)
    return CallRequest.from_mapping(payload)


@pytest.mark.asyncio
async def test_openai_provider_posts_chat_completion():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        captured["headers"] = dict(request.headers)
        data = {
            "choices": [{"message": {"role": "assistant", "content": "4"}}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 1, "total_tokens": 6},
        }
        return httpx.Response(200, json=data)

    config = ProviderConfig(api_key="sk-config", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    response = await provider.complete(_request())

    assert response["choices"][0]["message"]["content"] == "4"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["headers"]["authorization"] == "Bearer sk-config"
    assert captured["body"]["model"] == "gpt-3.5-turbo"
    assert captured["body"]["temperature"] == 0.2
    assert captured["body"]["messages"][1] == {"role": "user", "content": "2+2"}
    assert "valueScore" not in captured["body"]
    assert "purpose" not in captured["body"]


@pytest.mark.asyncio
async def test_openai_provider_sends_only_chat_completion_fields():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    config = ProviderConfig(api_key="sk-test", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    await provider.complete(
        _request(issueNumber=42, sessionTag="roadmap", max_tokens=64, apiKey="sk-x")
    )

    assert sorted(captured["body"]) == ["max_tokens", "messages", "model", "temperature"]
    assert captured["body"]["max_tokens"] == 64


@pytest.mark.asyncio
async def test_openai_provider_prefers_request_api_key():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    config = ProviderConfig(api_key="sk-config", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    await provider.complete(_request(apiKey="sk-request"))

    assert captured["auth"] == "Bearer sk-request"


@pytest.mark.asyncio
async def test_openai_provider_raises_on_rate_limit():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Too many requests"}})

    config = ProviderConfig(api_key="sk-test", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    with pytest.raises(ProviderRateLimitError) as excinfo:
        await provider.complete(_request())

    assert "429" in str(excinfo.value)
    assert is_rate_limit_error(excinfo.value)


@pytest.mark.asyncio
async def test_openai_provider_raises_on_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"message": "Service down"}})

    config = ProviderConfig(api_key="sk-test", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    with pytest.raises(ProviderUnavailableError):
        await provider.complete(_request())


@pytest.mark.asyncio
async def test_openai_provider_raises_on_client_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "bad"}})

    config = ProviderConfig(api_key="sk-test", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    with pytest.raises(ProviderError) as excinfo:
        await provider.complete(_request())

    assert not isinstance(excinfo.value, ProviderUnavailableError)
    assert "400" in str(excinfo.value)


@pytest.mark.asyncio
async def test_openai_provider_maps_transport_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    config = ProviderConfig(api_key="sk-test", base_url="https://api.openai.com")
    provider = OpenAIProvider(_build_client(handler), config)

    with pytest.raises(ProviderTimeoutError):
        await provider.complete(_request())


@pytest.mark.asyncio
async def test_openai_availability_and_descriptor():
    client = _build_client(lambda request: httpx.Response(200, json={}))
    with_key = OpenAIProvider(
        client, ProviderConfig(api_key="sk", base_url="https://api.openai.com")
    )
    without_key = OpenAIProvider(
        client, ProviderConfig(api_key=None, base_url="https://api.openai.com")
    )

    assert await with_key.is_available() is True
    assert await without_key.is_available() is False

    descriptor = with_key.descriptor()
    assert descriptor.name == "openai"
    assert descriptor.kind is ProviderKind.CLOUD
    assert descriptor.estimate_cost(1000, "gpt-4") == pytest.approx(0.03)


def _fake_ollama(tmp_path: Path, body: str) -> str:
    script = tmp_path / "ollama"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@pytest.mark.asyncio
async def test_ollama_provider_wraps_stdout(tmp_path: Path):
    executable = _fake_ollama(
        tmp_path,
        'if [ "$1" = "--version" ]; then echo "ollama 0.1"; exit 0; fi\n'
        'echo "model=$2"\n',
    )
    provider = OllamaProvider("llama3", executable=executable)

    response = await provider.complete(_request())

    assert await provider.is_available() is True
    assert response == {"choices": [{"message": {"content": "model=llama3"}}]}
    assert provider.descriptor().estimate_cost(10_000, "gpt-4") == 0.0
    assert provider.descriptor().kind is ProviderKind.LOCAL


@pytest.mark.asyncio
async def test_ollama_provider_nonzero_exit(tmp_path: Path):
    executable = _fake_ollama(tmp_path, 'echo "model missing" >&2\nexit 3\n')
    provider = OllamaProvider(executable=executable)

    with pytest.raises(ProviderError) as excinfo:
        await provider.complete(_request())

    assert "model missing" in str(excinfo.value)
    assert await provider.is_available() is False


@pytest.mark.asyncio
async def test_ollama_provider_timeout_kills_process(tmp_path: Path):
    executable = _fake_ollama(tmp_path, "exec sleep 5\n")
    provider = OllamaProvider(executable=executable, timeout=0.2)

    with pytest.raises(ProviderTimeoutError):
        await provider.complete(_request())


@pytest.mark.asyncio
async def test_ollama_unavailable_when_binary_missing(tmp_path: Path):
    provider = OllamaProvider(executable=str(tmp_path / "does-not-exist"))
    assert await provider.is_available() is False


def test_render_prompt_uses_role_prefixes():
    assert render_prompt(_request().messages) == "system: Be brief.\nuser: 2+2"
