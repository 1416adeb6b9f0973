"""Unit tests for the LLM client abstraction layer."""

from __future__ import annotations

import json

import httpx
import pytest

from imucalc.core.config import LLMConfig
from imucalc.core.types import HealthStatus
from imucalc.llm import LLMClient, create_llm_client
from imucalc.llm.health import check_llm_health
from imucalc.llm.providers.ollama import OllamaClient
from imucalc.llm.providers.openai_compat import OpenAICompatClient, _backoff


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ollama_config(**overrides) -> LLMConfig:
    defaults = {"provider": "ollama", "base_url": "http://localhost:11434", "model": "llama3.1:8b"}
    defaults.update(overrides)
    return LLMConfig(**defaults)


def _openai_config(**overrides) -> LLMConfig:
    defaults = {
        "provider": "openai",
        "base_url": "http://localhost:8000",
        "model": "gpt-4",
        "api_key": "sk-test",
    }
    defaults.update(overrides)
    return LLMConfig(**defaults)


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


# ---------------------------------------------------------------------------
# Factory tests
# ---------------------------------------------------------------------------

class TestFactory:
    def test_creates_ollama_client(self):
        client = create_llm_client(_ollama_config())
        assert isinstance(client, OllamaClient)
        assert isinstance(client, LLMClient)

    def test_creates_openai_client(self):
        assert isinstance(create_llm_client(_openai_config()), OpenAICompatClient)

    def test_creates_vllm_client(self):
        assert isinstance(create_llm_client(_openai_config(provider="vllm")), OpenAICompatClient)

    def test_provider_is_case_insensitive(self):
        assert isinstance(create_llm_client(_openai_config(provider="OpenAI")), OpenAICompatClient)

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_llm_client(_ollama_config(provider="nope"))


# ---------------------------------------------------------------------------
# OpenAI-compatible provider tests
# ---------------------------------------------------------------------------

class TestOpenAICompatClient:
    @pytest.mark.asyncio
    async def test_generate_sends_system_and_user(self, httpx_mock):
        httpx_mock.add_response(
            url="http://localhost:8000/v1/chat/completions",
            method="POST",
            json=_completion('{"immobili": []}'),
        )
        client = OpenAICompatClient(_openai_config())
        try:
            result = await client.generate("Visura...", system_prompt="Estrai gli immobili.")
            assert result == '{"immobili": []}'

            body = json.loads(httpx_mock.get_request().content)
            assert body["model"] == "gpt-4"
            assert body["temperature"] == 0.0
            assert body["max_tokens"] == 500
            assert body["messages"][0] == {"role": "system", "content": "Estrai gli immobili."}
            assert body["messages"][1] == {"role": "user", "content": "Visura..."}
            assert "top_p" not in body
            assert "response_format" not in body
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_auth_header(self, httpx_mock):
        httpx_mock.add_response(json=_completion("ok"))
        client = OpenAICompatClient(_openai_config())
        try:
            await client.chat([{"role": "user", "content": "Hi"}])
            assert httpx_mock.get_request().headers["Authorization"] == "Bearer sk-test"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, httpx_mock):
        httpx_mock.add_response(json=_completion("ok"))
        client = OpenAICompatClient(_openai_config(api_key=None))
        try:
            await client.chat([{"role": "user", "content": "Hi"}])
            assert "Authorization" not in httpx_mock.get_request().headers
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_top_p_in_request(self, httpx_mock):
        httpx_mock.add_response(json=_completion("ok"))
        client = OpenAICompatClient(_openai_config(top_p=0.9))
        try:
            await client.chat([{"role": "user", "content": "Hi"}])
            assert json.loads(httpx_mock.get_request().content)["top_p"] == 0.9
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_empty_choices(self, httpx_mock):
        httpx_mock.add_response(json={"choices": []})
        client = OpenAICompatClient(_openai_config())
        try:
            assert await client.chat([{"role": "user", "content": "Hi"}]) == ""
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_retry_on_500(self, httpx_mock):
        httpx_mock.add_response(status_code=500)
        httpx_mock.add_response(json=_completion("recovered"))
        client = OpenAICompatClient(_openai_config(max_retries=1))
        try:
            assert await client.chat([{"role": "user", "content": "Hi"}]) == "recovered"
            assert len(httpx_mock.get_requests()) == 2
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_no_retry_on_400(self, httpx_mock):
        httpx_mock.add_response(status_code=400)
        client = OpenAICompatClient(_openai_config(max_retries=2))
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.chat([{"role": "user", "content": "Hi"}])
            assert len(httpx_mock.get_requests()) == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_json_mode_sets_response_format(self, httpx_mock):
        httpx_mock.add_response(json=_completion("{}"))
        client = OpenAICompatClient(_openai_config())
        try:
            await client.generate("Visura...", json_output=True)
            body = json.loads(httpx_mock.get_request().content)
            assert body["response_format"] == {"type": "json_object"}
            assert body["messages"] == [{"role": "user", "content": "Visura..."}]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_retry_on_rate_limit(self, httpx_mock):
        httpx_mock.add_response(status_code=429, headers={"Retry-After": "0"})
        httpx_mock.add_response(json=_completion("after wait"))
        client = OpenAICompatClient(_openai_config(max_retries=1))
        try:
            assert await client.chat([{"role": "user", "content": "Hi"}]) == "after wait"
            assert len(httpx_mock.get_requests()) == 2
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, httpx_mock):
        httpx_mock.add_response(status_code=429, headers={"Retry-After": "0"})
        httpx_mock.add_response(status_code=429, headers={"Retry-After": "0"})
        client = OpenAICompatClient(_openai_config(max_retries=1))
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.chat([{"role": "user", "content": "Hi"}])
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_retry_on_transport_error(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        httpx_mock.add_response(json=_completion("second try"))
        client = OpenAICompatClient(_openai_config(max_retries=1))
        try:
            assert await client.chat([{"role": "user", "content": "Hi"}]) == "second try"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_is_available_true(self, httpx_mock):
        httpx_mock.add_response(url="http://localhost:8000/v1/models", method="GET", json={"data": []})
        client = OpenAICompatClient(_openai_config())
        try:
            assert await client.is_available() is True
        finally:
            await client.close()


# ---------------------------------------------------------------------------
# Ollama provider tests
# ---------------------------------------------------------------------------

class TestOllamaClient:
    @pytest.mark.asyncio
    async def test_generate_requests_json(self, httpx_mock):
        httpx_mock.add_response(
            url="http://localhost:11434/api/chat",
            method="POST",
            json={"message": {"role": "assistant", "content": '{"immobili": []}'}},
        )
        client = OllamaClient(_ollama_config())
        try:
            result = await client.generate("Visura...", system_prompt="Estrai.", json_output=True)
            assert result == '{"immobili": []}'

            body = json.loads(httpx_mock.get_request().content)
            assert body["format"] == "json"
            assert body["stream"] is False
            assert body["messages"][0] == {"role": "system", "content": "Estrai."}
            assert body["options"]["temperature"] == 0.0
            assert body["options"]["num_predict"] == 500
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_chat_without_json_mode(self, httpx_mock):
        httpx_mock.add_response(
            url="http://localhost:11434/api/chat",
            method="POST",
            json={"message": {"role": "assistant", "content": "Chat reply"}},
        )
        client = OllamaClient(_ollama_config())
        try:
            assert await client.chat([{"role": "user", "content": "Hi"}]) == "Chat reply"
            assert "format" not in json.loads(httpx_mock.get_request().content)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_client_error_is_raised(self, httpx_mock):
        httpx_mock.add_response(url="http://localhost:11434/api/chat", status_code=404)
        client = OllamaClient(_ollama_config(max_retries=2))
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.chat([{"role": "user", "content": "Hi"}])
            assert len(httpx_mock.get_requests()) == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_is_available_false_on_error(self, httpx_mock):
        httpx_mock.add_exception(
            httpx.ConnectError("connection refused"),
            url="http://localhost:11434/api/tags",
        )
        client = OllamaClient(_ollama_config())
        try:
            assert await client.is_available() is False
        finally:
            await client.close()


# ---------------------------------------------------------------------------
# Health check tests
# ---------------------------------------------------------------------------

class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, httpx_mock):
        httpx_mock.add_response(
            url="http://localhost:11434/api/tags",
            method="GET",
            json={"models": []},
        )
        client = OllamaClient(_ollama_config())
        try:
            status = await check_llm_health(client)
        finally:
            await client.close()
        assert isinstance(status, HealthStatus)
        assert status.healthy is True
        assert status.service == "llm:ollama"
        assert status.details["model"] == "llama3.1:8b"
        assert status.latency_ms is not None and status.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_unhealthy(self, httpx_mock):
        httpx_mock.add_exception(
            httpx.ConnectError("refused"),
            url="http://localhost:11434/api/tags",
        )
        client = OllamaClient(_ollama_config())
        try:
            status = await check_llm_health(client)
        finally:
            await client.close()
        assert status.healthy is False


class TestBackoff:
    def test_exponential(self):
        assert _backoff(1, None) == 0.5
        assert _backoff(3, None) == 2.0
        assert _backoff(10, None) == 8.0

    def test_retry_after_header(self):
        assert _backoff(1, "3") == 3.0
        assert _backoff(1, "120") == 8.0

    def test_non_numeric_retry_after(self):
        assert _backoff(2, "Wed, 21 Oct 2015 07:28:00 GMT") == 1.0
