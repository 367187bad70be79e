"""Tests for LLM service (unit tests, no API calls)."""

import asyncio

import pytest

from structure_builder.services import llm_service
from structure_builder.services.llm_service import (
    GenerationError,
    cache_clear,
    interruptible_sleep,
    resolve_model,
    retry_with_backoff,
)
from structure_builder import config


@pytest.fixture(autouse=True)
def _empty_cache():
    cache_clear()
    yield
    cache_clear()


class TestResolveModel:
    def test_defaults(self, monkeypatch):
        monkeypatch.setattr(config, "DEFAULT_PROVIDER", "gemini")
        assert resolve_model(None, None) == ("gemini", "flash", config.GEMINI_MODELS["flash"])

    def test_claude_alias(self):
        assert resolve_model("claude", "sonnet")[2] == config.CLAUDE_MODELS["sonnet"]

    def test_raw_model_id_passes_through(self):
        assert resolve_model("gemini", "gemini-exp")[2] == "gemini-exp"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            resolve_model("openai", None)


class TestGenerateText:
    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(config, "GOOGLE_API_KEY", "")
        with pytest.raises(GenerationError, match="not configured"):
            asyncio.run(llm_service.generate_text("prompt", "gemini"))

    def test_success_is_cached(self, monkeypatch):
        calls = []

        async def fake_call(prompt, model_id):
            calls.append(model_id)
            return '{"name": "x"}'

        monkeypatch.setattr(config, "GOOGLE_API_KEY", "test-key")
        monkeypatch.setattr(llm_service, "_call_gemini", fake_call)

        first = asyncio.run(llm_service.generate_text("a hut", "gemini", "flash"))
        second = asyncio.run(llm_service.generate_text("a hut", "gemini", "flash"))

        assert first == second == '{"name": "x"}'
        assert calls == [config.GEMINI_MODELS["flash"]]
        assert cache_clear() == 1

    def test_timeout_becomes_generation_error(self, monkeypatch):
        async def slow_call(prompt, model_id):
            await asyncio.sleep(1)
            return "late"

        monkeypatch.setattr(config, "ANTHROPIC_API_KEY", "test-key")
        monkeypatch.setattr(llm_service, "_call_claude", slow_call)

        with pytest.raises(GenerationError, match="timed out"):
            asyncio.run(llm_service.generate_text("a hut", "claude", timeout=0.01))

    def test_provider_error_wrapped(self, monkeypatch):
        async def broken_call(prompt, model_id):
            raise ConnectionError("connection reset")

        monkeypatch.setattr(config, "GOOGLE_API_KEY", "test-key")
        monkeypatch.setattr(llm_service, "_call_gemini", broken_call)

        with pytest.raises(GenerationError, match="connection reset"):
            asyncio.run(llm_service.generate_text("a hut", "gemini"))

    def test_empty_response(self, monkeypatch):
        async def empty_call(prompt, model_id):
            return ""

        monkeypatch.setattr(config, "GOOGLE_API_KEY", "test-key")
        monkeypatch.setattr(llm_service, "_call_gemini", empty_call)

        with pytest.raises(GenerationError, match="No valid response"):
            asyncio.run(llm_service.generate_text("a hut", "gemini"))


class TestRetry:
    def test_succeeds_after_failures(self):
        attempts = []
        retries = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise GenerationError("503")
            return "ok"

        result = asyncio.run(retry_with_backoff(
            flaky, attempts=3, base_delay=0, on_retry=lambda a, d, e: retries.append((a, d)),
        ))
        assert result == "ok"
        assert len(attempts) == 3
        assert retries == [(1, 0), (2, 0)]

    def test_backoff_is_linear_in_attempt(self):
        delays = []

        async def failing():
            raise GenerationError("down")

        with pytest.raises(GenerationError):
            asyncio.run(retry_with_backoff(
                failing, attempts=3, base_delay=0.001, on_retry=lambda a, d, e: delays.append(d),
            ))
        assert delays == [0.001, 0.002]

    def test_non_transport_errors_not_retried(self):
        attempts = []

        async def buggy():
            attempts.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            asyncio.run(retry_with_backoff(buggy, attempts=3, base_delay=0))
        assert len(attempts) == 1

    def test_interrupted_backoff_stops_retrying(self):
        attempts = []

        async def main():
            stop = asyncio.Event()
            stop.set()

            async def failing():
                attempts.append(1)
                raise GenerationError("down")

            await retry_with_backoff(failing, attempts=3, base_delay=60, stop_event=stop)

        with pytest.raises(GenerationError):
            asyncio.run(main())
        assert len(attempts) == 1


class TestInterruptibleSleep:
    def test_plain_sleep(self):
        assert asyncio.run(interruptible_sleep(0)) is False

    def test_times_out(self):
        async def main():
            return await interruptible_sleep(0.01, asyncio.Event())

        assert asyncio.run(main()) is False

    def test_wakes_on_event(self):
        async def main():
            stop = asyncio.Event()
            asyncio.get_running_loop().call_later(0.01, stop.set)
            return await interruptible_sleep(60, stop)

        assert asyncio.run(main()) is True
