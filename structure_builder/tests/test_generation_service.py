"""Tests for generation routing, retries and fallback (no API calls)."""

import asyncio
import json

import pytest

from structure_builder.services import generation_service
from structure_builder.services.llm_service import GenerationError
from structure_builder import config

STRUCTURE = json.dumps({
    "name": "Garden Wall",
    "description": "Low wall",
    "blocks": [{"x": i, "y": 0, "z": 0, "material": "BRICKS"} for i in range(20)],
})


@pytest.fixture(autouse=True)
def _fast_config(monkeypatch):
    monkeypatch.setattr(config, "RETRY_BASE_DELAY_SECONDS", 0)
    monkeypatch.setattr(config, "CHUNK_REQUEST_DELAY_SECONDS", 0)
    monkeypatch.setattr(config, "CHUNK_SIZE", 8)
    monkeypatch.setattr(config, "CHUNKED_THRESHOLD", 500)
    monkeypatch.setattr(config, "CHUNKED_GENERATION_ENABLED", True)


class Flaky:
    def __init__(self, failures, response=STRUCTURE):
        self.failures = failures
        self.response = response
        self.calls = 0

    async def __call__(self, prompt):
        self.calls += 1
        if self.calls <= self.failures:
            raise GenerationError(f"failure {self.calls}")
        return self.response


class TestRouting:
    def test_small_target_is_single_shot(self):
        gen = Flaky(0)
        structure, timings = asyncio.run(generation_service.generate_structure("a wall", 100, generator=gen))
        assert gen.calls == 1
        assert structure.name == "Garden Wall"
        assert "generation_ms" in timings

    def test_large_target_is_chunked(self):
        gen = Flaky(0)
        structure, _ = asyncio.run(generation_service.generate_structure("a wall", 512, generator=gen))
        # One plan request plus four cells
        assert gen.calls == 5
        assert structure.name == "Large a wall"
        assert structure.voxel_count == 4 * 20

    def test_chunking_disabled(self, monkeypatch):
        monkeypatch.setattr(config, "CHUNKED_GENERATION_ENABLED", False)
        gen = Flaky(0)
        asyncio.run(generation_service.generate_structure("a wall", 5000, generator=gen))
        assert gen.calls == 1

    def test_threshold_is_inclusive(self):
        assert generation_service.use_chunked(500)
        assert not generation_service.use_chunked(499)


class TestRetries:
    def test_recovers_after_transient_failures(self):
        gen = Flaky(2)
        messages = []
        structure, _ = asyncio.run(
            generation_service.generate_structure("a wall", 100, messages.append, generator=gen)
        )
        assert gen.calls == 3
        assert structure.name == "Garden Wall"
        assert sum(m.startswith("Attempt") for m in messages) == 2

    def test_exhausted_retries_use_fallback(self):
        gen = Flaky(10)
        structure, _ = asyncio.run(generation_service.generate_structure("a stone bridge", 100, generator=gen))
        assert gen.calls == config.MAX_RETRIES
        assert structure.name == "Fallback Bridge"
        assert structure.voxel_count > 10

    def test_unparseable_response_uses_fallback(self):
        gen = Flaky(0, response="Sorry, I can only describe buildings in words.")
        structure, _ = asyncio.run(generation_service.generate_structure("a tower", 100, generator=gen))
        assert structure.name == "Fallback Tower"
