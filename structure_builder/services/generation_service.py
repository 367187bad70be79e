"""Generation service - description in, valid StructureModel out."""

import logging
import time
from typing import Callable, Optional

from structure_builder.models import StructureModel
from structure_builder.prompts.structure_prompt import build_structure_prompt
from structure_builder.services.archetypes import generate_fallback_structure
from structure_builder.services.chunked_generation import ChunkedGenerator
from structure_builder.services.llm_service import (
    RETRYABLE_ERRORS,
    TextGenerator,
    make_generator,
    retry_with_backoff,
)
from structure_builder.services.response_processor import process_response
from structure_builder import config

logger = logging.getLogger(__name__)


def use_chunked(target_size: int) -> bool:
    return config.CHUNKED_GENERATION_ENABLED and target_size >= config.CHUNKED_THRESHOLD


async def generate_single(
    description: str,
    target_size: int,
    generator: TextGenerator,
    on_progress: Optional[Callable[[str], None]] = None,
    attempts: int = config.MAX_RETRIES,
    base_delay: float = config.RETRY_BASE_DELAY_SECONDS,
) -> StructureModel:
    """One generation call with retries, ingested by the response processor.

    Transport failures that outlast the retries yield the procedural fallback.
    """
    notify = on_progress or (lambda _msg: None)
    prompt = build_structure_prompt(description, target_size)

    def _on_retry(attempt: int, delay: float, error: Exception) -> None:
        notify(f"Attempt {attempt} failed, retrying in {delay:.0f}s...")

    try:
        raw = await retry_with_backoff(
            lambda: generator(prompt), attempts=attempts, base_delay=base_delay, on_retry=_on_retry
        )
    except RETRYABLE_ERRORS as e:
        logger.error("Generation failed after %d attempts: %s", attempts, e)
        notify("Generation service unavailable, using a procedural structure")
        return generate_fallback_structure(description)

    return process_response(raw, description)


async def generate_structure(
    description: str,
    target_size: int = config.DEFAULT_TARGET_SIZE,
    on_progress: Optional[Callable[[str], None]] = None,
    generator: Optional[TextGenerator] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> tuple[StructureModel, dict]:
    """Generate a structure for ``description``. Returns (structure, timings)."""
    generator = generator or make_generator(provider, model)
    notify = on_progress or (lambda _msg: None)
    timings = {}
    t0 = time.perf_counter()

    if use_chunked(target_size):
        logger.info("Chunked generation for %r (target %d voxels)", description, target_size)
        chunked = ChunkedGenerator(generator, config.CHUNK_SIZE, config.CHUNK_REQUEST_DELAY_SECONDS)
        structure = await chunked.generate_large(description, target_size, notify)
    else:
        notify("Generating structure...")
        structure = await generate_single(
            description, target_size, generator, notify,
            attempts=config.MAX_RETRIES, base_delay=config.RETRY_BASE_DELAY_SECONDS,
        )

    timings["generation_ms"] = round((time.perf_counter() - t0) * 1000, 1)
    logger.info(
        "Generated %r with %d voxels in %.1fms",
        structure.name, structure.voxel_count, timings["generation_ms"],
    )
    return structure, timings
