"""Chunked generation - split a large request into a square grid of independently generated cells."""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from structure_builder.models import Size, StructureModel, Voxel
from structure_builder.prompts.structure_prompt import build_chunk_prompt, build_plan_prompt
from structure_builder.services.archetypes import fallback_chunk
from structure_builder.services.llm_service import TextGenerator, interruptible_sleep
from structure_builder.services.response_processor import process_response
from structure_builder import config

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

FALLBACK_HINTS = (
    "main entrance and foundation",
    "central courtyard area",
    "residential quarters",
    "decorative gardens",
    "defensive walls and towers",
    "storage and utility areas",
    "ceremonial halls",
    "connecting pathways",
)

_HINT_LINE = re.compile(r"chunk|section|area|zone", re.IGNORECASE)
MIN_HINT_LENGTH = 20


@dataclass(frozen=True)
class ChunkDescriptor:
    chunk_x: int
    chunk_z: int
    description: str
    plan_context: str


def integer_cube_root(n: int) -> int:
    """Largest r with r**3 <= n."""
    if n <= 0:
        return 0
    r = round(n ** (1 / 3))
    while r ** 3 > n:
        r -= 1
    while (r + 1) ** 3 <= n:
        r += 1
    return r


def chunks_per_side(target_size: int, chunk_size: int) -> int:
    estimated_side = integer_cube_root(target_size) * 2
    return max(1, estimated_side // chunk_size)


def plan_hints(plan: str) -> list[str]:
    return [
        line.strip()
        for line in (plan or "").splitlines()
        if _HINT_LINE.search(line) and len(line.strip()) > MIN_HINT_LENGTH
    ]


def create_chunk_plan(plan: str, per_side: int, description: str) -> list[ChunkDescriptor]:
    """One descriptor per cell in row-major (x, then z) order, hints assigned round-robin."""
    hints = plan_hints(plan) or list(FALLBACK_HINTS)
    chunks = []
    for index in range(per_side * per_side):
        cx, cz = divmod(index, per_side)
        hint = hints[index % len(hints)]
        chunks.append(ChunkDescriptor(
            chunk_x=cx,
            chunk_z=cz,
            description=f"{description} - {hint} (chunk {cx},{cz} of {per_side}x{per_side} structure)",
            plan_context=plan or "",
        ))
    return chunks


class ChunkedGenerator:
    """Drives one plan request and one request per cell, merging the results in cell order.

    Cells are requested sequentially with ``request_delay`` seconds between
    them. ``interrupt()`` stops issuing further cells; the cells finished so
    far are still merged and returned.
    """

    def __init__(
        self,
        generator: TextGenerator,
        chunk_size: int = config.CHUNK_SIZE,
        request_delay: float = config.CHUNK_REQUEST_DELAY_SECONDS,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.generator = generator
        self.chunk_size = chunk_size
        self.request_delay = request_delay
        self._stop = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def interrupt(self) -> None:
        """Stop issuing cells. May be called from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self._stop.set()
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            self._stop.set()
        else:
            loop.call_soon_threadsafe(self._stop.set)

    @property
    def interrupted(self) -> bool:
        return self._stop.is_set()

    async def _plan(self, description: str, per_side: int, notify: ProgressCallback) -> str:
        notify("Creating overall structure plan...")
        try:
            return await self.generator(build_plan_prompt(description, per_side))
        except Exception as e:
            logger.warning("Plan request failed, using default cell roles: %s", e)
            return ""

    async def _generate_chunk(self, chunk: ChunkDescriptor) -> StructureModel:
        prompt = build_chunk_prompt(
            chunk.description, chunk.chunk_x, chunk.chunk_z, self.chunk_size, chunk.plan_context
        )
        response = await self.generator(prompt)
        return process_response(response, chunk.description)

    async def generate_large(
        self,
        description: str,
        target_size: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StructureModel:
        notify = on_progress or (lambda _msg: None)
        self._loop = asyncio.get_running_loop()
        self._stop.clear()

        notify("Planning large structure generation...")
        per_side = chunks_per_side(target_size, self.chunk_size)
        total = per_side * per_side
        notify(f"Structure will be {per_side}x{per_side} chunks ({total} total chunks)")

        plan = await self._plan(description, per_side, notify)
        chunks = create_chunk_plan(plan, per_side, description)

        merged: list[Voxel] = []
        for index, chunk in enumerate(chunks, start=1):
            if self.interrupted:
                logger.info("Chunked generation interrupted before chunk %d/%d", index, total)
                break

            notify(f"Generating chunk {index}/{total} ({chunk.description})")
            try:
                cell = await self._generate_chunk(chunk)
                notify(f"Chunk {index} completed with {cell.voxel_count} blocks")
            except Exception as e:
                logger.warning("Failed to generate chunk %d: %s", index, e)
                notify(f"Chunk {index} failed, creating fallback...")
                cell = fallback_chunk(self.chunk_size)

            dx = chunk.chunk_x * self.chunk_size
            dz = chunk.chunk_z * self.chunk_size
            for voxel in cell.placements or []:
                merged.append(voxel.model_copy(update={"x": voxel.x + dx, "z": voxel.z + dz}))

            if index < total and await interruptible_sleep(self.request_delay, self._stop):
                logger.info("Chunked generation interrupted after chunk %d/%d", index, total)
                break

        notify(f"Large structure generation completed! Total blocks: {len(merged)}")
        logger.info("Generated large structure with %d blocks across %d chunks", len(merged), total)

        side = per_side * self.chunk_size
        return StructureModel(
            name=f"Large {description}",
            description=f"AI-generated large structure: {description}",
            size=Size(width=side, height=self.chunk_size, depth=side),
            placements=merged,
        )
