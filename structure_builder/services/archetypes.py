"""Procedural fallback structures used when a generated response cannot be parsed.

Every builder is a deterministic function of (width, height, depth) and always
produces a closed shell with well over the minimum voxel count.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable

from structure_builder.models import Size, StructureModel, Voxel

logger = logging.getLogger(__name__)

Builder = Callable[[int, int, int], list[Voxel]]


def _v(x: int, y: int, z: int, material: str, data: str = "") -> Voxel:
    return Voxel(x=x, y=y, z=z, material=material, data=data)


def _on_rim(x: int, z: int, x0: int, z0: int, x1: int, z1: int) -> bool:
    return x in (x0, x1) or z in (z0, z1)


def build_castle(width: int, height: int, depth: int) -> list[Voxel]:
    voxels = []
    gate_lo, gate_hi = width // 2 - 1, width // 2 + 1

    # Curtain walls with a gate in the front wall
    for y in range(height):
        for x in range(width):
            for z in range(depth):
                if not _on_rim(x, z, 0, 0, width - 1, depth - 1):
                    continue
                if z == 0 and gate_lo <= x <= gate_hi and 1 <= y <= 3:
                    continue
                voxels.append(_v(x, y, z, "STONE_BRICKS"))

    # Battlements
    for x in range(width):
        for z in range(depth):
            if _on_rim(x, z, 0, 0, width - 1, depth - 1) and (x + z) % 2 == 0:
                voxels.append(_v(x, height, z, "COBBLESTONE"))

    # Corner towers rise five above the walls
    tower_height = height + 5
    corners = [(0, 0), (width - 4, 0), (0, depth - 4), (width - 4, depth - 4)]
    for tx, tz in corners:
        for y in range(tower_height):
            for x in range(tx, tx + 4):
                for z in range(tz, tz + 4):
                    if _on_rim(x, z, tx, tz, tx + 3, tz + 3):
                        voxels.append(_v(x, y, z, "STONE_BRICKS"))
        for x in range(tx, tx + 4):
            for z in range(tz, tz + 4):
                voxels.append(_v(x, tower_height, z, "STONE_BRICK_SLAB"))

    # Courtyard floor and pillars
    for x in range(2, width - 2):
        for z in range(2, depth - 2):
            voxels.append(_v(x, 0, z, "STONE"))
            if (x + z) % 8 == 0 and x < width - 4 and z < depth - 4:
                for y in range(1, height - 1):
                    voxels.append(_v(x, y, z, "QUARTZ_BLOCK"))
    return voxels


def build_house(width: int, height: int, depth: int) -> list[Voxel]:
    voxels = []
    door_x = width // 2
    windows = {2, width - 3}

    for x in range(width):
        for z in range(depth):
            voxels.append(_v(x, 0, z, "STONE"))

    for y in range(1, height - 1):
        for x in range(width):
            for z in range(depth):
                if not _on_rim(x, z, 0, 0, width - 1, depth - 1):
                    continue
                if z == 0 and x == door_x and y <= 2:
                    voxels.append(_v(x, y, z, "AIR"))
                elif z in (0, depth - 1) and x in windows and y in (2, 3):
                    voxels.append(_v(x, y, z, "GLASS"))
                elif x in (0, width - 1) and z in (0, depth - 1):
                    voxels.append(_v(x, y, z, "OAK_LOG"))
                else:
                    voxels.append(_v(x, y, z, "OAK_PLANKS"))

    for x in range(width):
        for z in range(depth):
            voxels.append(_v(x, height - 1, z, "OAK_SLAB", "type=bottom"))
    return voxels


def build_tower(width: int, height: int, depth: int) -> list[Voxel]:
    voxels = []
    taper_from = int(height * 0.8)
    door_x = width // 2

    for x in range(width):
        for z in range(depth):
            voxels.append(_v(x, 0, z, "STONE"))

    for y in range(1, height):
        inset = 1 if y >= taper_from else 0
        x0, z0 = inset, inset
        x1, z1 = width - 1 - inset, depth - 1 - inset
        for x in range(x0, x1 + 1):
            for z in range(z0, z1 + 1):
                if not _on_rim(x, z, x0, z0, x1, z1):
                    continue
                if z == 0 and x == door_x and y <= 2:
                    voxels.append(_v(x, y, z, "AIR"))
                else:
                    voxels.append(_v(x, y, z, "STONE_BRICKS" if inset else "STONE"))

    for x in range(1, width - 1):
        for z in range(1, depth - 1):
            voxels.append(_v(x, height, z, "STONE_BRICK_SLAB"))
    return voxels


def build_bridge(width: int, height: int, depth: int) -> list[Voxel]:
    voxels = []
    deck = height // 2

    for x in range(width):
        for z in range(depth):
            voxels.append(_v(x, deck, z, "STONE"))
            if z in (0, depth - 1):
                voxels.append(_v(x, deck + 1, z, "STONE_SLAB"))

    for x in range(3, width, 6):
        for z in range(1, depth - 1):
            for y in range(deck):
                voxels.append(_v(x, y, z, "STONE_BRICKS"))
    return voxels


def build_pyramid(width: int, height: int, depth: int) -> list[Voxel]:
    voxels = []
    for y in range(height):
        offset = y // 2
        x0, z0 = offset, offset
        x1, z1 = width - offset - 1, depth - offset - 1
        if x0 > x1 or z0 > z1:
            break
        if y < height * 0.3:
            material = "STONE"
        elif y < height * 0.6:
            material = "STONE_BRICKS"
        else:
            material = "QUARTZ_BLOCK"
        for x in range(x0, x1 + 1):
            for z in range(z0, z1 + 1):
                if _on_rim(x, z, x0, z0, x1, z1) or y == 0:
                    voxels.append(_v(x, y, z, material))
    return voxels


@dataclass(frozen=True)
class Archetype:
    name: str
    keywords: tuple[str, ...]
    builder: Builder
    size: Size


ARCHETYPES = (
    Archetype("Castle", ("castle", "fortress", "fort"), build_castle, Size(width=25, height=15, depth=25)),
    Archetype("House", ("house", "home", "cottage", "cabin"), build_house, Size(width=12, height=8, depth=12)),
    Archetype("Tower", ("tower", "spire", "lighthouse"), build_tower, Size(width=7, height=20, depth=7)),
    Archetype("Bridge", ("bridge",), build_bridge, Size(width=20, height=8, depth=5)),
)

DEFAULT_ARCHETYPE = Archetype("Structure", (), build_pyramid, Size(width=15, height=10, depth=15))


def select_archetype(description: str | None) -> Archetype:
    text = (description or "").lower()
    for archetype in ARCHETYPES:
        if any(re.search(rf"\b{re.escape(keyword)}", text) for keyword in archetype.keywords):
            return archetype
    return DEFAULT_ARCHETYPE


def generate_fallback_structure(description: str | None) -> StructureModel:
    """Synthesize a structure for ``description`` without a model response."""
    archetype = select_archetype(description)
    size = archetype.size
    voxels = archetype.builder(size.width, size.height, size.depth)
    logger.info(
        "Generated %s fallback for %r with %d voxels",
        archetype.name.lower(), description, len(voxels),
    )
    model = StructureModel(
        name=f"Fallback {archetype.name}",
        description=f"Algorithmically generated {archetype.name.lower()} structure",
        placements=voxels,
    )
    return model.with_derived_size()


def fallback_chunk(chunk_size: int) -> StructureModel:
    """Pillared grid filling one decomposition cell in local coordinates."""
    voxels = []
    for x in range(0, chunk_size, 4):
        for z in range(0, chunk_size, 4):
            for y in range(4):
                voxels.append(_v(x, y, z, "STONE" if y == 0 else "COBBLESTONE"))
    return StructureModel(
        name="Fallback chunk",
        description="Pillared grid substituted for a failed chunk",
        size=Size(width=chunk_size, height=4, depth=chunk_size),
        placements=voxels,
    )
