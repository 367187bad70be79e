"""Few-shot examples for voxel structure generation."""

import json


def _ring(y: int, size: int, material: str) -> list[dict]:
    last = size - 1
    return [
        {"x": x, "y": y, "z": z, "material": material, "data": ""}
        for x in range(size)
        for z in range(size)
        if x in (0, last) or z in (0, last)
    ]


def _floor(y: int, size: int, material: str) -> list[dict]:
    return [
        {"x": x, "y": y, "z": z, "material": material, "data": ""}
        for x in range(size)
        for z in range(size)
    ]


EXAMPLES = [
    {
        "prompt": "A tiny stone hut",
        "structure_json": json.dumps({
            "name": "Stone Hut",
            "description": "A one-room cobblestone hut with a slab roof and a doorway",
            "size": {"width": 4, "height": 4, "depth": 4},
            "blocks": (
                _floor(0, 4, "STONE")
                + _ring(1, 4, "COBBLESTONE")
                + _ring(2, 4, "COBBLESTONE")
                + [{"x": 1, "y": 1, "z": 0, "material": "AIR", "data": ""},
                   {"x": 1, "y": 2, "z": 0, "material": "AIR", "data": ""}]
                + _floor(3, 4, "STONE_SLAB")
            ),
        }),
    },
    {
        "prompt": "A wooden watchtower",
        "structure_json": json.dumps({
            "name": "Watchtower",
            "description": "Log corner posts carrying a fenced lookout platform",
            "size": {"width": 3, "height": 6, "depth": 3},
            "blocks": (
                [
                    {"x": x, "y": y, "z": z, "material": "OAK_LOG", "data": ""}
                    for y in range(4)
                    for x, z in ((0, 0), (2, 0), (0, 2), (2, 2))
                ]
                + _floor(4, 3, "OAK_PLANKS")
                + _ring(5, 3, "OAK_FENCE")
                + [{"x": 1, "y": 1, "z": 1, "material": "LADDER", "data": "facing=north"}]
            ),
        }),
    },
    {
        "prompt": "A glass greenhouse",
        "structure_json": json.dumps({
            "name": "Greenhouse",
            "description": "Glass walls on a stone brick base with flower pots inside",
            "size": {"width": 5, "height": 4, "depth": 5},
            "blocks": (
                _floor(0, 5, "STONE_BRICKS")
                + _ring(1, 5, "GLASS")
                + _ring(2, 5, "GLASS")
                + _floor(3, 5, "GLASS")
                + [{"x": 2, "y": 1, "z": 2, "material": "FLOWER_POT", "data": ""}]
            ),
        }),
    },
]


def format_few_shot() -> str:
    """Format examples as few-shot prompt text."""
    parts = []
    for ex in EXAMPLES:
        parts.append(f"User: {ex['prompt']}\nAssistant: {ex['structure_json']}")
    return "\n\n".join(parts)
