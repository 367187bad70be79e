"""Prompts for voxel structure generation: system prompt, single-shot, plan and chunk prompts."""

# Materials advertised to the model. Everything here resolves to itself in
# services.materials; anything else the model invents is replaced at build time.
PROMPT_MATERIALS = (
    "STONE", "STONE_BRICKS", "MOSSY_STONE_BRICKS", "CRACKED_STONE_BRICKS", "COBBLESTONE",
    "SMOOTH_STONE", "GRANITE", "POLISHED_GRANITE", "DIORITE", "POLISHED_DIORITE",
    "ANDESITE", "POLISHED_ANDESITE",
    "OAK_PLANKS", "SPRUCE_PLANKS", "BIRCH_PLANKS", "DARK_OAK_PLANKS",
    "OAK_LOG", "SPRUCE_LOG", "BIRCH_LOG", "DARK_OAK_LOG",
    "GLASS", "WHITE_STAINED_GLASS", "LIGHT_BLUE_STAINED_GLASS", "GLASS_PANE",
    "BRICKS", "SANDSTONE", "RED_SANDSTONE", "QUARTZ_BLOCK", "SMOOTH_QUARTZ",
    "PRISMARINE", "BLACKSTONE", "NETHER_BRICKS",
    "WHITE_TERRACOTTA", "WHITE_CONCRETE", "GRAY_CONCRETE", "WHITE_WOOL",
    "OAK_STAIRS", "STONE_BRICK_STAIRS", "COBBLESTONE_STAIRS", "BRICK_STAIRS",
    "OAK_SLAB", "STONE_SLAB", "STONE_BRICK_SLAB",
    "OAK_FENCE", "IRON_BARS", "LANTERN", "TORCH", "OAK_DOOR", "LADDER",
    "GRASS_BLOCK", "DIRT", "GRAVEL", "BOOKSHELF", "FLOWER_POT", "AIR",
)

SYSTEM_PROMPT = """You are a master voxel architect.
Given a text description, you output a JSON structure made of unit blocks placed on an integer grid.

## Output Format

Output ONLY a valid JSON object. No explanation, no markdown, no code fences, no // comments.
ALL coordinates must be literal integers, NEVER expressions.

{"name": "...", "description": "...", "size": {"width": W, "height": H, "depth": D}, "blocks": [{"x": 0, "y": 0, "z": 0, "material": "STONE", "data": ""}]}

## Coordinate System

- Y is up. Coordinates start at (0,0,0) and grow along +x, +y, +z
- Ground level is y=0; build upward from a foundation
- "size" is the bounding box of the blocks
- "data" carries optional block state such as "facing=north" or "type=bottom"; use "" when unused
- "AIR" clears a cell, use it for door and window openings

## Guidelines

- Houses: foundation, walls, roof, windows, door frame
- Castles: towers, walls, battlements, courtyard
- Bridges: support pillars, railings, decorative arches
- Use realistic proportions and a variety of materials
- Keep the block list flat; list lower layers first
"""


def _size_guidance(target_size: int) -> tuple[str, str]:
    if target_size <= 100:
        return "SMALL to MEDIUM", "Maximum size: 10x10x10 blocks"
    if target_size <= 500:
        return "MEDIUM to LARGE", "Maximum size: 15x15x15 blocks"
    return "LARGE and DETAILED", "Maximum size: 20x20x20 blocks"


def _json_shape(width: int, height: int, depth: int) -> str:
    return (
        "{\n"
        '  "name": "Structure Name",\n'
        '  "description": "Detailed description",\n'
        f'  "size": {{"width": {width}, "height": {height}, "depth": {depth}}},\n'
        '  "blocks": [\n'
        '    {"x": 0, "y": 0, "z": 0, "material": "STONE", "data": ""}\n'
        "  ]\n"
        "}"
    )


def build_structure_prompt(description: str, target_size: int) -> str:
    """Single-shot prompt asking for a whole structure of about ``target_size`` blocks."""
    # Responses are capped by MAX_TOKENS, so the requested count is bounded too
    target = min(target_size, 2000)
    scale, dimensions = _size_guidance(target)
    return (
        f'Create a {scale}, DETAILED structure for: "{description}"\n\n'
        "REQUIREMENTS:\n"
        f"- Target {target} blocks total\n"
        f"- {dimensions}\n"
        f"- Use these materials: {', '.join(PROMPT_MATERIALS)}\n"
        "- Include proper foundations, walls, roofs and interior features\n"
        "- Add details like windows, doors, stairs and decorative elements\n\n"
        "RESPOND WITH VALID JSON ONLY:\n"
        f"{_json_shape(15, 12, 15)}"
    )


def build_plan_prompt(description: str, chunks_per_side: int) -> str:
    """Ask for a layout plan describing each cell of a ``chunks_per_side`` square grid."""
    last = chunks_per_side - 1
    return (
        f"Create a detailed plan for a large structure: {description}\n\n"
        f"The structure will be built in a {chunks_per_side}x{chunks_per_side} grid of chunks.\n"
        f"For each chunk position (0,0) to ({last},{last}), describe:\n"
        "1. What should be built in that chunk\n"
        "2. How it connects to neighboring chunks\n"
        "3. The main purpose or theme of that section\n\n"
        f"Make this a cohesive, detailed {description} that uses the full area effectively.\n"
        "Format as a grid layout plan, one line per chunk."
    )


# Plans can run long; only the head is repeated in every chunk prompt.
PLAN_CONTEXT_LIMIT = 1500


def build_chunk_prompt(
    description: str, chunk_x: int, chunk_z: int, chunk_size: int, plan_context: str = ""
) -> str:
    """Prompt for one decomposition cell, in cell-local coordinates."""
    last = chunk_size - 1
    context = plan_context[:PLAN_CONTEXT_LIMIT] if plan_context else "(no plan available)"
    return (
        f"Generate a structure chunk for: {description}\n\n"
        "CONSTRAINTS:\n"
        f"- Chunk size: {chunk_size}x{chunk_size}x{chunk_size} blocks\n"
        f"- Coordinates: X[0-{last}], Y[0-{last}], Z[0-{last}]\n"
        f"- This is chunk ({chunk_x},{chunk_z}) in a larger structure\n"
        "- Use a variety of materials and heights\n"
        "- Consider connections to adjacent chunks\n\n"
        f"CONTEXT:\n{context}\n\n"
        "Generate JSON with this exact structure:\n"
        f"{_json_shape(chunk_size, chunk_size, chunk_size)}\n\n"
        f"Use these materials: {', '.join(PROMPT_MATERIALS)}"
    )
