"""Material vocabulary - resolves free-form material names to safe buildable materials."""

import difflib
import logging

logger = logging.getLogger(__name__)

DEFAULT_MATERIAL = "STONE"

# Solid blocks plus the non-solid decorations the prompts advertise.
BUILDING_MATERIALS = frozenset({
    # Stone family
    "STONE", "COBBLESTONE", "MOSSY_COBBLESTONE", "SMOOTH_STONE",
    "STONE_BRICKS", "MOSSY_STONE_BRICKS", "CRACKED_STONE_BRICKS", "CHISELED_STONE_BRICKS",
    "GRANITE", "POLISHED_GRANITE", "DIORITE", "POLISHED_DIORITE",
    "ANDESITE", "POLISHED_ANDESITE", "DEEPSLATE", "DEEPSLATE_BRICKS",
    "BLACKSTONE", "POLISHED_BLACKSTONE", "NETHER_BRICKS", "END_STONE_BRICKS",
    "BRICKS", "SANDSTONE", "RED_SANDSTONE", "SMOOTH_SANDSTONE",
    "QUARTZ_BLOCK", "SMOOTH_QUARTZ", "PRISMARINE", "PRISMARINE_BRICKS", "OBSIDIAN",
    # Wood
    "OAK_PLANKS", "SPRUCE_PLANKS", "BIRCH_PLANKS", "JUNGLE_PLANKS", "ACACIA_PLANKS", "DARK_OAK_PLANKS",
    "OAK_LOG", "SPRUCE_LOG", "BIRCH_LOG", "JUNGLE_LOG", "ACACIA_LOG", "DARK_OAK_LOG",
    # Glass
    "GLASS", "WHITE_STAINED_GLASS", "LIGHT_BLUE_STAINED_GLASS", "YELLOW_STAINED_GLASS",
    "GLASS_PANE", "WHITE_STAINED_GLASS_PANE",
    # Colored blocks
    "TERRACOTTA", "WHITE_TERRACOTTA", "ORANGE_TERRACOTTA", "LIGHT_BLUE_TERRACOTTA",
    "WHITE_CONCRETE", "GRAY_CONCRETE", "LIGHT_GRAY_CONCRETE",
    "WHITE_WOOL", "LIGHT_GRAY_WOOL",
    # Metal / precious
    "IRON_BLOCK", "GOLD_BLOCK", "DIAMOND_BLOCK", "EMERALD_BLOCK", "NETHERITE_BLOCK",
    # Stairs and slabs
    "OAK_STAIRS", "SPRUCE_STAIRS", "STONE_STAIRS", "STONE_BRICK_STAIRS", "COBBLESTONE_STAIRS",
    "GRANITE_STAIRS", "BRICK_STAIRS", "SANDSTONE_STAIRS", "QUARTZ_STAIRS",
    "OAK_SLAB", "SPRUCE_SLAB", "STONE_SLAB", "STONE_BRICK_SLAB", "SMOOTH_STONE_SLAB",
    "GRANITE_SLAB", "BRICK_SLAB", "SANDSTONE_SLAB", "QUARTZ_SLAB",
    # Details
    "OAK_FENCE", "SPRUCE_FENCE", "IRON_BARS", "CHAIN", "LANTERN", "TORCH",
    "OAK_DOOR", "IRON_DOOR", "OAK_TRAPDOOR", "LADDER",
    "BOOKSHELF", "CHEST", "CRAFTING_TABLE", "FURNACE", "FLOWER_POT",
    # Terrain
    "DIRT", "GRASS_BLOCK", "SAND", "GRAVEL", "SNOW_BLOCK",
    # Clears a cell (door and window openings)
    "AIR",
})

UNSAFE_MATERIALS = frozenset({"TNT", "LAVA", "WATER", "FIRE", "SOUL_FIRE", "BEDROCK", "BARRIER"})
UNSAFE_FRAGMENTS = ("SPAWN", "COMMAND", "STRUCTURE_BLOCK", "JIGSAW")


def normalize_material_name(name: str | None) -> str:
    """Canonical spelling: upper case, no namespace, underscores for separators."""
    if not name:
        return ""
    text = name.strip()
    if ":" in text:
        text = text.split(":", 1)[1]
    # Drop block-state suffixes such as "oak_stairs[facing=north]"
    text = text.split("[", 1)[0]
    return "_".join(text.replace("-", " ").split()).upper()


def is_safe_material(name: str | None) -> bool:
    material = normalize_material_name(name)
    if not material or material in UNSAFE_MATERIALS:
        return False
    if any(fragment in material for fragment in UNSAFE_FRAGMENTS):
        return False
    return material in BUILDING_MATERIALS


def resolve_material(name: str | None) -> str:
    """Map a free-form name to a known safe material, falling back to ``DEFAULT_MATERIAL``.

    Resolving an already-resolved name returns it unchanged.
    """
    material = normalize_material_name(name)
    if is_safe_material(material):
        return material
    return DEFAULT_MATERIAL


def suggest_materials(name: str | None, n: int = 3) -> list[str]:
    """Close spellings from the vocabulary, used in substitution warnings."""
    material = normalize_material_name(name)
    if not material:
        return []
    return difflib.get_close_matches(material, sorted(BUILDING_MATERIALS), n=n, cutoff=0.6)


def describe_substitution(name: str | None) -> str:
    """Human-readable reason a material was replaced with the default."""
    material = normalize_material_name(name)
    if not material:
        return f"missing material, using {DEFAULT_MATERIAL}"
    if material in UNSAFE_MATERIALS or any(f in material for f in UNSAFE_FRAGMENTS):
        return f"unsafe material '{name}', using {DEFAULT_MATERIAL}"
    close = suggest_materials(material)
    if close:
        return f"unknown material '{name}' (did you mean: {', '.join(close)}?), using {DEFAULT_MATERIAL}"
    return f"unknown material '{name}', using {DEFAULT_MATERIAL}"
