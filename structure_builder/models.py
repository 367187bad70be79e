"""Pydantic models for the AI Structure Builder: structure data and API schemas."""

from collections import Counter
from typing import Literal, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from structure_builder import config


# ── Structure data ──────────────────────────────────────────────


class Voxel(BaseModel):
    """A single placement: structure-local coordinate, material and optional block data."""

    x: int
    y: int
    z: int
    material: str
    data: str = ""

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value):
        if value is None:
            return ""
        if not isinstance(value, str):
            return str(value)
        return value


class Size(BaseModel):
    width: int = 0
    height: int = 0
    depth: int = 0

    @property
    def is_implausible(self) -> bool:
        return self.width < 1 or self.height < 1 or self.depth < 1


class StructureModel(BaseModel):
    """Generated structure. ``placements`` is serialized as ``blocks`` on the wire.

    A ``None`` placements list marks a failed model; insertion order is
    placement order.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = "AI Generated Structure"
    description: str = ""
    size: Optional[Size] = None
    placements: Optional[list[Voxel]] = Field(default=None, alias="blocks")

    @field_validator("name", "description", mode="before")
    @classmethod
    def _null_text(cls, value, info):
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @property
    def voxel_count(self) -> int:
        return len(self.placements) if self.placements else 0

    def bounding_size(self) -> Size:
        """Extent of the placements (max - min + 1 per axis), 1x1x1 when empty."""
        if not self.placements:
            return Size(width=1, height=1, depth=1)
        xs = [v.x for v in self.placements]
        ys = [v.y for v in self.placements]
        zs = [v.z for v in self.placements]
        return Size(
            width=max(xs) - min(xs) + 1,
            height=max(ys) - min(ys) + 1,
            depth=max(zs) - min(zs) + 1,
        )

    def with_derived_size(self) -> "StructureModel":
        """Return a copy with ``size`` recomputed when it is missing or implausible."""
        if self.size is None or self.size.is_implausible:
            return self.model_copy(update={"size": self.bounding_size()})
        return self

    def material_counts(self) -> dict[str, int]:
        return dict(Counter(v.material for v in self.placements or []))

    def height_range(self) -> tuple[int, int]:
        if not self.placements:
            return 0, 0
        ys = [v.y for v in self.placements]
        return min(ys), max(ys)

    def to_wire_json(self, indent: Optional[int] = None) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


class Location(NamedTuple):
    x: int
    y: int
    z: int

    def offset(self, dx: int, dy: int, dz: int) -> "Location":
        return Location(self.x + dx, self.y + dy, self.z + dz)


# ── API schemas ─────────────────────────────────────────────────


class GenerateRequest(BaseModel):
    description: str = Field(..., min_length=1, description="Text description of the structure")
    size: int = Field(config.DEFAULT_TARGET_SIZE, ge=1, le=100_000, description="Target voxel count")
    provider: Optional[Literal["gemini", "claude"]] = None
    model: Optional[str] = None


class StructureResponse(BaseModel):
    structure: Optional[StructureModel] = None
    voxel_count: Optional[int] = None
    timings: Optional[dict] = None
    error: Optional[str] = None


class MaterialCount(BaseModel):
    material: str
    count: int


class PreviewResponse(BaseModel):
    name: str
    description: str
    dimensions: Size
    voxel_count: int
    material_types: int
    materials: list[MaterialCount]
    height_range: tuple[int, int]
    requires_confirmation: bool


class ValidateRequest(BaseModel):
    structure: StructureModel


class ValidateResponse(BaseModel):
    valid: bool
    voxel_count: Optional[int] = None
    error: Optional[str] = None


class BuildRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)
    description: Optional[str] = None
    size: int = Field(config.DEFAULT_TARGET_SIZE, ge=1, le=100_000)
    provider: Optional[Literal["gemini", "claude"]] = None
    model: Optional[str] = None
    origin: tuple[int, int, int] = (0, 0, 0)
    structure: Optional[StructureModel] = None


class BuildStatusResponse(BaseModel):
    actor_id: str
    active: bool
    progress: int
    state: str
    message: Optional[str] = None


class StatusResponse(BaseModel):
    active_builds: int
    provider: str
    model: str
    blocks_per_turn: int
    build_delay_seconds: float
    max_structure_size: int
    chunked_generation_enabled: bool
    chunked_threshold: int


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = ""
    providers: dict = {}
