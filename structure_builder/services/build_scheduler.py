"""Build scheduler - places a structure's voxels over successive turns, one run per actor."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from structure_builder.models import Location, StructureModel, Voxel
from structure_builder.services.materials import describe_substitution, is_safe_material, resolve_material
from structure_builder import config

logger = logging.getLogger(__name__)

PlaceVoxel = Callable[[Location, str, str], None]
ProgressCallback = Callable[[str], None]


class BuildState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATES = (BuildState.VALIDATING, BuildState.RUNNING)


class BuildInProgressError(RuntimeError):
    """Raised by ``start`` when the actor already has a run in progress."""


class StructureValidationError(ValueError):
    pass


def _noop(_message: str) -> None:
    pass


@dataclass
class BuildJob:
    actor_id: str
    structure: Optional[StructureModel]
    origin: Location
    on_progress: ProgressCallback = _noop
    state: BuildState = BuildState.VALIDATING
    cursor: int = 0
    progress: int = 0
    turns: int = 0
    substitutions: int = 0
    message: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    start_time: float = field(default_factory=time.time)
    end_time: float = 0.0
    name: str = ""
    total: int = 0

    def __post_init__(self):
        if self.structure is not None:
            self.name = self.structure.name
            self.total = self.structure.voxel_count

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES


def validate_structure(structure: Optional[StructureModel], max_size: int = config.MAX_STRUCTURE_SIZE) -> int:
    """Check a structure against the placement bounds. Returns the voxel count.

    Raises StructureValidationError with a human-readable reason.
    """
    if structure is None or structure.placements is None:
        raise StructureValidationError("Structure has no voxel list")
    voxels = structure.placements
    if not voxels:
        raise StructureValidationError("Structure has no voxels")
    if len(voxels) > max_size ** 3:
        raise StructureValidationError(
            f"Structure too large: {len(voxels)} voxels (maximum {max_size ** 3})"
        )
    for index, voxel in enumerate(voxels):
        if voxel is None:
            raise StructureValidationError(f"Voxel {index} is null")
        if max(abs(voxel.x), abs(voxel.y), abs(voxel.z)) > max_size:
            raise StructureValidationError(
                f"Voxel {index} at ({voxel.x}, {voxel.y}, {voxel.z}) is outside the "
                f"maximum structure size of {max_size}"
            )
    return len(voxels)


class BuildScheduler:
    """Per-actor placement runs over a shared voxel sink.

    Each turn places at most ``blocks_per_turn`` voxels. ``start`` spawns
    ``run`` as a task when called inside a running event loop; otherwise
    the caller drives the run with ``step``. Every accepted ``start`` ends
    in exactly one of COMPLETED, FAILED or CANCELLED.
    """

    def __init__(
        self,
        place_voxel: PlaceVoxel,
        blocks_per_turn: int = config.BLOCKS_PER_TURN,
        turn_delay: float = config.BUILD_DELAY_SECONDS,
        max_structure_size: int = config.MAX_STRUCTURE_SIZE,
    ):
        if blocks_per_turn < 1:
            raise ValueError("blocks_per_turn must be at least 1")
        self.place_voxel = place_voxel
        self.blocks_per_turn = blocks_per_turn
        self.turn_delay = turn_delay
        self.max_structure_size = max_structure_size
        self._lock = threading.Lock()
        self._jobs: dict[str, BuildJob] = {}
        self._outcomes: dict[str, BuildJob] = {}

    # ── Queries ──────────────────────────────────────────────

    def has_active(self, actor_id: str) -> bool:
        with self._lock:
            return actor_id in self._jobs

    def progress(self, actor_id: str) -> int:
        with self._lock:
            job = self._jobs.get(actor_id)
            return job.progress if job else 0

    def active_count(self) -> int:
        with self._lock:
            return len(self._jobs)

    def last_state(self, actor_id: str) -> BuildState:
        with self._lock:
            job = self._jobs.get(actor_id) or self._outcomes.get(actor_id)
            return job.state if job else BuildState.IDLE

    def get_job(self, actor_id: str) -> Optional[BuildJob]:
        """The active job, or the most recent finished one."""
        with self._lock:
            return self._jobs.get(actor_id) or self._outcomes.get(actor_id)

    # ── Lifecycle ────────────────────────────────────────────

    def start(
        self,
        actor_id: str,
        structure: StructureModel,
        origin: Location | tuple[int, int, int] = Location(0, 0, 0),
        on_progress: Optional[ProgressCallback] = None,
    ) -> BuildJob:
        job = BuildJob(
            actor_id=actor_id,
            structure=structure,
            origin=Location(*origin),
            on_progress=on_progress or _noop,
        )
        with self._lock:
            if actor_id in self._jobs:
                raise BuildInProgressError(f"Build already in progress for {actor_id}")
            self._jobs[actor_id] = job

        try:
            validate_structure(structure, self.max_structure_size)
        except StructureValidationError as e:
            logger.warning("Structure validation failed for %s: %s", actor_id, e)
            if self._finish(job, BuildState.FAILED, f"Build failed: {e}"):
                job.on_progress(job.message)
            return job

        with self._lock:
            if job.state is not BuildState.VALIDATING:
                return job
            job.state = BuildState.RUNNING

        if config.LOG_BUILDING:
            logger.info("Starting build for %s: %s (%d voxels)", actor_id, structure.name, job.total)
        job.on_progress(f"Starting construction of {structure.name}... (0/{job.total} blocks)")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            job.task = loop.create_task(self.run(actor_id))
        return job

    def _place(self, job: BuildJob, voxel: Voxel) -> None:
        material = resolve_material(voxel.material)
        if not is_safe_material(voxel.material):
            job.substitutions += 1
            logger.warning("Voxel %d for %s: %s", job.cursor, job.actor_id, describe_substitution(voxel.material))
        self.place_voxel(job.origin.offset(voxel.x, voxel.y, voxel.z), material, voxel.data)

    def step(self, actor_id: str) -> BuildState:
        """Run one turn for ``actor_id`` and return its state afterwards."""
        with self._lock:
            job = self._jobs.get(actor_id)
            if job is None:
                outcome = self._outcomes.get(actor_id)
                return outcome.state if outcome else BuildState.IDLE
        if job.state is not BuildState.RUNNING:
            return job.state

        structure = job.structure
        if structure is None:
            return job.state
        total = job.total
        interval = max(1, total // 10)
        placed = 0
        try:
            while placed < self.blocks_per_turn and job.cursor < total:
                if job.state is not BuildState.RUNNING:
                    return job.state
                self._place(job, structure.placements[job.cursor])
                with self._lock:
                    job.cursor += 1
                    job.progress = round(job.cursor / total * 100)
                placed += 1
                if job.cursor % interval == 0:
                    job.on_progress(
                        f"Construction progress: {job.progress}% ({job.cursor}/{total} blocks)"
                    )
        except Exception as e:
            logger.error("Building failed for %s: %s", actor_id, e)
            if self._finish(job, BuildState.FAILED, f"Build failed: {e}"):
                job.on_progress(job.message)
            return job.state

        job.turns += 1
        if job.cursor >= total:
            message = f"Construction completed! Built {total} blocks."
            if self._finish(job, BuildState.COMPLETED, message):
                if config.LOG_BUILDING:
                    logger.info(
                        "Build completed for %s: %s in %d turns", actor_id, job.name, job.turns
                    )
                job.on_progress(message)
        return job.state

    async def run(self, actor_id: str) -> BuildState:
        """Drive turns for ``actor_id`` until it reaches a terminal state."""
        while True:
            state = self.step(actor_id)
            if state is not BuildState.RUNNING:
                return state
            await asyncio.sleep(self.turn_delay)

    def _finish(self, job: BuildJob, state: BuildState, message: str) -> bool:
        """Move an active job to a terminal state. False when it already left it."""
        with self._lock:
            if not job.active:
                return False
            job.state = state
            job.message = message
            job.end_time = time.time()
            # Finished jobs keep their summary, not the voxel list
            job.structure = None
            if self._jobs.get(job.actor_id) is job:
                del self._jobs[job.actor_id]
            self._outcomes[job.actor_id] = job
            return True

    def cancel(self, actor_id: str) -> bool:
        """Stop the actor's run. Returns False when nothing was running."""
        with self._lock:
            job = self._jobs.get(actor_id)
        if job is None or not self._finish(job, BuildState.CANCELLED, "Build cancelled"):
            return False

        task = job.task
        if task is not None and not task.done() and not task.get_loop().is_closed():
            task.get_loop().call_soon_threadsafe(task.cancel)
        logger.info("Build cancelled for %s at %d/%d voxels", actor_id, job.cursor, job.total)
        job.on_progress(job.message)
        return True

    def cancel_all(self) -> int:
        with self._lock:
            actors = list(self._jobs)
        return sum(1 for actor_id in actors if self.cancel(actor_id))
