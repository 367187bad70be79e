"""In-memory voxel world used as the placement sink when no host game is attached."""

import logging
import threading
from collections import Counter
from typing import Optional

from structure_builder.models import Location

logger = logging.getLogger(__name__)

EMPTY_MATERIAL = "AIR"


class VoxelWorld:
    """Sparse grid of placed materials. Placing AIR clears a cell."""

    def __init__(self):
        self._cells: dict[Location, tuple[str, str]] = {}
        self._lock = threading.Lock()
        self.placements = 0

    def place(self, location: Location, material: str, data: str = "") -> None:
        key = Location(*location)
        with self._lock:
            self.placements += 1
            if material == EMPTY_MATERIAL:
                self._cells.pop(key, None)
            else:
                self._cells[key] = (material, data or "")

    def get(self, location: Location) -> Optional[tuple[str, str]]:
        with self._lock:
            return self._cells.get(Location(*location))

    def material_at(self, location: Location) -> str:
        cell = self.get(location)
        return cell[0] if cell else EMPTY_MATERIAL

    def material_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(material for material, _ in self._cells.values()))

    def clear(self) -> int:
        with self._lock:
            count = len(self._cells)
            self._cells.clear()
            self.placements = 0
        logger.info("World cleared (%d cells)", count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._cells)
