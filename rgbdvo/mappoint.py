"""Landmarks observed by the odometry."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, ClassVar

import numpy as np


@dataclass(eq=False)
class MapPoint:
    """A 3D landmark with its viewing direction and descriptor."""

    id: int = -1
    pos: np.ndarray = field(default_factory=lambda: np.zeros(3))
    norm: np.ndarray = field(default_factory=lambda: np.zeros(3))
    good: bool = True
    descriptor: np.ndarray | None = None
    observed_frames: list[Any] = field(default_factory=list)
    observed_times: int = 0
    matched_times: int = 0

    _ids: ClassVar[itertools.count] = itertools.count()

    def __post_init__(self) -> None:
        self.pos = np.asarray(self.pos, dtype=float).reshape(3)
        self.norm = np.asarray(self.norm, dtype=float).reshape(3)

    @classmethod
    def create_map_point(cls) -> "MapPoint":
        """Create a landmark at the origin with the next free id."""
        return cls(id=next(cls._ids))