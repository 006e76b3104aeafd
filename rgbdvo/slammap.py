"""The map: key-frames and landmarks indexed by id."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .frame import Frame
from .mappoint import MapPoint

logger = logging.getLogger(__name__)


@dataclass
class Map:
    """All key-frames and landmarks, keyed by their ids."""

    map_points: dict[int, MapPoint] = field(default_factory=dict)
    keyframes: dict[int, Frame] = field(default_factory=dict)

    def insert_keyframe(self, frame: Frame) -> None:
        """Add a key-frame, replacing any with the same id."""
        logger.info("Key frame size = %d", len(self.keyframes))
        self.keyframes[frame.id] = frame

    def insert_map_point(self, map_point: MapPoint) -> None:
        """Add a landmark, replacing any with the same id."""
        self.map_points[map_point.id] = map_point