"""
Anchor points: waypoints of the teach carrying a reference cloud.

Each anchor point `<name>` listed in the descriptor file is stored next to it
as `<name>.pose` (one `x y z qx qy qz qw` line) and `<name>.npy` (an (N, 3)
float array saved with numpy).
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from .geometry import Pose, custom_distance
from .trajectory import Cursor

logger = logging.getLogger(__name__)

POSE_SUFFIX = ".pose"
CLOUD_SUFFIX = ".npy"


@dataclass(frozen=True)
class AnchorPointSwitch:
    stamp: float
    new_anchor_point: str


class AnchorPoint:
    """A named reference pose with its reference cloud, read lazily."""

    def __init__(self, name: str, pose: Pose, cloud_path: Optional[Path] = None,
                 cloud: Optional[np.ndarray] = None):
        self.name = name
        self.pose = pose
        self.cloud_path = cloud_path
        self._cloud = None if cloud is None else np.asarray(cloud, dtype=np.float64).reshape(-1, 3)
        self._lock = threading.Lock()

    def __repr__(self):
        return f"AnchorPoint({self.name!r}, {self.pose})"

    @classmethod
    def load(cls, name: str, directory: Union[str, Path] = ".") -> "AnchorPoint":
        directory = Path(directory)
        pose_path = directory / f"{name}{POSE_SUFFIX}"
        values = pose_path.read_text().replace(",", " ").split()
        return cls(name, Pose.from_values([float(v) for v in values]),
                   cloud_path=directory / f"{name}{CLOUD_SUFFIX}")

    @property
    def cloud(self) -> np.ndarray:
        with self._lock:
            if self._cloud is None:
                if self.cloud_path is None:
                    raise LookupError(f"Anchor point {self.name} has no reference cloud")
                self._cloud = np.load(self.cloud_path).astype(np.float64).reshape(-1, 3)
                logger.debug(f"Loaded {len(self._cloud)} points for anchor point {self.name}")
            return self._cloud


def load_anchor_points(path: Union[str, Path]) -> List[AnchorPoint]:
    """Read the anchor point descriptor file, one name per line."""
    path = Path(path)
    try:
        names = [line.strip() for line in path.read_text().splitlines()]
    except OSError:
        logger.error(f"Could not open anchor points file: {path}")
        return []

    anchor_points = []
    for name in filter(None, names):
        try:
            anchor_points.append(AnchorPoint.load(name, path.parent))
        except OSError:
            logger.error(f"Could not load anchor point {name}, skipping it")
    return anchor_points


class AnchorPointTracker:
    """
    Walks forward through the anchor points as the robot progresses.

    The tracker moves to the next anchor point as soon as it is at least as
    close as the current one. It never goes back.
    """

    def __init__(self, anchor_points: List[AnchorPoint],
                 distance: Callable[[Pose, Pose], float] = custom_distance,
                 now: Callable[[], float] = time.time):
        self.cursor = Cursor(list(anchor_points))
        self.distance = distance
        self._now = now
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.cursor)

    @property
    def index(self) -> int:
        return self.cursor.index

    def current(self) -> AnchorPoint:
        with self._lock:
            return self.cursor.current()

    def advance_if_closer(self, pose: Pose) -> Optional[AnchorPointSwitch]:
        with self._lock:
            if self.cursor.empty:
                return None

            distance_to_current = self.distance(pose, self.cursor.current().pose)
            distance_to_next = (
                self.distance(pose, self.cursor.peek_next().pose)
                if self.cursor.has_next()
                else math.inf
            )
            logger.debug(f"Distances. Current: {distance_to_current:f}, Next: {distance_to_next:f}")

            if self.cursor.has_next() and distance_to_current >= distance_to_next:
                self.cursor.advance()
                return AnchorPointSwitch(stamp=self._now(),
                                         new_anchor_point=self.cursor.current().name)
            return None
