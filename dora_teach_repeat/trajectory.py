"""
Trajectory store for the repeat phase.

Holds the taught commands and poses in memory and walks forward through them
as the sim time advances.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generic, List, Sequence, TypeVar, Union

from .geometry import Pose, Twist

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TimedCommand:
    stamp: float
    twist: Twist


@dataclass(frozen=True)
class TimedPose:
    stamp: float
    pose: Pose


class Cursor(Generic[T]):
    """Forward-only read position into an owned sequence."""

    def __init__(self, items: Sequence[T]):
        self.items = items
        self.index = 0

    def __len__(self) -> int:
        return len(self.items)

    @property
    def empty(self) -> bool:
        return len(self.items) == 0

    @property
    def at_end(self) -> bool:
        return self.index >= len(self.items) - 1

    def has_next(self) -> bool:
        return not self.at_end

    def current(self) -> T:
        if self.empty:
            raise LookupError("Cursor over an empty sequence")
        return self.items[self.index]

    def peek_next(self) -> T:
        if self.at_end:
            raise LookupError("Cursor is at the last element")
        return self.items[self.index + 1]

    def advance(self):
        if self.at_end:
            raise LookupError("Cannot advance past the last element")
        self.index += 1

    def advance_while(self, predicate: Callable[[T], bool]) -> T:
        """Advance while a next element exists and `predicate(next)` holds."""
        if self.empty:
            raise LookupError("Cursor over an empty sequence")
        while not self.at_end and predicate(self.items[self.index + 1]):
            self.index += 1
        return self.items[self.index]


def _record_lines(path: Path):
    for line_number, line in enumerate(path.read_text().splitlines(), start=1):
        line = line.split("#", 1)[0].strip()
        if line:
            yield line_number, [float(v) for v in line.replace(",", " ").split()]


def parse_command_line(values: Sequence[float]) -> TimedCommand:
    if len(values) != 7:
        raise ValueError(f"expected 'stamp lx ly lz ax ay az', got {len(values)} values")
    stamp, lx, ly, lz, ax, ay, az = values
    return TimedCommand(stamp=stamp, twist=Twist(linear=(lx, ly, lz), angular=(ax, ay, az)))


def parse_pose_line(values: Sequence[float]) -> TimedPose:
    if len(values) != 8:
        raise ValueError(f"expected 'stamp x y z qx qy qz qw', got {len(values)} values")
    return TimedPose(stamp=values[0], pose=Pose.from_values(values[1:]))


def _load_records(path: Union[str, Path], parse, kind: str) -> list:
    path = Path(path)
    try:
        records = list(_record_lines(path))
    except OSError:
        logger.error(f"Could not open {kind} file: {path}")
        return []
    except ValueError as e:
        raise ValueError(f"Malformed {kind} file {path}: {e}") from e

    out = []
    for line_number, values in records:
        try:
            out.append(parse(values))
        except ValueError as e:
            raise ValueError(f"{path}:{line_number}: {e}") from e
    return out


def load_commands(path: Union[str, Path]) -> List[TimedCommand]:
    return _load_records(path, parse_command_line, "command")


def load_positions(path: Union[str, Path]) -> List[TimedPose]:
    return _load_records(path, parse_pose_line, "position")


class TrajectoryStore:
    """
    Taught commands and poses indexed by sim time.

    Queries must come with non-decreasing times: the cursors only walk
    forward and clamp on the last element. A cursor moves onto the next
    record once that record's stamp is strictly before the query time
    (plus the lookahead for commands).
    """

    def __init__(self, commands: Sequence[TimedCommand], poses: Sequence[TimedPose],
                 lookahead: float = 0.0):
        self.commands = Cursor(list(commands))
        self.poses = Cursor(list(poses))
        self.lookahead = lookahead
        # The main loop and the correction workers both query poses
        self._lock = threading.Lock()

    @classmethod
    def from_files(cls, commands_path, positions_path, lookahead: float = 0.0):
        return cls(load_commands(commands_path), load_positions(positions_path), lookahead)

    @property
    def exhausted(self) -> bool:
        """True once the last command is reached, or if there is nothing to replay."""
        return self.commands.at_end or self.poses.empty

    def command_at(self, time: float) -> Twist:
        horizon = time + self.lookahead
        with self._lock:
            return self.commands.advance_while(lambda c: c.stamp < horizon).twist

    def pose_at(self, time: float) -> Pose:
        with self._lock:
            return self.poses.advance_while(lambda p: p.stamp < time).pose
