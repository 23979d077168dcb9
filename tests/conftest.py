import threading

import numpy as np
import pytest

from dora_teach_repeat.anchor_points import AnchorPoint, AnchorPointTracker
from dora_teach_repeat.geometry import Pose, Twist
from dora_teach_repeat.matching import CloudMatcher, MatchResult
from dora_teach_repeat.repeat import Publisher
from dora_teach_repeat.trajectory import TimedCommand, TimedPose, TrajectoryStore


class FakeClock:
    """Wall clock moved by hand."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingPublisher(Publisher):
    def __init__(self):
        self.commands = []
        self.poses = []
        self.errors = []
        self.switches = []
        self._lock = threading.Lock()

    def command(self, twist):
        with self._lock:
            self.commands.append(twist)

    def reference_pose(self, pose):
        with self._lock:
            self.poses.append(pose)

    def trajectory_error(self, error):
        with self._lock:
            self.errors.append(error)

    def anchor_point_switch(self, switch):
        with self._lock:
            self.switches.append(switch)

    @property
    def idle_commands(self):
        return [c for c in self.commands if c.is_idle()]


class StaticMatcher(CloudMatcher):
    def __init__(self, transform=None, success=True):
        self.transform = np.eye(4) if transform is None else transform
        self.success = success
        self.calls = 0

    def match(self, readings, reference):
        self.calls += 1
        return MatchResult(success=self.success, transform=self.transform)


class SlowMatcher(CloudMatcher):
    """Blocks inside `match` until released."""

    def __init__(self, transform=None):
        self.transform = np.eye(4) if transform is None else transform
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def match(self, readings, reference):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        self.release.wait(timeout=5)
        with self._lock:
            self.in_flight -= 1
        return MatchResult(success=True, transform=self.transform)


def make_store(stamps=(0.0, 1.0, 2.0), lookahead=0.0):
    commands = [TimedCommand(t, Twist.planar(0.5 + i, 0.1 * i)) for i, t in enumerate(stamps)]
    poses = [TimedPose(t, Pose.planar(float(i), 0.0)) for i, t in enumerate(stamps)]
    return TrajectoryStore(commands, poses, lookahead=lookahead)


def make_tracker(*positions, now=None):
    anchor_points = [
        AnchorPoint(f"ap{i}", Pose.planar(x, y), cloud=np.zeros((10, 3)))
        for i, (x, y) in enumerate(positions)
    ]
    if now is None:
        return AnchorPointTracker(anchor_points)
    return AnchorPointTracker(anchor_points, now=now)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher():
    return RecordingPublisher()
