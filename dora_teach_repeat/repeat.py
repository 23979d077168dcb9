"""
Repeat core: replays the teach while correcting the drift.

The main loop runs at a fixed rate and publishes the taught command for the
current sim time, corrected with the last matching error, plus the reference
pose. Scans, gamepad messages and parameter updates arrive from another
thread and are applied immediately.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from .anchor_points import AnchorPointSwitch, AnchorPointTracker, load_anchor_points
from .clock import PlaybackClock, Rate
from .config import RepeatConfig
from .controller import CommandCorrector, idle_command, param_as_float
from .correction import CorrectionPipeline
from .geometry import Pose, Twist, TrajectoryError
from .matching import CloudMatcher, IcpCloudMatcher
from .state_machine import GamepadMapping, PlaybackEvent, PlaybackState, PlaybackStateMachine
from .trajectory import TrajectoryStore

logger = logging.getLogger(__name__)


class Publisher:
    """Outputs of the repeat node. The default implementation drops everything."""

    def command(self, twist: Twist):
        pass

    def reference_pose(self, pose: Pose):
        pass

    def trajectory_error(self, error: TrajectoryError):
        pass

    def anchor_point_switch(self, switch: AnchorPointSwitch):
        pass


def resolve_working_directory(directory: str) -> Path:
    if not directory:
        return Path.cwd()
    path = Path(directory).expanduser()
    if not path.is_dir():
        logger.warning("Failed to switch to the demanded directory.")
        return Path.cwd()
    return path


class Repeat:
    def __init__(
        self,
        config: RepeatConfig,
        publisher: Publisher,
        store: Optional[TrajectoryStore] = None,
        anchor_points: Optional[AnchorPointTracker] = None,
        matcher: Optional[CloudMatcher] = None,
        corrector: Optional[CommandCorrector] = None,
        sensor_to_robot: Optional[np.ndarray] = None,
        now: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.publisher = publisher
        self._now = now

        if store is None or anchor_points is None:
            directory = resolve_working_directory(config.WORKING_DIRECTORY)
            if store is None:
                store = TrajectoryStore.from_files(
                    directory / config.COMMANDS_FILE,
                    directory / config.POSITIONS_FILE,
                    lookahead=config.LOOKAHEAD,
                )
            if anchor_points is None:
                anchor_points = AnchorPointTracker(
                    load_anchor_points(directory / config.ANCHOR_POINTS_FILE)
                )
        self.store = store
        self.anchor_points = anchor_points
        logger.info(
            f"Done loading the teach in memory: {len(store.commands)} commands, "
            f"{len(store.poses)} poses, {len(anchor_points)} anchor points."
        )

        self.clock = PlaybackClock(now)
        self.state_machine = PlaybackStateMachine(
            on_start=self.start_playback, on_pause=self.pause_playback
        )
        self.gamepad = GamepadMapping(config.RESUME_BUTTON, config.ACKNOWLEDGE_BUTTON)
        self.corrector = corrector or CommandCorrector.from_config(config)

        self.pipeline = CorrectionPipeline(
            matcher=matcher or IcpCloudMatcher.from_config(config),
            corrector=self.corrector,
            anchor_points=self.anchor_points,
            current_pose=lambda: self.store.pose_at(self.clock.sim_time()),
            sensor_to_robot=np.eye(4) if sensor_to_robot is None else sensor_to_robot,
            report_error=self.publisher.trajectory_error,
            on_failure=self.state_machine.fault,
            max_workers=config.MATCH_WORKERS,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def state(self) -> PlaybackState:
        return self.state_machine.state

    def start_playback(self):
        self.clock.start()

    def pause_playback(self):
        self.publisher.command(idle_command())
        paused_at = self.clock.pause()
        logger.info(f"Paused at: {paused_at:f}")

    def handle_event(self, event: PlaybackEvent) -> bool:
        return self.state_machine.handle(event)

    def handle_gamepad(self, raw_control: Union[str, dict]) -> bool:
        """Apply the first request of a gamepad message that changes the state."""
        events: List[PlaybackEvent] = self.gamepad.events(raw_control)
        return any(self.handle_event(event) for event in events)

    def fault(self) -> bool:
        return self.state_machine.fault()

    def on_cloud(self, scan: np.ndarray):
        return self.pipeline.submit(scan)

    def update_params(self, params: Dict[str, Any]):
        if "lookahead" in params:
            self.store.lookahead = param_as_float("lookahead", params["lookahead"])
            logger.info(f"Lookahead set to {self.store.lookahead}")
        self.corrector.update_params(params)

    def spin_once(self):
        time_of_spin = self.clock.sim_time()

        switch = self.anchor_points.advance_if_closer(self.store.pose_at(time_of_spin))
        if switch is not None:
            logger.info(f"Switched to anchor point {switch.new_anchor_point}")
            self.publisher.anchor_point_switch(switch)

        with self.state_machine.lock:
            if self.state_machine.playing:
                command = self.corrector.correct_command(self.store.command_at(time_of_spin))
                self.publisher.command(command)

        self.publisher.reference_pose(self.store.pose_at(self.clock.sim_time()))

    def spin(self, stop: Optional[threading.Event] = None, rate: Optional[Rate] = None):
        """Run the main loop until the teach is exhausted or `stop` is set."""
        stop = stop or threading.Event()
        rate = rate or Rate(self.config.LOOP_RATE)

        if self.store.exhausted:
            logger.warning("Nothing to replay, the teach has no commands left.")

        while not stop.is_set() and not self.store.exhausted:
            self.spin_once()
            rate.sleep()

        if self.store.exhausted:
            logger.info("Reached the end of the teach.")

    def close(self):
        self.pipeline.shutdown()
